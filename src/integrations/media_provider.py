"""Clients for the third-party media-session provider.

The provider issues a session identifier per call plus one access token per
role. Only those values and the static API key matter to the signaling core.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal
from urllib.parse import urlencode

import httpx

from config.settings import Settings
from signaling.errors import UpstreamDependencyError
from signaling.tokens import random_hex

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderSession:
    session_id: str
    callee_token: str
    caller_token: str


@dataclass(frozen=True)
class MediaProviderConfig:
    provider: Literal["fake", "opentok"]
    api_key: str
    api_secret: str
    server_url: str
    token_duration: int = 60 * 60 * 24
    request_timeout: float = 10.0
    heartbeat_timeout: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> MediaProviderConfig:
        return cls(
            provider=settings.media_provider,
            api_key=settings.media_api_key,
            api_secret=settings.media_api_secret,
            server_url=settings.media_server_url.rstrip("/"),
            token_duration=settings.media_token_duration_seconds,
            request_timeout=settings.media_request_timeout_seconds,
            heartbeat_timeout=settings.heartbeat_timeout_seconds,
        )


class BaseMediaProvider(ABC):
    """Abstract base class for media-session providers."""

    is_fake: bool = False

    def __init__(self, config: MediaProviderConfig) -> None:
        self._config = config

    @property
    def api_key(self) -> str:
        return self._config.api_key

    @abstractmethod
    async def allocate_session(self) -> ProviderSession:
        """Create a provider session and the tokens for both call roles."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return whether the provider answered within the heartbeat timeout."""


class OpenTokProvider(BaseMediaProvider):
    """Creates sessions over HTTP and signs role tokens locally."""

    def __init__(
        self,
        config: MediaProviderConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(config)
        self._transport = transport
        self._clock = clock

    def _headers(self) -> dict[str, str]:
        return {
            "X-TB-PARTNER-AUTH": f"{self._config.api_key}:{self._config.api_secret}",
            "Accept": "application/json",
        }

    async def allocate_session(self) -> ProviderSession:
        session_id = await self._create_session()
        return ProviderSession(
            session_id=session_id,
            callee_token=self.generate_token(session_id),
            caller_token=self.generate_token(session_id),
        )

    async def _create_session(self) -> str:
        try:
            async with httpx.AsyncClient(
                timeout=self._config.request_timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    f"{self._config.server_url}/session/create",
                    data={"p2p.preference": "enabled"},
                    headers=self._headers(),
                )
            response.raise_for_status()
            payload = response.json()
            return str(payload[0]["session_id"])
        except httpx.HTTPError as exc:
            LOGGER.error("Media provider session request failed: %s", exc)
            raise UpstreamDependencyError("Media provider unavailable.") from exc
        except (ValueError, LookupError, TypeError) as exc:
            LOGGER.error("Media provider returned an unexpected payload: %s", exc)
            raise UpstreamDependencyError("Media provider returned an invalid session.") from exc

    def generate_token(self, session_id: str, role: str = "publisher") -> str:
        now = int(self._clock())
        data = urlencode(
            {
                "session_id": session_id,
                "create_time": now,
                "expire_time": now + self._config.token_duration,
                "role": role,
                "nonce": secrets.randbelow(1_000_000),
            }
        )
        signature = hmac.new(
            self._config.api_secret.encode("utf-8"),
            data.encode("utf-8"),
            hashlib.sha1,
        ).hexdigest()
        raw = f"partner_id={self._config.api_key}&sig={signature}:{data}"
        return "T1==" + base64.b64encode(raw.encode("utf-8")).decode("ascii")

    async def ping(self) -> bool:
        try:
            async with httpx.AsyncClient(
                timeout=self._config.heartbeat_timeout,
                transport=self._transport,
            ) as client:
                await client.get(self._config.server_url)
        except httpx.HTTPError as exc:
            LOGGER.warning("Media provider heartbeat failed: %s", exc)
            return False
        return True


class FakeMediaProvider(BaseMediaProvider):
    """Returns random sessions without talking to the provider."""

    is_fake = True

    async def allocate_session(self) -> ProviderSession:
        return ProviderSession(
            session_id="1_" + random_hex(24),
            callee_token="T1==" + random_hex(32),
            caller_token="T1==" + random_hex(32),
        )

    async def ping(self) -> bool:
        return True


def build_media_provider(config: MediaProviderConfig) -> BaseMediaProvider:
    """Instantiate the configured media provider."""

    if config.provider == "fake":
        LOGGER.info("Calls to the media provider are mocked.")
        return FakeMediaProvider(config)
    if config.provider == "opentok":
        return OpenTokProvider(config)
    raise ValueError(f"Unsupported media_provider: {config.provider}")

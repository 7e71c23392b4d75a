"""Lifecycle of call-URL tokens: shareable, optionally expiring call invitations."""

from __future__ import annotations

import logging
import math
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from config.settings import Settings
from db.models import CallUrl
from db.store import KeyValueStore
from signaling.errors import ForbiddenError, NotFoundError, ValidationError
from signaling.tokens import generate_token

LOGGER = logging.getLogger(__name__)

ONE_HOUR = 60 * 60
_LEADING_INTEGER = re.compile(r"\s*[+-]?\d+")


@dataclass(frozen=True)
class CallUrlConfig:
    token_size: int = 8
    default_lifetime_hours: int | None = None
    max_lifetime_hours: int = 24 * 30
    web_app_url: str = "http://localhost:3000/{token}"

    @classmethod
    def from_settings(cls, settings: Settings) -> CallUrlConfig:
        return cls(
            token_size=settings.call_url_token_size,
            default_lifetime_hours=settings.call_url_timeout_hours,
            max_lifetime_hours=settings.call_url_max_timeout_hours,
            web_app_url=settings.web_app_url,
        )


class CallUrlManager:
    def __init__(
        self,
        call_urls: KeyValueStore[CallUrl],
        config: CallUrlConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._call_urls = call_urls
        self._config = config
        self._clock = clock

    def url_for(self, token: str) -> str:
        return self._config.web_app_url.replace("{token}", token)

    def parse_lifetime(self, value: Any) -> int | None:
        """Validate a requested lifetime in hours, falling back to the configured default.

        Numbers are truncated to whole hours and numeric strings are read up to
        their first non-digit (``"2.5"`` and ``2.5`` both mean 2). The result must
        still be at least one hour, so ``0`` and ``0.5`` are rejected rather than
        creating a token that is already expired.
        """

        if value is None:
            return self._config.default_lifetime_hours

        hours: int | None = None
        if isinstance(value, bool):
            hours = None
        elif isinstance(value, int):
            hours = value
        elif isinstance(value, float) and math.isfinite(value):
            hours = int(value)
        elif isinstance(value, str):
            match = _LEADING_INTEGER.match(value)
            hours = int(match.group(0)) if match else None

        if hours is None:
            raise ValidationError.for_field("body", "expiresIn", "should be a valid number")
        if hours > self._config.max_lifetime_hours:
            raise ValidationError.for_field(
                "body", "expiresIn", f"should be less than {self._config.max_lifetime_hours}"
            )
        if hours < 1:
            raise ValidationError.for_field("body", "expiresIn", "should be a positive number")
        return hours

    async def create_token(
        self,
        owner_identity: str,
        callee_display_name: str = "",
        *,
        caller_id: str | None = None,
        expires_in: Any = None,
    ) -> CallUrl:
        lifetime = self.parse_lifetime(expires_in)
        now = int(self._clock())

        record = await self._call_urls.add(
            CallUrl(
                token=generate_token(self._config.token_size),
                owner_identity=owner_identity,
                caller_id=caller_id,
                callee_display_name=callee_display_name or "",
                created_at=now,
                expires_at=now + lifetime * ONE_HOUR if lifetime is not None else None,
            )
        )
        LOGGER.info("Call URL created for %s (expires_at=%s)", owner_identity[:8], record.expires_at)
        return record

    async def resolve_token(self, token: str) -> CallUrl:
        """Return the live record for ``token``; expired and unknown tokens are not found."""

        record = await self._call_urls.find_one(token=token)
        if record is None or record.is_expired(int(self._clock())):
            raise NotFoundError()
        return record

    async def update_token(
        self,
        token: str,
        owner_identity: str,
        *,
        callee_display_name: str | None = None,
        caller_id: str | None = None,
        expires_in: Any = None,
    ) -> CallUrl:
        record = await self._owned(token, owner_identity)
        lifetime = self.parse_lifetime(expires_in)
        now = int(self._clock())

        values: dict[str, Any] = {
            "expires_at": now + lifetime * ONE_HOUR if lifetime is not None else None,
        }
        if callee_display_name is not None:
            values["callee_display_name"] = callee_display_name
        if caller_id is not None:
            values["caller_id"] = caller_id

        await self._call_urls.update_or_create({"token": record.token}, values)
        LOGGER.info("Call URL updated for %s", owner_identity[:8])
        return await self.resolve_token(token)

    async def revoke_token(self, token: str, owner_identity: str) -> None:
        await self._owned(token, owner_identity)
        await self._call_urls.delete(token=token)
        LOGGER.info("Call URL revoked for %s", owner_identity[:8])

    async def purge_expired(self) -> int:
        now = int(self._clock())
        purged = 0
        for record in await self._call_urls.find():
            if record.is_expired(now):
                purged += await self._call_urls.delete(token=record.token)
        return purged

    async def _owned(self, token: str, owner_identity: str) -> CallUrl:
        record = await self.resolve_token(token)
        if record.owner_identity != owner_identity:
            raise ForbiddenError()
        return record

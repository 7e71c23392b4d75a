"""Push-notification transport.

Notifications carry only a version stamp; devices fetch the actual calls
themselves. Delivery is best effort: failures are logged and never retried here.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass

import httpx

from config.settings import Settings

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class PushConfig:
    timeout: float = 3.0

    @classmethod
    def from_settings(cls, settings: Settings) -> PushConfig:
        return cls(timeout=settings.push_timeout_seconds)


class PushNotifier:
    def __init__(self, config: PushConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._config = config
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._config.timeout, transport=self._transport)

    async def notify(self, url: str, version: int) -> None:
        """Deliver ``version`` to a single endpoint, raising on failure."""

        async with self._client() as client:
            await self._put(client, url, version)

    async def notify_all(self, urls: Iterable[str], version: int) -> int:
        """Deliver ``version`` to every endpoint concurrently; return how many accepted it."""

        targets = list(urls)
        if not targets:
            return 0
        async with self._client() as client:
            results = await asyncio.gather(*(self._dispatch(client, url, version) for url in targets))
        return sum(results)

    async def _dispatch(self, client: httpx.AsyncClient, url: str, version: int) -> bool:
        try:
            await asyncio.wait_for(self._put(client, url, version), timeout=self._config.timeout)
        except (httpx.HTTPError, httpx.InvalidURL, asyncio.TimeoutError) as exc:
            LOGGER.warning("Push notification to %s failed: %s", url, str(exc) or type(exc).__name__)
            return False
        return True

    @staticmethod
    async def _put(client: httpx.AsyncClient, url: str, version: int) -> None:
        response = await client.put(url, data={"version": str(version)})
        response.raise_for_status()

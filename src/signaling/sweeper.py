"""Background process releasing abandoned calls and elapsed call URLs.

Run with ``python -m signaling.sweeper``.
"""

from __future__ import annotations

import asyncio
import logging

from config.settings import get_settings
from signaling.call_urls import CallUrlManager
from signaling.calls import CallOrchestrator
from signaling.errors import SignalingError
from signaling.services import build_services

LOGGER = logging.getLogger(__name__)


class Sweeper:
    def __init__(self, calls: CallOrchestrator, call_urls: CallUrlManager, interval: float) -> None:
        self._calls = calls
        self._call_urls = call_urls
        self._interval = interval

    async def sweep_once(self) -> tuple[int, int]:
        """Run one pass; return (released calls, purged call URLs)."""

        released = await self._calls.sweep_expired()
        purged = await self._call_urls.purge_expired()
        if released or purged:
            LOGGER.info("Sweep released %d calls and purged %d call URLs", released, purged)
        return released, purged

    async def run_forever(self) -> None:
        LOGGER.info("Sweeping every %.1fs", self._interval)
        while True:
            try:
                await self.sweep_once()
            except SignalingError as exc:
                LOGGER.error("Sweep failed: %s", exc.detail)
            await asyncio.sleep(self._interval)


async def _amain() -> None:
    settings = get_settings()
    services = await build_services(settings)
    try:
        await Sweeper(services.calls, services.call_urls, settings.sweep_interval_seconds).run_forever()
    finally:
        await services.close()


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    asyncio.run(_amain())


if __name__ == "__main__":
    main()

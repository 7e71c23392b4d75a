"""Wiring of the signaling components from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from config.settings import Settings
from db.base import build_engine
from db.repository import SignalingRepository
from db.store import StoreConfig
from integrations.media_provider import BaseMediaProvider, MediaProviderConfig, build_media_provider
from integrations.push import PushConfig, PushNotifier
from signaling.call_urls import CallUrlConfig, CallUrlManager
from signaling.calls import CallConfig, CallOrchestrator
from signaling.identity import IdentityConfig, IdentityResolver

LOGGER = logging.getLogger(__name__)


@dataclass
class SignalingServices:
    settings: Settings
    engine: AsyncEngine
    repository: SignalingRepository
    identity: IdentityResolver
    call_urls: CallUrlManager
    calls: CallOrchestrator
    provider: BaseMediaProvider
    notifier: PushNotifier

    async def ping(self) -> dict[str, bool]:
        return {
            "storage": await self.repository.ping(),
            "provider": await self.provider.ping(),
        }

    async def close(self) -> None:
        await self.engine.dispose()


async def build_services(
    settings: Settings,
    *,
    provider: BaseMediaProvider | None = None,
    notifier: PushNotifier | None = None,
) -> SignalingServices:
    """Build every component; provision the schema when enabled."""

    engine = build_engine(settings.database_url)
    repository = SignalingRepository.from_engine(engine, StoreConfig.from_settings(settings))
    if settings.auto_create_db_schema:
        await repository.ensure_schema()

    provider = provider or build_media_provider(MediaProviderConfig.from_settings(settings))
    notifier = notifier or PushNotifier(PushConfig.from_settings(settings))
    call_urls = CallUrlManager(repository.call_urls, CallUrlConfig.from_settings(settings))

    return SignalingServices(
        settings=settings,
        engine=engine,
        repository=repository,
        identity=IdentityResolver(repository.sessions, IdentityConfig.from_settings(settings)),
        call_urls=call_urls,
        calls=CallOrchestrator(
            repository.push_endpoints,
            repository.calls,
            provider,
            notifier,
            call_urls,
            CallConfig.from_settings(settings),
        ),
        provider=provider,
        notifier=notifier,
    )

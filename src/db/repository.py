"""The collections the signaling core persists to."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from db.models import Call, CallUrl, PushEndpoint, SessionRecord
from db.store import KeyValueStore, StoreConfig


@dataclass
class SignalingRepository:
    """One store per table, sharing an engine."""

    sessions: KeyValueStore[SessionRecord]
    push_endpoints: KeyValueStore[PushEndpoint]
    call_urls: KeyValueStore[CallUrl]
    calls: KeyValueStore[Call]

    @classmethod
    def from_engine(cls, engine: AsyncEngine, config: StoreConfig | None = None) -> SignalingRepository:
        return cls(
            sessions=KeyValueStore(engine, SessionRecord, unique=("session_identity",), config=config),
            push_endpoints=KeyValueStore(engine, PushEndpoint, unique=("identity", "url"), config=config),
            call_urls=KeyValueStore(engine, CallUrl, unique=("token",), config=config),
            calls=KeyValueStore(engine, Call, unique=("call_id",), config=config),
        )

    def _stores(self) -> tuple[KeyValueStore, ...]:
        return (self.sessions, self.push_endpoints, self.call_urls, self.calls)

    async def ensure_schema(self) -> None:
        for store in self._stores():
            await store.ensure_schema()

    async def drop(self) -> None:
        for store in self._stores():
            await store.drop()

    async def ping(self) -> bool:
        # All stores share the engine, one round trip covers them.
        return await self.sessions.ping()

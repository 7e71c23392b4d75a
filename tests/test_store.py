from __future__ import annotations

import asyncio

import pytest

from db.base import build_engine
from db.models import Call, CallUrl, PushEndpoint, SessionRecord
from db.store import KeyValueStore, SchemaState, StoreConfig
from signaling.errors import DuplicateKeyError, SchemaError, ValidationError


def _call_url(token: str, owner: str = "owner-1") -> CallUrl:
    return CallUrl(token=token, owner_identity=owner, callee_display_name="Alice", created_at=100)


def test_add_rejects_duplicate_unique_field_and_keeps_one_entry(settings):
    async def scenario():
        engine = build_engine(settings.database_url)
        store = KeyValueStore(engine, CallUrl, unique=("token",))
        try:
            await store.add(_call_url("tok-1", owner="owner-1"))
            with pytest.raises(DuplicateKeyError):
                await store.add(_call_url("tok-1", owner="owner-2"))
            return await store.find(token="tok-1")
        finally:
            await engine.dispose()

    records = asyncio.run(scenario())

    assert len(records) == 1
    assert records[0].owner_identity == "owner-1"


def test_compound_uniqueness_allows_same_url_for_other_identity(settings):
    async def scenario():
        engine = build_engine(settings.database_url)
        store = KeyValueStore(engine, PushEndpoint, unique=("identity", "url"))
        try:
            await store.add(PushEndpoint(identity="a", url="https://push.example/1", created_at=1))
            await store.add(PushEndpoint(identity="b", url="https://push.example/1", created_at=1))
            with pytest.raises(DuplicateKeyError):
                await store.add(PushEndpoint(identity="a", url="https://push.example/1", created_at=2))
            return await store.find(url="https://push.example/1")
        finally:
            await engine.dispose()

    assert [record.identity for record in asyncio.run(scenario())] == ["a", "b"]


def test_ensure_schema_is_idempotent(settings):
    async def scenario():
        engine = build_engine(settings.database_url)
        store = KeyValueStore(engine, SessionRecord, unique=("session_identity",))
        try:
            assert store.state is SchemaState.ABSENT
            await store.ensure_schema()
            await store.ensure_schema()
            # A second store over the same table finds it already provisioned.
            other = KeyValueStore(engine, SessionRecord, unique=("session_identity",))
            await other.ensure_schema()
            return store.state, other.state
        finally:
            await engine.dispose()

    assert asyncio.run(scenario()) == (SchemaState.READY, SchemaState.READY)


def test_find_returns_empty_sequence_and_find_one_none(settings):
    async def scenario():
        engine = build_engine(settings.database_url)
        store = KeyValueStore(engine, CallUrl, unique=("token",))
        try:
            return await store.find(owner_identity="nobody"), await store.find_one(token="missing")
        finally:
            await engine.dispose()

    records, record = asyncio.run(scenario())

    assert records == []
    assert record is None


def test_unknown_attribute_is_a_validation_error(settings):
    async def scenario():
        engine = build_engine(settings.database_url)
        store = KeyValueStore(engine, CallUrl, unique=("token",))
        try:
            await store.find(colour="blue")
        finally:
            await engine.dispose()

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_update_or_create_inserts_then_updates(settings):
    async def scenario():
        engine = build_engine(settings.database_url)
        store = KeyValueStore(engine, SessionRecord, unique=("session_identity",))
        try:
            await store.update_or_create({"session_identity": "s1"}, {"last_activity": 10})
            await store.update_or_create({"session_identity": "s1"}, {"last_activity": 20})
            return await store.find(session_identity="s1")
        finally:
            await engine.dispose()

    records = asyncio.run(scenario())

    assert len(records) == 1
    assert records[0].last_activity == 20


def test_delete_returns_count_and_drop_is_idempotent(settings):
    async def scenario():
        engine = build_engine(settings.database_url)
        store = KeyValueStore(engine, CallUrl, unique=("token",))
        try:
            await store.add(_call_url("a"))
            await store.add(_call_url("b"))
            deleted = await store.delete(owner_identity="owner-1")
            await store.drop()
            await store.drop()
            state_after_drop = store.state
            # The table is provisioned again on next use.
            remaining = await store.find()
            return deleted, state_after_drop, remaining
        finally:
            await engine.dispose()

    deleted, state_after_drop, remaining = asyncio.run(scenario())

    assert deleted == 2
    assert state_after_drop is SchemaState.ABSENT
    assert remaining == []


def test_unique_fields_must_be_backed_by_a_constraint(settings):
    async def scenario():
        engine = build_engine(settings.database_url)
        try:
            with pytest.raises(ValueError):
                KeyValueStore(engine, CallUrl, unique=("owner_identity",))
            with pytest.raises(ValueError):
                KeyValueStore(engine, CallUrl, unique=("does_not_exist",))
        finally:
            await engine.dispose()

    asyncio.run(scenario())


def test_add_rejects_records_of_another_model(settings):
    async def scenario():
        engine = build_engine(settings.database_url)
        store = KeyValueStore(engine, CallUrl, unique=("token",))
        try:
            await store.add(SessionRecord(session_identity="s", last_activity=1))
        finally:
            await engine.dispose()

    with pytest.raises(TypeError):
        asyncio.run(scenario())


def test_store_config_reads_settings(settings):
    config = StoreConfig.from_settings(settings)

    assert config.max_attempts == settings.schema_max_attempts
    assert config.retry_delay == settings.schema_retry_delay_seconds


def test_update_or_create_surfaces_constraint_failures_on_insert(settings):
    async def scenario():
        engine = build_engine(settings.database_url)
        store = KeyValueStore(engine, Call, unique=("call_id",))
        try:
            # No row matches, and the insert lacks every NOT NULL column but state.
            with pytest.raises(ValidationError):
                await store.update_or_create({"call_id": "c" * 32}, {"state": "answered"})
            return await store.find(call_id="c" * 32)
        finally:
            await engine.dispose()

    assert asyncio.run(scenario()) == []


def test_conditional_update_only_touches_matching_rows(settings):
    async def scenario():
        engine = build_engine(settings.database_url)
        store = KeyValueStore(engine, SessionRecord, unique=("session_identity",))
        try:
            await store.add(SessionRecord(session_identity="s1", last_activity=10))
            stale = await store.update({"last_activity": 99}, session_identity="s1", last_activity=5)
            fresh = await store.update({"last_activity": 20}, session_identity="s1", last_activity=10)
            missing = await store.update({"last_activity": 30}, session_identity="nobody")
            return stale, fresh, missing, await store.find()
        finally:
            await engine.dispose()

    stale, fresh, missing, records = asyncio.run(scenario())

    assert (stale, fresh, missing) == (0, 1, 0)
    assert [(record.session_identity, record.last_activity) for record in records] == [("s1", 20)]


def test_ensure_schema_gives_up_after_max_attempts(settings):
    attempts = []

    async def never_ready() -> bool:
        attempts.append(1)
        return False

    async def scenario():
        engine = build_engine(settings.database_url)
        store = KeyValueStore(engine, CallUrl, unique=("token",), config=StoreConfig(max_attempts=2, retry_delay=0))
        store._table_ready = never_ready
        try:
            with pytest.raises(SchemaError):
                await store.ensure_schema()
            return store.state
        finally:
            await engine.dispose()

    assert asyncio.run(scenario()) is SchemaState.FAILED
    assert len(attempts) == 2


def test_ensure_schema_reports_backend_fault(tmp_path):
    missing_dir = tmp_path / "does-not-exist"

    async def scenario():
        engine = build_engine(f"sqlite+aiosqlite:///{(missing_dir / 'store.db').as_posix()}")
        store = KeyValueStore(engine, CallUrl, unique=("token",))
        try:
            with pytest.raises(SchemaError):
                await store.ensure_schema()
            return store.state
        finally:
            await engine.dispose()

    assert asyncio.run(scenario()) is SchemaState.FAILED

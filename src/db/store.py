"""Generic key/value collection over a single provisioned table.

A store wraps one declarative model and offers the small relational surface the
signaling core needs: conditional inserts guarded by a compound unique key,
equality queries, upserts and deletes. Uniqueness is enforced by the table's
``UniqueConstraint`` so concurrent inserts are resolved by the backend, never by a
prior read.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from sqlalchemy import ColumnElement, Table, UniqueConstraint, delete, inspect, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from config.settings import Settings
from db.base import Base, build_session_factory
from signaling.errors import DuplicateKeyError, SchemaError, UpstreamDependencyError, ValidationError

LOGGER = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=Base)


@dataclass(frozen=True)
class StoreConfig:
    max_attempts: int = 5
    retry_delay: float = 0.05

    @classmethod
    def from_settings(cls, settings: Settings) -> StoreConfig:
        return cls(
            max_attempts=settings.schema_max_attempts,
            retry_delay=settings.schema_retry_delay_seconds,
        )


class SchemaState(str, Enum):
    ABSENT = "absent"
    CREATING = "creating"
    READY = "ready"
    FAILED = "failed"


def _covers_unique_key(table: Table, fields: Sequence[str]) -> bool:
    wanted = set(fields)
    for constraint in table.constraints:
        if isinstance(constraint, UniqueConstraint) and {col.name for col in constraint.columns} == wanted:
            return True
    if len(wanted) == 1:
        (name,) = wanted
        column = table.c.get(name)
        return column is not None and bool(column.unique or column.primary_key)
    return False


def _is_unique_violation(exc: IntegrityError) -> bool:
    # 23505 is the SQLSTATE for unique_violation; SQLite only reports it in the message.
    orig = exc.orig
    if getattr(orig, "sqlstate", None) == "23505" or getattr(orig, "pgcode", None) == "23505":
        return True
    message = str(orig).lower()
    return "unique constraint" in message or "duplicate" in message


class KeyValueStore(Generic[ModelT]):
    """Async collection of ``model`` rows living in their own table."""

    def __init__(
        self,
        engine: AsyncEngine,
        model: type[ModelT],
        *,
        unique: Sequence[str] = (),
        config: StoreConfig | None = None,
    ) -> None:
        self._engine = engine
        self._model = model
        self._table: Table = model.__table__  # type: ignore[attr-defined]
        self._unique = tuple(unique)
        self._config = config or StoreConfig()
        self._session_factory = build_session_factory(engine)
        self._state = SchemaState.ABSENT
        self._schema_lock = asyncio.Lock()

        unknown = [name for name in self._unique if name not in self._table.c]
        if unknown:
            raise ValueError(f"Unknown unique fields for {self.name}: {unknown}")
        if self._unique and not _covers_unique_key(self._table, self._unique):
            raise ValueError(f"{self.name} declares no unique constraint on {self._unique}")

    @property
    def name(self) -> str:
        return self._table.name

    @property
    def unique(self) -> tuple[str, ...]:
        return self._unique

    @property
    def state(self) -> SchemaState:
        return self._state

    async def ensure_schema(self) -> None:
        """Provision the table if needed and wait until the backend reports it."""

        if self._state is SchemaState.READY:
            return

        async with self._schema_lock:
            if self._state is SchemaState.READY:
                return

            self._state = SchemaState.CREATING
            try:
                async with self._engine.begin() as conn:
                    if not await conn.run_sync(self._has_table):
                        LOGGER.info("Creating table %s", self.name)
                        await conn.run_sync(self._create_table)
            except SQLAlchemyError as exc:
                self._state = SchemaState.FAILED
                LOGGER.error("Provisioning table %s failed: %s", self.name, exc)
                raise SchemaError(f"Could not provision table {self.name}.") from exc

            for attempt in range(1, self._config.max_attempts + 1):
                if await self._table_ready():
                    self._state = SchemaState.READY
                    return
                LOGGER.debug("Table %s not ready (attempt %d/%d)", self.name, attempt, self._config.max_attempts)
                await asyncio.sleep(self._config.retry_delay)

            self._state = SchemaState.FAILED
            raise SchemaError(
                f"Table {self.name} not ready after {self._config.max_attempts} attempts."
            )

    async def add(self, record: ModelT) -> ModelT:
        if not isinstance(record, self._model):
            raise TypeError(f"{self.name} stores {self._model.__name__} records, got {type(record).__name__}")

        async with self._session() as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
        return record

    async def update_or_create(self, criteria: Mapping[str, Any], values: Mapping[str, Any]) -> None:
        """Apply ``values`` to every row matching ``criteria``; insert one row if none match."""

        conditions = self._conditions(criteria)
        self._conditions(values)
        statement = update(self._model).where(*conditions).values(**values)

        try:
            async with self._session() as session:
                result = await session.execute(statement)
                if result.rowcount == 0:
                    session.add(self._model(**{**criteria, **values}))
                await session.commit()
        except DuplicateKeyError:
            # Lost an insert race against a concurrent creator; the row exists now.
            async with self._session() as session:
                result = await session.execute(statement)
                await session.commit()
            if not result.rowcount:
                raise

    async def update(self, values: Mapping[str, Any], **query: Any) -> int:
        """Apply ``values`` only to rows matching ``query``; return how many changed.

        Never inserts, so a predicate on the current state makes it a conditional write.
        """

        conditions = self._conditions(query)
        self._conditions(values)
        async with self._session() as session:
            result = await session.execute(update(self._model).where(*conditions).values(**values))
            await session.commit()
            return int(result.rowcount or 0)

    async def find(self, **query: Any) -> list[ModelT]:
        conditions = self._conditions(query)
        async with self._session() as session:
            result = await session.execute(
                select(self._model).where(*conditions).order_by(self._table.c.id)
            )
            return list(result.scalars().all())

    async def find_one(self, **query: Any) -> ModelT | None:
        records = await self.find(**query)
        return records[0] if records else None

    async def delete(self, **query: Any) -> int:
        conditions = self._conditions(query)
        async with self._session() as session:
            result = await session.execute(delete(self._model).where(*conditions))
            await session.commit()
            return int(result.rowcount or 0)

    async def drop(self) -> None:
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(self._drop_table)
        except SQLAlchemyError as exc:
            raise UpstreamDependencyError(f"Could not drop table {self.name}.") from exc
        self._state = SchemaState.ABSENT

    async def ping(self) -> bool:
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            LOGGER.warning("Storage ping failed: %s", exc)
            return False
        return True

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        await self.ensure_schema()
        async with self._session_factory() as session:
            try:
                yield session
            except IntegrityError as exc:
                await session.rollback()
                if _is_unique_violation(exc):
                    raise DuplicateKeyError(
                        f"{self.name}: a record with the same {', '.join(self._unique) or 'key'} already exists."
                    ) from exc
                LOGGER.warning("Rejected write on %s: %s", self.name, exc.orig)
                raise ValidationError(f"{self.name}: record violates a table constraint.") from exc
            except SQLAlchemyError as exc:
                await session.rollback()
                LOGGER.error("Storage operation on %s failed: %s", self.name, exc)
                raise UpstreamDependencyError("Storage unavailable.") from exc

    def _conditions(self, query: Mapping[str, Any]) -> list[ColumnElement[bool]]:
        conditions: list[ColumnElement[bool]] = []
        for name, value in query.items():
            column = self._table.c.get(name)
            if column is None:
                raise ValidationError.for_field("store", name, f"{self.name} has no attribute {name!r}")
            conditions.append(column.is_(None) if value is None else column == value)
        return conditions

    def _has_table(self, sync_conn) -> bool:
        return inspect(sync_conn).has_table(self.name)

    def _create_table(self, sync_conn) -> None:
        self._table.create(sync_conn, checkfirst=True)

    def _drop_table(self, sync_conn) -> None:
        self._table.drop(sync_conn, checkfirst=True)

    async def _table_ready(self) -> bool:
        try:
            async with self._engine.connect() as conn:
                return await conn.run_sync(self._has_table)
        except SQLAlchemyError as exc:
            self._state = SchemaState.FAILED
            raise SchemaError(f"Could not inspect table {self.name}.") from exc

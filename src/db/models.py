"""SQLAlchemy models for sessions, push endpoints, call URLs and calls.

Timestamps are integer epoch values: seconds everywhere except ``Call.created_at``,
which is in milliseconds because it doubles as the version stamp pushed to
notification endpoints.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base


class SessionRecord(Base):
    """Per-device session keyed by the derived session identity."""

    __tablename__ = "sessions"
    __table_args__ = (UniqueConstraint("session_identity", name="uq_sessions_session_identity"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    session_identity: Mapped[str] = mapped_column(String(64))
    user_identity: Mapped[str | None] = mapped_column(String(64), index=True, default=None)
    encrypted_identifier: Mapped[str | None] = mapped_column(Text(), default=None)
    last_activity: Mapped[int] = mapped_column(BigInteger())

    @property
    def identity(self) -> str:
        return self.user_identity or self.session_identity


class PushEndpoint(Base):
    """A notification URL registered for an identity."""

    __tablename__ = "push_endpoints"
    __table_args__ = (UniqueConstraint("identity", "url", name="uq_push_endpoints_identity_url"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    identity: Mapped[str] = mapped_column(String(64), index=True)
    url: Mapped[str] = mapped_column(String(2048))
    created_at: Mapped[int] = mapped_column(BigInteger())


class CallUrl(Base):
    """Shareable invitation letting anyone place a call to its owner."""

    __tablename__ = "call_urls"
    __table_args__ = (UniqueConstraint("token", name="uq_call_urls_token"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(String(128))
    owner_identity: Mapped[str] = mapped_column(String(64), index=True)
    caller_id: Mapped[str | None] = mapped_column(String(255), default=None)
    callee_display_name: Mapped[str] = mapped_column(String(255), default="")
    created_at: Mapped[int] = mapped_column(BigInteger())
    expires_at: Mapped[int | None] = mapped_column(BigInteger(), default=None)

    def is_expired(self, now: int) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class Call(Base):
    """A call waiting to be answered, with everything both ends need to join it."""

    __tablename__ = "calls"
    __table_args__ = (UniqueConstraint("call_id", name="uq_calls_call_id"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    call_id: Mapped[str] = mapped_column(String(32))
    callee_identity: Mapped[str] = mapped_column(String(64), index=True)
    # Pseudonymous identity of the placing session; None for anonymous callers.
    caller_identity: Mapped[str | None] = mapped_column(String(64), default=None)
    caller_id: Mapped[str | None] = mapped_column(String(255), default=None)
    callee_display_name: Mapped[str | None] = mapped_column(String(255), default=None)
    call_type: Mapped[str] = mapped_column(String(16))
    state: Mapped[str] = mapped_column(String(16), index=True)
    created_at: Mapped[int] = mapped_column(BigInteger())

    provider_session_id: Mapped[str] = mapped_column(String(255))
    provider_callee_token: Mapped[str] = mapped_column(Text())
    ws_callee_token: Mapped[str] = mapped_column(String(32))
    ws_caller_token: Mapped[str] = mapped_column(String(32))

    call_token: Mapped[str | None] = mapped_column(String(128), default=None)
    url_creation_date: Mapped[int | None] = mapped_column(BigInteger(), default=None)

"""signaling tables

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-17

"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("session_identity", sa.String(length=64), nullable=False),
        sa.Column("user_identity", sa.String(length=64), nullable=True),
        sa.Column("encrypted_identifier", sa.Text(), nullable=True),
        sa.Column("last_activity", sa.BigInteger(), nullable=False),
        sa.UniqueConstraint("session_identity", name="uq_sessions_session_identity"),
    )
    op.create_index("ix_sessions_user_identity", "sessions", ["user_identity"], unique=False)

    op.create_table(
        "push_endpoints",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("identity", sa.String(length=64), nullable=False),
        sa.Column("url", sa.String(length=2048), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.UniqueConstraint("identity", "url", name="uq_push_endpoints_identity_url"),
    )
    op.create_index("ix_push_endpoints_identity", "push_endpoints", ["identity"], unique=False)

    op.create_table(
        "call_urls",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("token", sa.String(length=128), nullable=False),
        sa.Column("owner_identity", sa.String(length=64), nullable=False),
        sa.Column("caller_id", sa.String(length=255), nullable=True),
        sa.Column("callee_display_name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("expires_at", sa.BigInteger(), nullable=True),
        sa.UniqueConstraint("token", name="uq_call_urls_token"),
    )
    op.create_index("ix_call_urls_owner_identity", "call_urls", ["owner_identity"], unique=False)

    op.create_table(
        "calls",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("call_id", sa.String(length=32), nullable=False),
        sa.Column("callee_identity", sa.String(length=64), nullable=False),
        sa.Column("caller_identity", sa.String(length=64), nullable=True),
        sa.Column("caller_id", sa.String(length=255), nullable=True),
        sa.Column("callee_display_name", sa.String(length=255), nullable=True),
        sa.Column("call_type", sa.String(length=16), nullable=False),
        sa.Column("state", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("provider_session_id", sa.String(length=255), nullable=False),
        sa.Column("provider_callee_token", sa.Text(), nullable=False),
        sa.Column("ws_callee_token", sa.String(length=32), nullable=False),
        sa.Column("ws_caller_token", sa.String(length=32), nullable=False),
        sa.Column("call_token", sa.String(length=128), nullable=True),
        sa.Column("url_creation_date", sa.BigInteger(), nullable=True),
        sa.UniqueConstraint("call_id", name="uq_calls_call_id"),
    )
    op.create_index("ix_calls_callee_identity", "calls", ["callee_identity"], unique=False)
    op.create_index("ix_calls_state", "calls", ["state"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_calls_state", table_name="calls")
    op.drop_index("ix_calls_callee_identity", table_name="calls")
    op.drop_table("calls")
    op.drop_index("ix_call_urls_owner_identity", table_name="call_urls")
    op.drop_table("call_urls")
    op.drop_index("ix_push_endpoints_identity", table_name="push_endpoints")
    op.drop_table("push_endpoints")
    op.drop_index("ix_sessions_user_identity", table_name="sessions")
    op.drop_table("sessions")

"""Initial schema: requests, request items, profiles, sessions, audit log.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    # ── Standalone tables (no FKs) ─────────────────────────────────────

    op.create_table(
        "audit_log",
        sa.Column("event_type", sa.String(100), nullable=False, index=True),
        sa.Column("request_id", postgresql.UUID(as_uuid=True), index=True),
        sa.Column("actor_id", sa.String(100), comment="Student or staff user ID, or 'system'"),
        sa.Column("actor_role", sa.String(50), comment="student, staff, system"),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text())),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_audit_log"),
    )

    op.create_table(
        "profiles",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="student"),
        sa.Column("email", sa.String(255)),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_profiles"),
        sa.UniqueConstraint("user_id", name="uq_profiles_user_id"),
    )

    op.create_table(
        "auth_sessions",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_auth_sessions"),
        sa.UniqueConstraint("token_hash", name="uq_auth_sessions_token_hash"),
    )

    op.create_table(
        "requests",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("request_type", sa.String(30), nullable=False, index=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending", index=True),
        sa.Column(
            "request_data",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            comment="Payload snapshot at submission time",
        ),
        sa.Column("remarks", sa.Text()),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("is_flagged", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("id_number", sa.String(50), nullable=False, index=True),
        sa.Column("college", sa.String(200), nullable=False),
        sa.Column("program", sa.String(300), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("middle_name", sa.String(100)),
        sa.Column("suffix", sa.String(20)),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone_number", sa.String(30), nullable=False),
        sa.Column("facebook", sa.String(255)),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_requests"),
    )
    # Queue position: pending rows ranked by (created_at, id)
    op.create_index(
        "ix_requests_pending_queue",
        "requests",
        ["created_at", "id"],
        postgresql_where=sa.text("status = 'pending'"),
    )

    # ── Dependent tables ───────────────────────────────────────────────

    op.create_table(
        "request_items",
        sa.Column("request_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column(
            "group_id",
            postgresql.UUID(as_uuid=True),
            index=True,
            comment="Shared by the drop/add pair of a change request",
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("action", sa.String(10), nullable=False),
        sa.Column("course_code", sa.String(50), nullable=False),
        sa.Column("descriptive_title", sa.String(300)),
        sa.Column("section_code", sa.String(50)),
        sa.Column("time", sa.String(100)),
        sa.Column("day", sa.String(50)),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("remarks", sa.Text()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_request_items"),
        sa.ForeignKeyConstraint(
            ["request_id"],
            ["requests.id"],
            name="fk_request_items_request_id_requests",
            ondelete="CASCADE",
        ),
    )


def downgrade() -> None:
    op.drop_table("request_items")
    op.drop_index("ix_requests_pending_queue", table_name="requests")
    op.drop_table("requests")
    op.drop_table("auth_sessions")
    op.drop_table("profiles")
    op.drop_table("audit_log")

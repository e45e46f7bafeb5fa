"""Create users and telegram_link_sessions tables.

Revision ID: 001_users_telegram_link
Revises:
Create Date: 2026-10-18

users.telegram_id is the linked Telegram identity (globally unique).
telegram_link_sessions holds at most one pending linking attempt per user.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001_users_telegram_link"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # pgcrypto provides gen_random_uuid() for UUID primary keys
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "users",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("telegram_id", sa.String(64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_user_email", "users", ["email"], unique=True)
    # Partial: many users have no linked identity
    op.create_index(
        "idx_user_telegram_id",
        "users",
        ["telegram_id"],
        unique=True,
        postgresql_where=sa.text("telegram_id IS NOT NULL"),
    )

    op.create_table(
        "telegram_link_sessions",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "user_id",
            sa.UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("code", sa.String(8), nullable=False),
        sa.Column("telegram_id_hint", sa.String(64), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_telegram_link_session_user",
        "telegram_link_sessions",
        ["user_id"],
        unique=True,
    )
    op.create_index(
        "idx_telegram_link_session_code",
        "telegram_link_sessions",
        ["code"],
        unique=True,
    )
    # Startup cleanup deletes by deadline
    op.create_index(
        "idx_telegram_link_session_expires",
        "telegram_link_sessions",
        ["expires_at"],
    )


def downgrade() -> None:
    op.drop_index(
        "idx_telegram_link_session_expires", table_name="telegram_link_sessions"
    )
    op.drop_index("idx_telegram_link_session_code", table_name="telegram_link_sessions")
    op.drop_index("idx_telegram_link_session_user", table_name="telegram_link_sessions")
    op.drop_table("telegram_link_sessions")
    op.drop_index("idx_user_telegram_id", table_name="users")
    op.drop_index("idx_user_email", table_name="users")
    op.drop_table("users")

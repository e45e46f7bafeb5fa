"""Telegram link session model - pending account-linking attempts.

One row per user at most. Rows are never updated in place: a new linking
attempt deletes and replaces the previous row, and a row is deleted when it
is consumed by a successful link, cancelled, or found expired.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatlink.models.base import Base, as_utc

if TYPE_CHECKING:
    from chatlink.models.user import User


class TelegramLinkSession(Base):
    """Pending verification attempt, the authority for code validity and expiry.

    Attributes:
        id: UUID primary key.
        user_id: Owning account. Unique: at most one pending session per user.
        code: 8-character uppercase hex token. Unique across live sessions.
        telegram_id_hint: Numeric Telegram id when the caller named a chat
            up front (push-code variant). NULL for bot-initiated linking.
        expires_at: Absolute deadline (created_at + TTL).
        created_at: Insert timestamp.
    """

    __tablename__ = "telegram_link_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    code: Mapped[str] = mapped_column(
        String(8),
        unique=True,
        nullable=False,
    )
    telegram_id_hint: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    # Relationships
    user: Mapped["User"] = relationship(
        "User",
        back_populates="telegram_link_session",
    )

    def is_expired(self, now: datetime) -> bool:
        """Check whether the session deadline has passed.

        A session is matchable strictly before ``expires_at``.

        Args:
            now: Current time (timezone-aware).

        Returns:
            True if ``now`` is at or after the deadline.
        """
        return now >= as_utc(self.expires_at)

"""User model - the account an external chat identity is linked to.

Only the columns the linking engine reads or writes are mapped here; the
rest of the account schema belongs to the surrounding application.
"""

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatlink.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from chatlink.models.telegram_link_session import TelegramLinkSession


class User(Base, TimestampMixin):
    """User account.

    Attributes:
        id: UUID primary key.
        email: Unique email address.
        name: Display name, used in the chat success reply.
        telegram_id: Linked Telegram user id. NULL = not linked. Globally
            unique; set only by a successful link, cleared by unlink.
        created_at: Account creation timestamp (from TimestampMixin).
        updated_at: Last modification timestamp (from TimestampMixin).
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    telegram_id: Mapped[str | None] = mapped_column(
        String(64),
        unique=True,
        nullable=True,
    )

    # Relationships
    telegram_link_session: Mapped["TelegramLinkSession | None"] = relationship(
        "TelegramLinkSession",
        back_populates="user",
        cascade="all, delete-orphan",
        uselist=False,
    )

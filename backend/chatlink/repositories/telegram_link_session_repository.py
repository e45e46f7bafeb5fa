"""Repository for TelegramLinkSession CRUD operations.

The durable session store: pending linking attempts keyed by user and by
code. Single-use and time-limited; rows are replaced, never updated.
"""

import uuid
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from chatlink.models.telegram_link_session import TelegramLinkSession


class LinkingCodeCollisionError(Exception):
    """A new session could not be stored because its code is already taken.

    Callers regenerate the code and retry; the session passed to
    ``replace_for_user`` must be rolled back first.
    """

    def __init__(self, user_id: uuid.UUID) -> None:
        super().__init__(f"Linking code collision for user {user_id}")
        self.user_id = user_id


class TelegramLinkSessionRepository:
    """Stateless repository for TelegramLinkSession table operations.

    All methods are static; there is no instance state.
    """

    @staticmethod
    async def replace_for_user(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        code: str,
        expires_at: datetime,
        telegram_id_hint: str | None = None,
    ) -> TelegramLinkSession:
        """Delete any session for ``user_id`` and insert a new one.

        Both statements run in the caller's transaction, so the replacement is
        atomic once committed.

        Args:
            db: Async database session.
            user_id: Owning user.
            code: Normalized (uppercase) 8-character code.
            expires_at: Session deadline.
            telegram_id_hint: Numeric Telegram id for the push-code variant.

        Returns:
            Created TelegramLinkSession.

        Raises:
            LinkingCodeCollisionError: If ``code`` is held by another session.
        """
        await db.execute(
            delete(TelegramLinkSession).where(TelegramLinkSession.user_id == user_id)
        )
        link_session = TelegramLinkSession(
            user_id=user_id,
            code=code,
            expires_at=expires_at,
            telegram_id_hint=telegram_id_hint,
        )
        db.add(link_session)
        try:
            await db.flush()
        except IntegrityError as exc:
            raise LinkingCodeCollisionError(user_id) from exc
        await db.refresh(link_session)
        return link_session

    @staticmethod
    async def get_by_code(db: AsyncSession, code: str) -> TelegramLinkSession | None:
        """Look up a session by its code.

        Args:
            db: Async database session.
            code: Normalized (uppercase) code.

        Returns:
            TelegramLinkSession if found, None otherwise.
        """
        stmt = select(TelegramLinkSession).where(TelegramLinkSession.code == code)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_user_id(
        db: AsyncSession, user_id: uuid.UUID
    ) -> TelegramLinkSession | None:
        """Look up the pending session of a user.

        Args:
            db: Async database session.
            user_id: Owning user.

        Returns:
            TelegramLinkSession if the user has one, None otherwise.
        """
        stmt = select(TelegramLinkSession).where(
            TelegramLinkSession.user_id == user_id
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_all(db: AsyncSession) -> Sequence[TelegramLinkSession]:
        """Return every stored session, oldest first."""
        stmt = select(TelegramLinkSession).order_by(TelegramLinkSession.created_at)
        result = await db.execute(stmt)
        return result.scalars().all()

    @staticmethod
    async def delete_for_user(db: AsyncSession, user_id: uuid.UUID) -> int:
        """Delete the session of a user. Deleting nothing is not an error.

        Args:
            db: Async database session.
            user_id: Owning user.

        Returns:
            Number of deleted rows (0 or 1).
        """
        stmt = delete(TelegramLinkSession).where(
            TelegramLinkSession.user_id == user_id
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count

    @staticmethod
    async def delete_by_id(db: AsyncSession, session_id: uuid.UUID) -> int:
        """Delete a session by primary key. Deleting nothing is not an error.

        Args:
            db: Async database session.
            session_id: Session primary key.

        Returns:
            Number of deleted rows (0 or 1).
        """
        stmt = delete(TelegramLinkSession).where(TelegramLinkSession.id == session_id)
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count

    @staticmethod
    async def delete_expired(db: AsyncSession, *, now: datetime) -> int:
        """Delete all sessions whose deadline has passed.

        Args:
            db: Async database session.
            now: Current time.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(TelegramLinkSession).where(
            TelegramLinkSession.expires_at <= now,
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count

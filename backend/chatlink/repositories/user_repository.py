"""Repository for User operations needed by account linking.

Provides the account-store side of the linking contract: look up a user by
linked Telegram identity and set or clear that identity.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chatlink.models.user import User


class UserRepository:
    """Stateless repository for User table operations.

    All methods are static; there is no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: uuid.UUID) -> User | None:
        """Fetch a user by primary key.

        Args:
            db: Async database session.
            user_id: UUID primary key.

        Returns:
            User if found, None otherwise.
        """
        return await db.get(User, user_id)

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        email: str,
        name: str | None = None,
        telegram_id: str | None = None,
    ) -> User:
        """Create a new user.

        Email is normalized to lowercase before storage.

        Args:
            db: Async database session.
            email: User email address.
            name: Display name.
            telegram_id: Already-linked Telegram id, if any.

        Returns:
            Created User with database-generated fields populated.

        Raises:
            sqlalchemy.exc.IntegrityError: If email or telegram_id already exists.
        """
        user = User(email=email.lower(), name=name, telegram_id=telegram_id)
        db.add(user)
        await db.flush()
        await db.refresh(user)
        return user

    @staticmethod
    async def get_by_telegram_id(db: AsyncSession, telegram_id: str) -> User | None:
        """Fetch the user a Telegram identity is linked to.

        Args:
            db: Async database session.
            telegram_id: Numeric Telegram user id as a string.

        Returns:
            User if the identity is linked, None otherwise.
        """
        stmt = select(User).where(User.telegram_id == telegram_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_other_by_telegram_id(
        db: AsyncSession,
        telegram_id: str,
        *,
        exclude_user_id: uuid.UUID,
    ) -> User | None:
        """Fetch a user other than ``exclude_user_id`` holding ``telegram_id``.

        Used for the identity uniqueness check before linking.

        Args:
            db: Async database session.
            telegram_id: Telegram id about to be linked.
            exclude_user_id: The account the identity would be linked to.

        Returns:
            The conflicting User, or None if the identity is free.
        """
        stmt = select(User).where(
            User.telegram_id == telegram_id,
            User.id != exclude_user_id,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def set_telegram_id(
        db: AsyncSession,
        user_id: uuid.UUID,
        telegram_id: str | None,
    ) -> User | None:
        """Set or clear the linked Telegram identity.

        Args:
            db: Async database session.
            user_id: UUID of the user.
            telegram_id: New identity, or None to unlink.

        Returns:
            Updated User if found, None if user does not exist.

        Raises:
            sqlalchemy.exc.IntegrityError: If the identity is linked elsewhere.
        """
        user = await db.get(User, user_id)
        if user is None:
            return None
        user.telegram_id = telegram_id
        await db.flush()
        return user

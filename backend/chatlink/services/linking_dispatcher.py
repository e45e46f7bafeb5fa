"""Inbound message dispatch for account linking.

Decides what one inbound chat message means for the pending linking
sessions and applies the resulting state change:

1. No code in the text → help or usage reply, no state change.
2. Code unknown → "invalid code". A code this process retired gets
   "expired" if its deadline passed and "no longer active" otherwise.
3. Code stored but its user has no active registry entry → stale; the
   stored row is deleted.
4. Deadline reached → expired; the session is retired.
5. Sender differs from the session's Telegram id hint → rejected; the
   session stays active.
6. Identity linked to another account → rejected; the session stays active.
7. Otherwise → identity linked, stored session consumed, session retired.

Every call runs inside the linking service's serialization lock. Replies
are composed here and sent by the caller after the lock is released.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatlink.providers.errors import ProviderError
from chatlink.providers.messaging.base import MessagingProvider, ProviderUpdate
from chatlink.repositories.telegram_link_session_repository import (
    TelegramLinkSessionRepository,
)
from chatlink.repositories.user_repository import UserRepository
from chatlink.services.linking_codes import parse_message
from chatlink.services.linking_registry import LinkingSessionRegistry, RetireReason

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
RetireSession = Callable[..., Awaitable[bool]]


def utc_now() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(UTC)


class DispatchOutcome(str, Enum):
    """What a dispatched message did."""

    IGNORED = "ignored"
    HELP = "help"
    USAGE = "usage"
    INVALID_CODE = "invalid_code"
    STALE = "stale"
    EXPIRED = "expired"
    WRONG_SENDER = "wrong_sender"
    IDENTITY_CONFLICT = "identity_conflict"
    LINKED = "linked"


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of one message plus the reply to send, if any.

    Attributes:
        outcome: Classification of the message.
        reply: Text to send back to the sender, or None.
        user_id: Session owner the code resolved to, if any.
    """

    outcome: DispatchOutcome
    reply: str | None = None
    user_id: uuid.UUID | None = None


class LinkingReplies:
    """Reply texts sent to the chat, parameterized by product name and TTL."""

    def __init__(self, *, app_name: str, ttl_minutes: int) -> None:
        self.app_name = app_name
        self.ttl_minutes = ttl_minutes

    def help(self) -> str:
        return (
            f"👋 Hello! To link your Telegram account to {self.app_name}:\n\n"
            f"1. Go to your profile in the {self.app_name}\n"
            "2. Click 'Link Telegram Account'\n"
            "3. Click the button to open Telegram (or copy the code and send it here)\n\n"
            f"Your code will be valid for {self.ttl_minutes} minutes."
        )

    def usage(self) -> str:
        return (
            "📝 Please send your 8-character verification code to link your account.\n\n"
            "To get a code:\n"
            f"1. Open the {self.app_name}\n"
            "2. Go to your Profile\n"
            "3. Click 'Link Telegram Account'"
        )

    def invalid_code(self) -> str:
        return "❌ Invalid verification code. Please check the code and try again."

    def stale(self) -> str:
        return (
            "❌ This verification code is no longer active. "
            f"Please generate a new code from the {self.app_name}."
        )

    def expired(self) -> str:
        return (
            "❌ Verification code has expired. "
            f"Please generate a new code from the {self.app_name}."
        )

    def wrong_sender(self) -> str:
        return (
            "❌ This verification code was sent to a different Telegram account. "
            "Please send it from the account that received it."
        )

    def identity_conflict(self) -> str:
        return "❌ This Telegram account is already linked to another user."

    def linked(self, display_name: str) -> str:
        return (
            "✅ Successfully linked! Your Telegram account is now connected to "
            f"{display_name}.\n\n"
            f"You will now receive notifications from the {self.app_name}."
        )

    def pushed_code(self, code: str) -> str:
        return (
            f"🔐 Verification Code for {self.app_name}\n\n"
            f"Your verification code is: {code}\n\n"
            f"This code will expire in {self.ttl_minutes} minutes.\n\n"
            f"Enter this code in the {self.app_name} to link your Telegram account."
        )


class LinkingDispatcher:
    """Matches inbound codes to sessions and applies the outcome.

    Args:
        session_factory: Async session factory for DB access.
        registry: Active session registry (read; mutated only via ``retire``).
        retire: Awaitable ``retire(user_id, *, delete_record, reason)`` that
            removes the registry entry and, if it was the last, stops the poll
            loop. Must not take the serialization lock (the caller already
            holds it).
        provider: Messaging provider used for replies.
        replies: Reply texts.
        clock: Source of "now" for deadline checks.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: LinkingSessionRegistry,
        retire: RetireSession,
        provider: MessagingProvider,
        replies: LinkingReplies,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._retire = retire
        self._provider = provider
        self._replies = replies
        self._clock = clock

    async def dispatch(self, update: ProviderUpdate) -> DispatchResult:
        """Classify one inbound message and apply its state change.

        Args:
            update: Inbound message.

        Returns:
            DispatchResult with the outcome and reply text.
        """
        if update.sender_identity is None or update.text is None:
            return DispatchResult(DispatchOutcome.IGNORED)

        sender = update.sender_identity
        parsed = parse_message(update.text)
        if parsed.code is None:
            if parsed.is_command:
                return DispatchResult(DispatchOutcome.HELP, self._replies.help())
            return DispatchResult(DispatchOutcome.USAGE, self._replies.usage())

        code = parsed.code
        async with self._session_factory() as db:
            link_session = await TelegramLinkSessionRepository.get_by_code(db, code)
            if link_session is None:
                reason = self._registry.retired_reason(code)
                if reason is RetireReason.EXPIRED:
                    return DispatchResult(
                        DispatchOutcome.EXPIRED, self._replies.expired()
                    )
                if reason is not None:
                    return DispatchResult(DispatchOutcome.STALE, self._replies.stale())
                return DispatchResult(
                    DispatchOutcome.INVALID_CODE, self._replies.invalid_code()
                )

            user_id = link_session.user_id
            entry = self._registry.get(user_id)
            if entry is None:
                await TelegramLinkSessionRepository.delete_by_id(db, link_session.id)
                await db.commit()
                logger.info("Discarded stale linking session for user %s", user_id)
                return DispatchResult(
                    DispatchOutcome.STALE, self._replies.stale(), user_id
                )
            if entry.code != code:
                # Registry and store disagree; leave both untouched.
                logger.error(
                    "Registry code mismatch for user %s; treating code as unknown",
                    user_id,
                )
                return DispatchResult(
                    DispatchOutcome.INVALID_CODE, self._replies.invalid_code()
                )

            if link_session.is_expired(self._clock()):
                await TelegramLinkSessionRepository.delete_by_id(db, link_session.id)
                await db.commit()
                await self._retire(
                    user_id, delete_record=False, reason=RetireReason.EXPIRED
                )
                logger.info("Linking code expired for user %s", user_id)
                return DispatchResult(
                    DispatchOutcome.EXPIRED, self._replies.expired(), user_id
                )

            hint = link_session.telegram_id_hint
            if hint is not None and hint != sender:
                logger.warning(
                    "Linking code for user %s sent from unexpected Telegram id",
                    user_id,
                )
                return DispatchResult(
                    DispatchOutcome.WRONG_SENDER, self._replies.wrong_sender(), user_id
                )

            conflict = await UserRepository.get_other_by_telegram_id(
                db, sender, exclude_user_id=user_id
            )
            if conflict is not None:
                logger.info(
                    "Telegram identity already linked elsewhere; user %s not linked",
                    user_id,
                )
                return DispatchResult(
                    DispatchOutcome.IDENTITY_CONFLICT,
                    self._replies.identity_conflict(),
                    user_id,
                )

            user = await UserRepository.get_by_id(db, user_id)
            if user is None:
                await TelegramLinkSessionRepository.delete_by_id(db, link_session.id)
                await db.commit()
                await self._retire(user_id, delete_record=False)
                logger.error("Linking session owner %s no longer exists", user_id)
                return DispatchResult(
                    DispatchOutcome.STALE, self._replies.stale(), user_id
                )
            display_name = user.name or user.email

            try:
                await UserRepository.set_telegram_id(db, user_id, sender)
                await TelegramLinkSessionRepository.delete_by_id(db, link_session.id)
                await db.commit()
            except IntegrityError:
                # Lost a race with another writer for the same identity.
                await db.rollback()
                return DispatchResult(
                    DispatchOutcome.IDENTITY_CONFLICT,
                    self._replies.identity_conflict(),
                    user_id,
                )

        await self._retire(user_id, delete_record=False, reason=RetireReason.LINKED)
        logger.info("Linked Telegram account for user %s", user_id)
        return DispatchResult(
            DispatchOutcome.LINKED, self._replies.linked(display_name), user_id
        )

    async def send_reply(self, chat_id: str, text: str) -> bool:
        """Send a reply; delivery failures are logged, never raised.

        Args:
            chat_id: Recipient chat.
            text: Message text.

        Returns:
            True if the message was sent.
        """
        try:
            await self._provider.send_message(chat_id, text)
        except ProviderError as e:
            logger.warning(
                "Failed to send Telegram reply (%s): %s", type(e).__name__, e
            )
            return False
        return True

"""Telegram account-linking service.

Owns the linking lifecycle: the stored session, its in-process registry
entry and expiry timer, and the poll loop that runs while any session is
active. Every state transition (start, stop, expiry, message dispatch) runs
under one asyncio lock, so transitions never interleave and the poll loop
is running exactly when the registry is non-empty.

Two ways to link:
- Inbound: ``initiate_linking`` issues a code the user sends to the bot;
  the poll loop matches it and binds the sender's Telegram id.
- Pushed: ``send_code`` sends a code to a chat the user names, then
  ``verify_code`` checks the code the user types back.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatlink.core.config import Settings
from chatlink.core.errors import (
    InternalError,
    InvalidStateError,
    NotFoundError,
    TelegramAlreadyLinkedError,
    TelegramDeliveryError,
    TelegramIdentityConflictError,
    TelegramNotConfiguredError,
    ValidationError,
)
from chatlink.models.base import as_utc
from chatlink.models.telegram_link_session import TelegramLinkSession
from chatlink.models.user import User
from chatlink.providers.errors import ChatNotFoundError, ProviderError
from chatlink.providers.messaging.base import (
    BotInfo,
    MessagingProvider,
    ProviderUpdate,
)
from chatlink.repositories.telegram_link_session_repository import (
    LinkingCodeCollisionError,
    TelegramLinkSessionRepository,
)
from chatlink.repositories.user_repository import UserRepository
from chatlink.services.linking_codes import (
    generate_code,
    normalize_code,
    parse_telegram_identifier,
)
from chatlink.services.linking_dispatcher import (
    Clock,
    DispatchResult,
    LinkingDispatcher,
    LinkingReplies,
    utc_now,
)
from chatlink.services.linking_registry import LinkingSessionRegistry, RetireReason
from chatlink.services.telegram_update_poller import (
    DEFAULT_INTERVAL_SECONDS,
    TelegramUpdatePoller,
)

logger = logging.getLogger(__name__)

# Fresh codes drawn before giving up on a unique one
_MAX_CODE_ATTEMPTS = 3


@dataclass(frozen=True)
class IssuedLinkingCode:
    """A code issued for the user to send to the bot.

    Attributes:
        code: 8-character code.
        expires_at: Session deadline.
        expires_in_minutes: Lifetime of the code.
        bot_username: Bot the code must be sent to.
        deep_link: ``https://t.me/<bot>?start=<code>`` link.
        instructions: Human-readable next step.
    """

    code: str
    expires_at: datetime
    expires_in_minutes: int
    bot_username: str
    deep_link: str
    instructions: str


@dataclass(frozen=True)
class PushedLinkingCode:
    """A code delivered to the user's chat by the bot.

    Attributes:
        chat_id: Numeric chat the code was delivered to.
        expires_at: Session deadline.
        expires_in_minutes: Lifetime of the code.
    """

    chat_id: str
    expires_at: datetime
    expires_in_minutes: int


@dataclass(frozen=True)
class LinkingStatus:
    """Linked identity and pending session of one user.

    Attributes:
        telegram_id: Linked Telegram id, or None.
        pending_code: Active linking code, or None.
        pending_expires_at: Deadline of the active code, or None.
    """

    telegram_id: str | None
    pending_code: str | None = None
    pending_expires_at: datetime | None = None

    @property
    def is_linked(self) -> bool:
        return self.telegram_id is not None


class TelegramLinkingService:
    """Lifecycle controller for Telegram account linking.

    Lifecycle:
    - recover() rebuilds the registry from stored sessions on startup.
    - start()/stop() register and retire one user's session.
    - shutdown() cancels the poll loop and every timer; stored sessions stay.

    Args:
        session_factory: Async session factory for DB access.
        provider: Messaging provider (Bot API adapter or mock).
        enabled: Whether the bot is configured; linking operations fail
            with TelegramNotConfiguredError when False.
        bot_username: Bot username for deep links.
        code_ttl: Lifetime of a linking code.
        poll_interval_seconds: Pause between poll cycles.
        app_display_name: Product name used in chat replies.
        rehydrate_on_startup: Whether recover() restores stored sessions.
        clock: Source of "now" for deadlines.
        code_generator: Source of fresh codes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        provider: MessagingProvider,
        *,
        enabled: bool = True,
        bot_username: str = "",
        code_ttl: timedelta = timedelta(minutes=10),
        poll_interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        app_display_name: str = "MDT App",
        rehydrate_on_startup: bool = True,
        clock: Clock = utc_now,
        code_generator: Callable[[], str] = generate_code,
    ) -> None:
        self._session_factory = session_factory
        self._provider = provider
        self._enabled = enabled
        self._bot_username = bot_username.removeprefix("@")
        self._code_ttl = code_ttl
        self._rehydrate_on_startup = rehydrate_on_startup
        self._clock = clock
        self._code_generator = code_generator

        self._lock = asyncio.Lock()
        self._registry = LinkingSessionRegistry()
        self._expiry_tasks: set[asyncio.Task[None]] = set()
        self._reply_tasks: set[asyncio.Task[bool]] = set()
        self._replies = LinkingReplies(
            app_name=app_display_name, ttl_minutes=self.code_ttl_minutes
        )
        self._dispatcher = LinkingDispatcher(
            session_factory,
            self._registry,
            self._stop_locked,
            provider,
            self._replies,
            clock=clock,
        )
        self._poller = TelegramUpdatePoller(
            provider,
            self.handle_update,
            interval_seconds=poll_interval_seconds,
        )

    @classmethod
    def from_settings(
        cls,
        config: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        provider: MessagingProvider,
    ) -> "TelegramLinkingService":
        """Build the service from application settings."""
        return cls(
            session_factory,
            provider,
            enabled=config.telegram_configured,
            bot_username=config.telegram_bot_name,
            code_ttl=timedelta(minutes=config.linking_code_ttl_minutes),
            poll_interval_seconds=config.linking_poll_interval_seconds,
            app_display_name=config.app_display_name,
            rehydrate_on_startup=config.linking_rehydrate_on_startup,
        )

    # =========================================================================
    # Introspection
    # =========================================================================

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def is_polling(self) -> bool:
        """Whether the poll loop is running."""
        return self._poller.is_running

    @property
    def active_session_count(self) -> int:
        """Number of sessions in the registry."""
        return len(self._registry)

    @property
    def code_ttl_minutes(self) -> int:
        return int(self._code_ttl.total_seconds() // 60)

    @property
    def registry(self) -> LinkingSessionRegistry:
        return self._registry

    @property
    def poller(self) -> TelegramUpdatePoller:
        return self._poller

    # =========================================================================
    # Lifecycle transitions
    # =========================================================================

    async def start(
        self,
        user_id: uuid.UUID,
        code: str,
        *,
        telegram_id_hint: str | None = None,
    ) -> TelegramLinkSession:
        """Persist and register a session, replacing the user's previous one.

        Args:
            user_id: Owning user.
            code: Normalized code.
            telegram_id_hint: Telegram id the code must arrive from, if known.

        Returns:
            The stored TelegramLinkSession.

        Raises:
            LinkingCodeCollisionError: If ``code`` is already taken.
        """
        async with self._lock:
            return await self._start_locked(
                user_id, code, telegram_id_hint=telegram_id_hint
            )

    async def stop(self, user_id: uuid.UUID) -> bool:
        """Retire a user's session. Safe to call when there is none.

        Returns:
            True if the user had an active session.
        """
        async with self._lock:
            return await self._stop_locked(user_id)

    async def _start_locked(
        self,
        user_id: uuid.UUID,
        code: str,
        *,
        telegram_id_hint: str | None = None,
    ) -> TelegramLinkSession:
        now = self._clock()
        expires_at = now + self._code_ttl
        async with self._session_factory() as db:
            link_session = await TelegramLinkSessionRepository.replace_for_user(
                db,
                user_id=user_id,
                code=code,
                expires_at=expires_at,
                telegram_id_hint=telegram_id_hint,
            )
            await db.commit()

        self._registry.install(
            user_id,
            code,
            started_at=now,
            delay_seconds=self._code_ttl.total_seconds(),
            on_expire=self._on_timer,
        )
        if not self._poller.is_running:
            self._poller.start()
        logger.info(
            "Linking session started for user %s (active=%d)",
            user_id,
            len(self._registry),
        )
        return link_session

    async def _stop_locked(
        self,
        user_id: uuid.UUID,
        *,
        delete_record: bool = True,
        reason: RetireReason = RetireReason.CANCELLED,
    ) -> bool:
        entry = self._registry.remove(user_id, reason)
        if delete_record:
            async with self._session_factory() as db:
                await TelegramLinkSessionRepository.delete_for_user(db, user_id)
                await db.commit()
        if not self._registry and self._poller.is_running:
            await self._poller.stop()
        if entry is not None:
            logger.info(
                "Linking session stopped for user %s (active=%d)",
                user_id,
                len(self._registry),
            )
        return entry is not None

    def _on_timer(self, user_id: uuid.UUID, code: str) -> None:
        """Expiry timer callback; runs the retirement as a task."""
        task = asyncio.create_task(self._expire(user_id, code))
        self._expiry_tasks.add(task)
        task.add_done_callback(self._expiry_tasks.discard)

    async def _expire(self, user_id: uuid.UUID, code: str) -> None:
        """Retire a session whose deadline passed.

        A fire for a session that has since been replaced or retired is a
        no-op.
        """
        async with self._lock:
            entry = self._registry.get(user_id)
            if entry is None or entry.code != code:
                return
            logger.info("Linking code expired for user %s", user_id)
            await self._stop_locked(user_id, reason=RetireReason.EXPIRED)

    async def handle_update(self, update: ProviderUpdate) -> DispatchResult:
        """Dispatch one inbound message (poll loop or webhook).

        Dispatch runs under the lock. The reply is sent by a background task
        after the lock is released; stopping the poll loop never cuts a
        reply short, and the poller may move its cursor as soon as this
        returns.

        Returns:
            The DispatchResult of the message.
        """
        async with self._lock:
            result: DispatchResult = await self._dispatcher.dispatch(update)
        if result.reply is not None and update.sender_identity is not None:
            self._send_reply_later(update.sender_identity, result.reply)
        return result

    def _send_reply_later(self, chat_id: str, text: str) -> None:
        task = asyncio.create_task(self._dispatcher.send_reply(chat_id, text))
        self._reply_tasks.add(task)
        task.add_done_callback(self._reply_tasks.discard)

    async def recover(self) -> int:
        """Rebuild the registry from stored sessions.

        Expired rows are deleted; every other row gets a registry entry and
        a timer for its remaining lifetime.

        Returns:
            Number of sessions restored.
        """
        if not self._rehydrate_on_startup or not self._enabled:
            return 0

        async with self._lock:
            now = self._clock()
            async with self._session_factory() as db:
                purged = await TelegramLinkSessionRepository.delete_expired(db, now=now)
                rows = await TelegramLinkSessionRepository.list_all(db)
                await db.commit()

            for row in rows:
                expires_at = as_utc(row.expires_at)
                self._registry.install(
                    row.user_id,
                    row.code,
                    started_at=now,
                    delay_seconds=(expires_at - now).total_seconds(),
                    on_expire=self._on_timer,
                )
            if self._registry and not self._poller.is_running:
                self._poller.start()

        logger.info(
            "Recovered %d linking session(s), purged %d expired", len(rows), purged
        )
        return len(rows)

    async def shutdown(self) -> None:
        """Stop polling, cancel every timer and flush pending replies.

        Stored sessions are kept.
        """
        async with self._lock:
            self._registry.clear()
            await self._poller.stop()
        for task in list(self._expiry_tasks):
            task.cancel()
        if self._expiry_tasks:
            await asyncio.gather(*self._expiry_tasks, return_exceptions=True)
        if self._reply_tasks:
            await asyncio.gather(*self._reply_tasks, return_exceptions=True)
        logger.info("Telegram linking service shut down")

    # =========================================================================
    # Caller-facing operations
    # =========================================================================

    def _ensure_enabled(self) -> None:
        if not self._enabled:
            raise TelegramNotConfiguredError()

    async def _load_unlinked_user(self, user_id: uuid.UUID) -> User:
        async with self._session_factory() as db:
            user = await UserRepository.get_by_id(db, user_id)
        if user is None:
            raise NotFoundError("User", str(user_id))
        if user.telegram_id is not None:
            raise TelegramAlreadyLinkedError()
        return user

    async def _start_with_fresh_code(
        self, user_id: uuid.UUID, *, telegram_id_hint: str | None = None
    ) -> TelegramLinkSession:
        for attempt in range(1, _MAX_CODE_ATTEMPTS + 1):
            code = self._code_generator()
            try:
                return await self._start_locked(
                    user_id, code, telegram_id_hint=telegram_id_hint
                )
            except LinkingCodeCollisionError:
                logger.warning(
                    "Linking code collision for user %s (attempt %d/%d)",
                    user_id,
                    attempt,
                    _MAX_CODE_ATTEMPTS,
                )
        raise InternalError("Could not allocate a unique linking code")

    async def initiate_linking(self, user_id: uuid.UUID) -> IssuedLinkingCode:
        """Issue a code for the user to send to the bot.

        Replaces any pending session of the user.

        Args:
            user_id: Requesting user.

        Returns:
            IssuedLinkingCode with the deep link and instructions.

        Raises:
            TelegramNotConfiguredError: Bot disabled or unnamed.
            NotFoundError: Unknown user.
            TelegramAlreadyLinkedError: User already has a linked identity.
        """
        self._ensure_enabled()
        if not self._bot_username:
            raise TelegramNotConfiguredError()

        async with self._lock:
            await self._load_unlinked_user(user_id)
            link_session = await self._start_with_fresh_code(user_id)

        code = link_session.code
        return IssuedLinkingCode(
            code=code,
            expires_at=as_utc(link_session.expires_at),
            expires_in_minutes=self.code_ttl_minutes,
            bot_username=self._bot_username,
            deep_link=f"https://t.me/{self._bot_username}?start={code}",
            instructions=(
                f'Send this code "{code}" to @{self._bot_username} '
                "on Telegram to link your account."
            ),
        )

    async def cancel_linking(self, user_id: uuid.UUID) -> bool:
        """Cancel the user's pending session. Safe when there is none.

        Returns:
            True if a session was active.
        """
        return await self.stop(user_id)

    async def send_code(
        self, user_id: uuid.UUID, telegram_identifier: str
    ) -> PushedLinkingCode:
        """Push a fresh code to a chat named by the user.

        The code is delivered first; the session is stored only if the bot
        could reach the chat. The resolved numeric chat id becomes the
        session's Telegram id hint.

        Args:
            user_id: Requesting user.
            telegram_identifier: ``@username`` or numeric Telegram id.

        Returns:
            PushedLinkingCode describing the delivery.

        Raises:
            TelegramNotConfiguredError: Bot disabled.
            ValidationError: Malformed identifier.
            NotFoundError: Unknown user.
            TelegramAlreadyLinkedError: User already linked.
            TelegramIdentityConflictError: Target identity linked elsewhere.
            TelegramDeliveryError: The bot could not message the chat.
        """
        self._ensure_enabled()
        try:
            target = parse_telegram_identifier(telegram_identifier)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        await self._load_unlinked_user(user_id)
        if target.numeric_id is not None:
            await self._ensure_identity_free(user_id, target.numeric_id)

        code = self._code_generator()
        try:
            sent = await self._provider.send_message(
                target.chat_id, self._replies.pushed_code(code)
            )
        except ChatNotFoundError as e:
            bot = f"@{self._bot_username}" if self._bot_username else "the bot"
            raise TelegramDeliveryError(
                f"Could not find Telegram user {target.chat_id}. Make sure you "
                f"have started a conversation with {bot} first (send /start)."
            ) from e
        except ProviderError as e:
            logger.warning("Failed to push linking code (%s)", type(e).__name__)
            raise TelegramDeliveryError(
                "Failed to send verification code via Telegram. Please try again."
            ) from e

        async with self._lock:
            await self._load_unlinked_user(user_id)
            await self._ensure_identity_free(user_id, sent.chat_id)
            try:
                link_session = await self._start_locked(
                    user_id, code, telegram_id_hint=sent.chat_id
                )
            except LinkingCodeCollisionError as e:
                raise InternalError(
                    "Could not allocate a unique linking code. Please try again."
                ) from e

        return PushedLinkingCode(
            chat_id=sent.chat_id,
            expires_at=as_utc(link_session.expires_at),
            expires_in_minutes=self.code_ttl_minutes,
        )

    async def _ensure_identity_free(self, user_id: uuid.UUID, telegram_id: str) -> None:
        async with self._session_factory() as db:
            other = await UserRepository.get_other_by_telegram_id(
                db, telegram_id, exclude_user_id=user_id
            )
        if other is not None:
            raise TelegramIdentityConflictError()

    async def verify_code(self, user_id: uuid.UUID, code: str) -> User:
        """Complete a pushed-code session with the code the user typed.

        A wrong code leaves the session active. An expired code retires it.

        Args:
            user_id: Requesting user.
            code: Code as typed.

        Returns:
            The linked User.

        Raises:
            TelegramNotConfiguredError: Bot disabled.
            ValidationError: Code is not 8 hex characters.
            NotFoundError: Unknown user.
            TelegramAlreadyLinkedError: User already linked.
            InvalidStateError: No session, wrong code, expired, or no hint.
            TelegramIdentityConflictError: Identity linked elsewhere.
        """
        self._ensure_enabled()
        normalized = normalize_code(code)
        if normalized is None:
            raise ValidationError("Verification code must be 8 hexadecimal characters")

        async with self._lock:
            user = await self._load_unlinked_user(user_id)
            async with self._session_factory() as db:
                link_session = await TelegramLinkSessionRepository.get_by_user_id(
                    db, user_id
                )
            entry = self._registry.get(user_id)

            if link_session is None or entry is None:
                if link_session is not None or entry is not None:
                    await self._stop_locked(user_id)
                raise InvalidStateError(
                    "No verification code found. Please request a new code."
                )
            if link_session.code != normalized:
                raise InvalidStateError("Invalid verification code")
            if link_session.is_expired(self._clock()):
                await self._stop_locked(user_id, reason=RetireReason.EXPIRED)
                raise InvalidStateError(
                    "Verification code has expired. Please request a new code."
                )
            telegram_id = link_session.telegram_id_hint
            if telegram_id is None:
                raise InvalidStateError(
                    "This code must be sent to the bot in Telegram to link your account."
                )

            await self._ensure_identity_free(user_id, telegram_id)
            async with self._session_factory() as db:
                try:
                    await UserRepository.set_telegram_id(db, user_id, telegram_id)
                    await TelegramLinkSessionRepository.delete_by_id(
                        db, link_session.id
                    )
                    await db.commit()
                except IntegrityError as e:
                    await db.rollback()
                    raise TelegramIdentityConflictError() from e
            await self._stop_locked(
                user_id, delete_record=False, reason=RetireReason.LINKED
            )

        user.telegram_id = telegram_id
        logger.info("Linked Telegram account for user %s via pushed code", user_id)
        await self._dispatcher.send_reply(
            telegram_id, self._replies.linked(user.name or user.email)
        )
        return user

    async def unlink(self, user_id: uuid.UUID) -> None:
        """Clear the user's linked identity and any pending session.

        Raises:
            NotFoundError: Unknown user.
        """
        async with self._lock:
            async with self._session_factory() as db:
                user = await UserRepository.set_telegram_id(db, user_id, None)
                if user is None:
                    raise NotFoundError("User", str(user_id))
                await db.commit()
            await self._stop_locked(user_id)
        logger.info("Unlinked Telegram account for user %s", user_id)

    async def get_status(self, user_id: uuid.UUID) -> LinkingStatus:
        """Return the user's linked identity and active code, if any.

        Raises:
            NotFoundError: Unknown user.
        """
        async with self._session_factory() as db:
            user = await UserRepository.get_by_id(db, user_id)
            if user is None:
                raise NotFoundError("User", str(user_id))
            link_session = await TelegramLinkSessionRepository.get_by_user_id(
                db, user_id
            )

        if (
            link_session is None
            or user_id not in self._registry
            or link_session.is_expired(self._clock())
        ):
            return LinkingStatus(telegram_id=user.telegram_id)
        return LinkingStatus(
            telegram_id=user.telegram_id,
            pending_code=link_session.code,
            pending_expires_at=as_utc(link_session.expires_at),
        )

    async def get_bot_info(self) -> BotInfo:
        """Return the bot identity from the provider.

        Raises:
            TelegramNotConfiguredError: Bot disabled.
            TelegramDeliveryError: The Bot API could not be reached.
        """
        self._ensure_enabled()
        try:
            return await self._provider.get_bot_info()
        except ProviderError as e:
            raise TelegramDeliveryError(
                "Failed to reach the Telegram Bot API"
            ) from e

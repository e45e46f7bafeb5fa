"""Mock messaging provider for testing.

MockMessagingProvider enables testing the linking engine without the
Telegram Bot API. It behaves like the Telegram feed: updates stay
available until a fetch passes an offset beyond them.
"""

import asyncio
from collections import deque

from chatlink.providers.errors import ChatNotFoundError
from chatlink.providers.messaging.base import (
    BotInfo,
    MessagingProvider,
    ProviderUpdate,
    SentMessage,
)


class MockMessagingProvider(MessagingProvider):
    """Mock provider for testing.

    Attributes:
        updates: Inbound feed; fetches return entries newer than the cursor.
        sent: Every message sent, as ``(chat_id, text)`` tuples.
        fetch_offsets: The ``since_offset`` of every fetch call.
        fetch_errors: Errors raised by upcoming fetches, one per call.
        send_error: If set, every send raises it.
        known_usernames: ``@username`` → numeric id resolution for sends.
        fetch_gate: If set, fetches block until the event is set.
        fetch_started: Set whenever a fetch begins (for cancellation tests).
        send_gate: If set, sends block until the event is set.
    """

    def __init__(self, *, bot_username: str = "mdt_test_bot") -> None:
        self.updates: list[ProviderUpdate] = []
        self.sent: list[tuple[str, str]] = []
        self.fetch_offsets: list[int] = []
        self.fetch_errors: deque[Exception] = deque()
        self.send_error: Exception | None = None
        self.known_usernames: dict[str, str] = {}
        self.fetch_gate: asyncio.Event | None = None
        self.fetch_started = asyncio.Event()
        self.send_gate: asyncio.Event | None = None
        self._bot_username = bot_username

    @property
    def provider_name(self) -> str:
        """Return 'mock' for testing."""
        return "mock"

    def add_message(self, offset: int, sender_identity: str, text: str) -> None:
        """Append an inbound text message to the feed."""
        self.updates.append(
            ProviderUpdate(offset=offset, sender_identity=sender_identity, text=text)
        )

    def messages_to(self, chat_id: str) -> list[str]:
        """Return the texts sent to ``chat_id``, oldest first."""
        return [text for target, text in self.sent if target == chat_id]

    async def send_message(self, chat_id: str, text: str) -> SentMessage:
        """Record the message and resolve usernames through ``known_usernames``."""
        if self.send_gate is not None:
            await self.send_gate.wait()
        if self.send_error is not None:
            raise self.send_error
        if chat_id.startswith("@"):
            resolved = self.known_usernames.get(chat_id[1:])
            if resolved is None:
                raise ChatNotFoundError("Bad Request: chat not found")
            chat_id = resolved
        self.sent.append((chat_id, text))
        return SentMessage(chat_id=chat_id)

    async def fetch_updates(self, since_offset: int) -> list[ProviderUpdate]:
        """Return queued updates newer than ``since_offset``."""
        self.fetch_offsets.append(since_offset)
        self.fetch_started.set()
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if self.fetch_errors:
            raise self.fetch_errors.popleft()
        return sorted(
            (u for u in self.updates if u.offset > since_offset),
            key=lambda u: u.offset,
        )

    async def get_bot_info(self) -> BotInfo:
        """Return a fixed bot identity."""
        return BotInfo(id=1, username=self._bot_username, first_name="MDT Bot")

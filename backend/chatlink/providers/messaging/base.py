"""Abstract base class and types for messaging providers.

The provider gateway consumed by the linking engine: send a message to an
identity, and fetch inbound messages newer than a cursor.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class ProviderUpdate:
    """One inbound update from the provider feed.

    Updates without text (stickers, joins, edits) still carry an offset so
    the cursor can move past them.

    Attributes:
        offset: Monotonically increasing provider offset (Telegram update_id).
        sender_identity: Numeric id of the sender as a string, if any.
        text: Message text, if the update is a text message.
    """

    offset: int
    sender_identity: str | None = None
    text: str | None = None


@dataclass(frozen=True)
class SentMessage:
    """Result of a successful send.

    Attributes:
        chat_id: Numeric id of the chat the message was delivered to. When
            the send was addressed by username, this is the resolved id.
    """

    chat_id: str


@dataclass(frozen=True)
class BotInfo:
    """Identity of the bot account.

    Attributes:
        id: Numeric bot id.
        username: Public bot username (without ``@``).
        first_name: Display name.
    """

    id: int
    username: str
    first_name: str


class MessagingProvider(ABC):
    """Abstract base class for messaging providers.

    Implementations must be safe to call from a single event loop; they are
    not required to be thread-safe. Every method may be cancelled mid-flight,
    in which case no result is produced.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider identifier (e.g., ``"telegram"``)."""
        ...

    @abstractmethod
    async def send_message(self, chat_id: str, text: str) -> SentMessage:
        """Send a text message.

        Args:
            chat_id: Numeric chat id, or ``@username``.
            text: Plain message text.

        Returns:
            SentMessage with the resolved numeric chat id.

        Raises:
            ProviderError: On API or transport failure.
        """
        ...

    @abstractmethod
    async def fetch_updates(self, since_offset: int) -> list[ProviderUpdate]:
        """Fetch updates with an offset greater than ``since_offset``.

        Args:
            since_offset: Highest offset already processed.

        Returns:
            Updates in ascending offset order (possibly empty).

        Raises:
            ProviderError: On API or transport failure.
        """
        ...

    @abstractmethod
    async def get_bot_info(self) -> BotInfo:
        """Return the bot's own identity.

        Raises:
            ProviderError: On API or transport failure.
        """
        ...

"""Messaging provider module.

Provider gateway interface for chat identities, and its adapters.
"""

from chatlink.providers.messaging.base import (
    BotInfo,
    MessagingProvider,
    ProviderUpdate,
    SentMessage,
)
from chatlink.providers.messaging.mock_adapter import MockMessagingProvider
from chatlink.providers.messaging.telegram_adapter import TelegramBotAdapter

__all__ = [
    # Base types
    "BotInfo",
    "MessagingProvider",
    "ProviderUpdate",
    "SentMessage",
    # Adapters
    "MockMessagingProvider",
    "TelegramBotAdapter",
]

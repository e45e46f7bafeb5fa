"""Provider factory functions.

Singleton pattern for the messaging provider instance.
"""

from chatlink.core.config import Settings, settings
from chatlink.providers.messaging.base import MessagingProvider
from chatlink.providers.messaging.telegram_adapter import TelegramBotAdapter

_messaging_provider: MessagingProvider | None = None


def get_messaging_provider(config: Settings | None = None) -> MessagingProvider:
    """Get or create the messaging provider singleton.

    The first call builds the adapter from configuration; subsequent calls
    reuse it. Whether the bot is enabled is checked by the linking service,
    not here.

    Args:
        config: Optional settings. Defaults to the application settings.

    Returns:
        MessagingProvider instance.
    """
    global _messaging_provider

    if _messaging_provider is None:
        config = config or settings
        _messaging_provider = TelegramBotAdapter(
            bot_token=config.telegram_bot_token.get_secret_value(),
            api_base_url=config.telegram_api_base_url,
            timeout_seconds=config.telegram_http_timeout_seconds,
            long_poll_seconds=config.telegram_long_poll_seconds,
        )

    return _messaging_provider


def reset_providers() -> None:
    """Reset provider singletons.

    Used in tests to ensure isolation between test cases.
    """
    global _messaging_provider
    _messaging_provider = None

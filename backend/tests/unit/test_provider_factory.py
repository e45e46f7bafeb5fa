"""Tests for provider factory functions.

Singleton pattern for the messaging provider instance.
"""

from pydantic import SecretStr

from chatlink.core.config import Settings
from chatlink.providers.factory import get_messaging_provider, reset_providers
from chatlink.providers.messaging.telegram_adapter import TelegramBotAdapter


class TestGetMessagingProvider:
    """Test get_messaging_provider() factory function."""

    def setup_method(self):
        """Reset singletons before each test."""
        reset_providers()

    def teardown_method(self):
        reset_providers()

    def test_returns_telegram_adapter(self):
        config = Settings(telegram_bot_token=SecretStr("1:abc"))
        provider = get_messaging_provider(config)
        assert isinstance(provider, TelegramBotAdapter)
        assert provider.provider_name == "telegram"

    def test_singleton_returns_same_instance(self):
        """Subsequent calls should return the same instance."""
        config = Settings(telegram_bot_token=SecretStr("1:abc"))
        provider1 = get_messaging_provider(config)
        provider2 = get_messaging_provider()  # No config, uses cached
        assert provider1 is provider2

    def test_reset_creates_new_instance(self):
        provider1 = get_messaging_provider()
        reset_providers()
        provider2 = get_messaging_provider()
        assert provider1 is not provider2

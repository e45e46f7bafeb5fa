"""Provider abstraction layer.

Exports:
    Error classes for provider error handling
    Factory functions for provider instances
"""

from chatlink.providers.errors import (
    AuthenticationError,
    ChatNotFoundError,
    ProviderError,
    RateLimitError,
    TransientError,
)
from chatlink.providers.factory import get_messaging_provider, reset_providers

__all__ = [
    # Errors
    "ProviderError",
    "RateLimitError",
    "AuthenticationError",
    "ChatNotFoundError",
    "TransientError",
    # Factory
    "get_messaging_provider",
    "reset_providers",
]

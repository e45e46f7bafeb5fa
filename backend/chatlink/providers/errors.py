"""Provider error taxonomy.

Error classes for the messaging provider layer. Adapters map transport and
API failures to these so callers can handle them without knowing the
provider.
"""


__all__ = [
    "ProviderError",
    "RateLimitError",
    "AuthenticationError",
    "ChatNotFoundError",
    "TransientError",
]


class ProviderError(Exception):
    """Base class for all provider errors.

    All provider-specific exceptions inherit from this class, allowing
    callers to catch all provider errors with a single handler.
    """

    pass


class RateLimitError(ProviderError):
    """Rate limit exceeded.

    May carry a retry_after_seconds hint from the provider.
    """

    def __init__(self, message: str, retry_after_seconds: float | None = None):
        """Initialize RateLimitError.

        Args:
            message: Error description from the provider.
            retry_after_seconds: Optional hint from provider on when to retry.
        """
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class AuthenticationError(ProviderError):
    """Invalid or revoked bot token. Not retryable."""

    pass


class ChatNotFoundError(ProviderError):
    """The target chat does not exist or never started a conversation with the bot."""

    pass


class TransientError(ProviderError):
    """Temporary failure (network, timeout, 5xx). Safe to retry on the next tick."""

    pass

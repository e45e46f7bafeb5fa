"""Application configuration loaded from environment variables.

Settings for the database, the HTTP surface, caller authentication, the
Telegram Bot API and the account-linking engine. Uses pydantic-settings for
validation and .env file support.
"""

import uuid

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "chatlink_dev_password"  # nosec B105

# Minimum length for AUTH_SECRET in production (256 bits = 32 bytes)
_MIN_AUTH_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "chatlink"
    database_user: str = "chatlink_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # API
    # 0.0.0.0 binds to all network interfaces (required for Docker containers)
    api_host: str = "0.0.0.0"  # nosec B104
    api_port: int = 8000
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"
    app_display_name: str = "MDT App"

    # Authentication
    # Local-first mode: DEFAULT_USER_ID provides user context without JWT
    # Hosted mode: auth_enabled=True, JWT cookie required on every request
    default_user_id: uuid.UUID | None = None
    auth_enabled: bool = False
    auth_secret: SecretStr = SecretStr("")
    auth_issuer: str = "chatlink"
    auth_audience: str = "chatlink"
    auth_cookie_name: str = "chatlink.session-token"

    # Telegram Bot API
    telegram_enabled: bool = False
    telegram_bot_token: SecretStr = SecretStr("")
    telegram_bot_name: str = ""
    telegram_api_base_url: str = "https://api.telegram.org"
    telegram_http_timeout_seconds: float = 10.0
    telegram_long_poll_seconds: int = 1
    # Webhook delivery: Telegram echoes this in X-Telegram-Bot-Api-Secret-Token.
    # Empty disables the webhook endpoint (every call is rejected).
    telegram_webhook_secret: SecretStr = SecretStr("")

    # Account linking
    linking_code_ttl_minutes: int = 10
    linking_poll_interval_seconds: float = 2.0
    linking_rehydrate_on_startup: bool = True

    # Rate Limiting (Security)
    # Format: "count/period" (e.g., "10/minute", "100/hour")
    rate_limit_linking: str = "10/minute"  # /generate-code, /send-code
    rate_limit_enabled: bool = True  # Disable for testing

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def telegram_configured(self) -> bool:
        """Whether the bot is enabled and has a token to talk to the Bot API."""
        return self.telegram_enabled and bool(
            self.telegram_bot_token.get_secret_value()
        )

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate configuration invariants.

        Checks:
        - Linking TTL and poll interval must be positive (all environments)
        - CORS must not use wildcard origin (all environments)
        - Database password must not be the default in production
        - AUTH_SECRET must be set and >= 32 chars when auth is enabled in production
        """
        if self.linking_code_ttl_minutes <= 0:
            msg = (
                "LINKING_CODE_TTL_MINUTES must be positive. "
                f"Got: {self.linking_code_ttl_minutes}"
            )
            raise ValueError(msg)
        if self.linking_poll_interval_seconds <= 0:
            msg = (
                "LINKING_POLL_INTERVAL_SECONDS must be positive. "
                f"Got: {self.linking_poll_interval_seconds}"
            )
            raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "This application uses credentials (cookies) which are "
                "incompatible with wildcard CORS origins."
            )
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            if self.auth_enabled:
                secret_value = self.auth_secret.get_secret_value()
                if len(secret_value) < _MIN_AUTH_SECRET_LENGTH:
                    msg = (
                        f"AUTH_SECRET must be at least {_MIN_AUTH_SECRET_LENGTH} "
                        "characters when AUTH_ENABLED=true in production."
                    )
                    raise ValueError(msg)

        return self


settings = Settings()

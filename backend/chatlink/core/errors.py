"""API error classes.

HTTP status codes and error codes returned by the caller-facing linking
operations. Chat-side rejections never surface here; they are replies in
the chat channel.
"""


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400).

    Use for request body validation errors, malformed identifiers or codes.
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class UnauthorizedError(APIError):
    """Authentication required (401)."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401,
        )


class NotFoundError(APIError):
    """Resource not found (404).

    Use when requested resource doesn't exist OR doesn't belong to user.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
        )


class ConflictError(APIError):
    """Duplicate or conflicting resource (409).

    Accepts custom code for specific conflict types.
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details,
        )


class InvalidStateError(APIError):
    """Business rule violation (422).

    Use when the request is syntactically valid but the linking session is
    missing, expired, or does not match.
    """

    def __init__(self, message: str) -> None:
        super().__init__(
            code="INVALID_STATE_TRANSITION",
            message=message,
            status_code=422,
        )


class TelegramAlreadyLinkedError(ConflictError):
    """The caller already has a Telegram identity bound (409)."""

    def __init__(self) -> None:
        super().__init__(
            code="TELEGRAM_ALREADY_LINKED",
            message="Telegram account is already linked",
        )


class TelegramIdentityConflictError(ConflictError):
    """The Telegram identity is bound to a different user (409)."""

    def __init__(self) -> None:
        super().__init__(
            code="TELEGRAM_IDENTITY_CONFLICT",
            message="This Telegram account is already linked to another user",
        )


class TelegramNotConfiguredError(APIError):
    """Bot is disabled or has no token (503)."""

    def __init__(self) -> None:
        super().__init__(
            code="TELEGRAM_NOT_CONFIGURED",
            message=(
                "Telegram is not configured or disabled. "
                "Please contact an administrator."
            ),
            status_code=503,
        )


class TelegramDeliveryError(APIError):
    """A verification code could not be pushed to the chat (502).

    Args:
        message: Instructions for the caller describing how to recover.
    """

    def __init__(self, message: str) -> None:
        super().__init__(
            code="TELEGRAM_DELIVERY_FAILED",
            message=message,
            status_code=502,
        )


class InternalError(APIError):
    """Unexpected server error (500).

    Use for unhandled exceptions. Never expose stack traces to clients.
    """

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(
            code="INTERNAL_ERROR",
            message=message,
            status_code=500,
        )

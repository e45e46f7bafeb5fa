"""Shared dependencies for API endpoints.

Authentication: local mode uses DEFAULT_USER_ID; hosted mode validates the
JWT session cookie. The linking service is created once by the application
lifespan and read from ``app.state``.
"""

import uuid
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, Request, status

from chatlink.core.config import settings
from chatlink.core.errors import TelegramNotConfiguredError
from chatlink.services.telegram_linking_service import TelegramLinkingService

# Generic 401 detail. Never say why auth failed (expired, bad signature...).
_UNAUTHORIZED_DETAIL = {
    "code": "UNAUTHORIZED",
    "message": "Authentication required",
}


async def get_current_user_id(request: Request) -> uuid.UUID:
    """Get current user ID from auth context.

    Validation steps (hosted mode):
    1. Read JWT from cookie
    2. Decode + verify signature (HS256)
    3. Verify exp, aud, iss claims
    4. Extract sub as UUID

    Args:
        request: HTTP request (injected by FastAPI).

    Returns:
        UUID of the current authenticated user.

    Raises:
        HTTPException: 401 for any auth failure.
    """
    if not settings.auth_enabled:
        if settings.default_user_id is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=_UNAUTHORIZED_DETAIL,
            )
        return settings.default_user_id

    token = request.cookies.get(settings.auth_cookie_name)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=_UNAUTHORIZED_DETAIL,
        )

    try:
        payload = jwt.decode(
            token,
            settings.auth_secret.get_secret_value(),
            algorithms=["HS256"],
            audience=settings.auth_audience,
            issuer=settings.auth_issuer,
        )
        return uuid.UUID(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=_UNAUTHORIZED_DETAIL,
        ) from exc


def get_linking_service(request: Request) -> TelegramLinkingService:
    """Return the linking service started by the application lifespan.

    Raises:
        TelegramNotConfiguredError: If the lifespan did not create one.
    """
    service: TelegramLinkingService | None = getattr(
        request.app.state, "linking_service", None
    )
    if service is None:
        raise TelegramNotConfiguredError()
    return service


# Reusable type aliases for dependency injection
CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]
LinkingService = Annotated[TelegramLinkingService, Depends(get_linking_service)]

"""Telegram Bot API webhook endpoint.

Endpoints:
- POST /telegram/webhook: receive one update pushed by Telegram

An alternative to the poll loop for deployments that register a webhook
with ``setWebhook``. Telegram sends the configured secret in the
``X-Telegram-Bot-Api-Secret-Token`` header; a request without the right
secret is rejected before its body is looked at.
"""

import secrets
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, ConfigDict

from chatlink.api.deps import LinkingService
from chatlink.core.config import settings
from chatlink.core.errors import TelegramNotConfiguredError, UnauthorizedError
from chatlink.providers.messaging.telegram_adapter import parse_update

logger = structlog.get_logger()

router = APIRouter()


class TelegramUpdateBody(BaseModel):
    """One Bot API ``Update`` object. Unused fields are kept as-is."""

    model_config = ConfigDict(extra="allow")

    update_id: int
    message: dict[str, Any] | None = None


class WebhookAck(BaseModel):
    ok: bool


def verify_webhook_secret(
    x_telegram_bot_api_secret_token: Annotated[str | None, Header()] = None,
) -> None:
    """Reject the delivery unless it carries the configured secret.

    Raises:
        UnauthorizedError: Secret missing, wrong, or not configured.
    """
    received = x_telegram_bot_api_secret_token
    expected = settings.telegram_webhook_secret.get_secret_value()
    if not expected or received is None:
        raise UnauthorizedError()
    if not secrets.compare_digest(received.encode(), expected.encode()):
        raise UnauthorizedError()


@router.post("/webhook", dependencies=[Depends(verify_webhook_secret)])
async def receive_telegram_update(
    body: TelegramUpdateBody,
    service: LinkingService,
) -> WebhookAck:
    """Dispatch one pushed update exactly like a polled one.

    A verified delivery is acknowledged whatever its outcome.
    """
    if not service.enabled:
        raise TelegramNotConfiguredError()
    update = parse_update(body.model_dump(exclude_none=True))
    result = await service.handle_update(update)
    logger.debug(
        "telegram_webhook_update",
        update_id=update.offset,
        outcome=result.outcome.value,
    )
    return WebhookAck(ok=True)

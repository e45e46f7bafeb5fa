"""Telegram Bot API adapter.

Provider-specific adapter for the Telegram Bot API over HTTPS with httpx.
Inbound messages are read with long-polling ``getUpdates`` (or pushed to
the webhook endpoint and decoded with ``parse_update``); replies and pushed
codes go through ``sendMessage``.
"""

import json
import time
from typing import Any

import httpx
import structlog

from chatlink.providers.errors import (
    AuthenticationError,
    ChatNotFoundError,
    ProviderError,
    RateLimitError,
    TransientError,
)
from chatlink.providers.messaging.base import (
    BotInfo,
    MessagingProvider,
    ProviderUpdate,
    SentMessage,
)

logger = structlog.get_logger()

# Only plain messages matter for linking; other update kinds are not requested.
_ALLOWED_UPDATES = json.dumps(["message"])


def _classify_telegram_error(
    status_code: int, payload: dict[str, Any] | None
) -> ProviderError:
    """Map a failed Bot API reply to the internal error taxonomy.

    Returns a ProviderError subclass instance (does not raise).

    Args:
        status_code: HTTP status of the reply.
        payload: Decoded JSON body, if the body was JSON.

    Returns:
        The matching ProviderError.
    """
    payload = payload or {}
    description = str(payload.get("description") or f"HTTP {status_code}")
    error_code = payload.get("error_code", status_code)

    if error_code == 429:
        retry_after = (payload.get("parameters") or {}).get("retry_after")
        return RateLimitError(
            description,
            retry_after_seconds=float(retry_after) if retry_after is not None else None,
        )
    if error_code in (401, 404):
        return AuthenticationError(description)
    if error_code == 400 and "chat not found" in description.lower():
        return ChatNotFoundError(description)
    if status_code >= 500 or (isinstance(error_code, int) and error_code >= 500):
        return TransientError(description)
    return ProviderError(description)


def parse_update(raw: dict[str, Any]) -> ProviderUpdate:
    """Convert one raw Bot API update into a ProviderUpdate.

    Used for both getUpdates results and webhook deliveries. Updates that
    are not text messages come back with ``text=None``.
    """
    message = raw.get("message") or {}
    sender = message.get("from") or {}
    sender_id = sender.get("id")
    text = message.get("text")
    return ProviderUpdate(
        offset=int(raw["update_id"]),
        sender_identity=str(sender_id) if sender_id is not None else None,
        text=text if isinstance(text, str) else None,
    )


class TelegramBotAdapter(MessagingProvider):
    """Messaging provider backed by the Telegram Bot API.

    Each call opens a short-lived ``httpx.AsyncClient``. Cancelling the
    awaiting task aborts the request and closes its connection.

    Args:
        bot_token: Bot API token. Never logged.
        api_base_url: Bot API root URL.
        timeout_seconds: Per-request timeout, on top of the long-poll wait.
        long_poll_seconds: ``timeout`` passed to getUpdates.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        *,
        bot_token: str,
        api_base_url: str = "https://api.telegram.org",
        timeout_seconds: float = 10.0,
        long_poll_seconds: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._bot_token = bot_token
        self._api_base_url = api_base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._long_poll_seconds = long_poll_seconds
        self._transport = transport

    @property
    def provider_name(self) -> str:
        """Return 'telegram'."""
        return "telegram"

    def _method_url(self, method: str) -> str:
        return f"{self._api_base_url}/bot{self._bot_token}/{method}"

    async def _call(
        self,
        method: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
        extra_timeout: float = 0.0,
    ) -> Any:
        """Invoke a Bot API method and return its ``result`` field.

        Args:
            method: Bot API method name (e.g., ``"getUpdates"``).
            params: Query parameters (GET).
            body: JSON body (POST). When given, the call is a POST.
            extra_timeout: Seconds added to the request timeout.

        Returns:
            The ``result`` member of the Bot API reply.

        Raises:
            ProviderError: Mapped from transport errors, non-2xx or ``ok=false``.
        """
        start_time = time.monotonic()
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                if body is not None:
                    resp = await client.post(
                        self._method_url(method),
                        json=body,
                        timeout=self._timeout_seconds + extra_timeout,
                    )
                else:
                    resp = await client.get(
                        self._method_url(method),
                        params=params,
                        timeout=self._timeout_seconds + extra_timeout,
                    )
        except httpx.TransportError as e:
            logger.warning(
                "telegram_request_failed",
                method=method,
                error_type=type(e).__name__,
            )
            raise TransientError(f"{method}: {type(e).__name__}") from e

        try:
            payload = resp.json()
        except ValueError:
            payload = None

        if resp.is_error or not isinstance(payload, dict) or not payload.get("ok"):
            error = _classify_telegram_error(
                resp.status_code, payload if isinstance(payload, dict) else None
            )
            logger.warning(
                "telegram_api_error",
                method=method,
                status_code=resp.status_code,
                error_type=type(error).__name__,
                description=str(error),
            )
            raise error

        logger.debug(
            "telegram_request_complete",
            method=method,
            latency_ms=round((time.monotonic() - start_time) * 1000, 1),
        )
        return payload.get("result")

    async def send_message(self, chat_id: str, text: str) -> SentMessage:
        """Send a plain text message via ``sendMessage``.

        Args:
            chat_id: Numeric chat id, or ``@username``.
            text: Message text.

        Returns:
            SentMessage with the numeric chat id from the API reply.
        """
        result = await self._call(
            "sendMessage",
            body={"chat_id": chat_id, "text": text},
        )
        chat = (result or {}).get("chat") or {}
        resolved = chat.get("id")
        return SentMessage(chat_id=str(resolved) if resolved is not None else chat_id)

    async def fetch_updates(self, since_offset: int) -> list[ProviderUpdate]:
        """Long-poll ``getUpdates`` for updates after ``since_offset``.

        Passing ``offset = since_offset + 1`` also confirms every earlier
        update to Telegram, so they are not delivered again.

        Args:
            since_offset: Highest update_id already processed.

        Returns:
            Updates in ascending offset order.
        """
        result = await self._call(
            "getUpdates",
            params={
                "offset": since_offset + 1,
                "timeout": self._long_poll_seconds,
                "allowed_updates": _ALLOWED_UPDATES,
            },
            extra_timeout=float(self._long_poll_seconds),
        )
        updates = [parse_update(raw) for raw in (result or [])]
        updates.sort(key=lambda u: u.offset)
        return updates

    async def get_bot_info(self) -> BotInfo:
        """Return the bot identity from ``getMe``."""
        result = await self._call("getMe") or {}
        return BotInfo(
            id=int(result.get("id", 0)),
            username=str(result.get("username", "")),
            first_name=str(result.get("first_name", "")),
        )

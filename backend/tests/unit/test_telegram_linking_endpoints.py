"""Tests for the Telegram linking endpoints.

POST /profile/telegram/generate-code, /send-code, /verify-code,
/stop-polling; DELETE and GET /profile/telegram; GET /bot-info; /health.
"""

from collections.abc import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatlink.core.config import settings
from chatlink.providers.messaging.mock_adapter import MockMessagingProvider
from chatlink.repositories.telegram_link_session_repository import (
    TelegramLinkSessionRepository,
)
from chatlink.repositories.user_repository import UserRepository
from chatlink.services.telegram_linking_service import TelegramLinkingService
from tests.conftest import TEST_BOT_USERNAME, TEST_USER_ID, create_test_jwt

_BASE_URL = "/api/v1/profile/telegram"
_GENERATE_URL = f"{_BASE_URL}/generate-code"
_SEND_URL = f"{_BASE_URL}/send-code"
_VERIFY_URL = f"{_BASE_URL}/verify-code"
_STOP_URL = f"{_BASE_URL}/stop-polling"
_BOT_INFO_URL = f"{_BASE_URL}/bot-info"

_SENDER = "123456789"


async def _stored_code(session_factory: async_sessionmaker[AsyncSession]) -> str | None:
    async with session_factory() as db:
        row = await TelegramLinkSessionRepository.get_by_user_id(db, TEST_USER_ID)
        return row.code if row else None


class TestAuthentication:
    """Every linking endpoint requires a session."""

    async def test_missing_cookie_is_rejected(
        self, unauthenticated_client: AsyncClient
    ) -> None:
        response = await unauthenticated_client.post(_GENERATE_URL)

        assert response.status_code == 401

    async def test_invalid_jwt_is_rejected(
        self, unauthenticated_client: AsyncClient
    ) -> None:
        response = await unauthenticated_client.get(
            _BASE_URL,
            cookies={settings.auth_cookie_name: create_test_jwt(secret="x" * 40)},
        )

        assert response.status_code == 401


class TestGenerateCode:
    """Tests for POST /profile/telegram/generate-code."""

    async def test_returns_code_payload(
        self, client: AsyncClient, linking_service: TelegramLinkingService
    ) -> None:
        response = await client.post(_GENERATE_URL)

        assert response.status_code == 200
        data = response.json()["data"]
        assert len(data["code"]) == 8
        assert data["expires_in"] == 10
        assert data["bot_username"] == TEST_BOT_USERNAME
        assert data["deep_link"].endswith(f"?start={data['code']}")
        assert linking_service.is_polling is True

    async def test_linked_user_gets_conflict(
        self,
        client: AsyncClient,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        async with session_factory() as db:
            await UserRepository.set_telegram_id(db, TEST_USER_ID, _SENDER)
            await db.commit()

        response = await client.post(_GENERATE_URL)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "TELEGRAM_ALREADY_LINKED"

    async def test_api_responses_are_not_cached(self, client: AsyncClient) -> None:
        response = await client.post(_GENERATE_URL)

        assert response.headers["Cache-Control"] == "no-store, max-age=0"


class TestSendAndVerify:
    """Tests for POST /send-code and POST /verify-code."""

    async def test_send_then_verify_links_account(
        self,
        client: AsyncClient,
        mock_provider: MockMessagingProvider,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        sent = await client.post(_SEND_URL, json={"telegram_identifier": _SENDER})
        code = await _stored_code(session_factory)

        verified = await client.post(_VERIFY_URL, json={"code": code})

        assert sent.status_code == 200
        assert code in mock_provider.messages_to(_SENDER)[0]
        assert verified.status_code == 200
        assert verified.json()["data"]["linked"] is True
        assert verified.json()["data"]["telegram_id"] == _SENDER

    async def test_unknown_username_is_bad_gateway(self, client: AsyncClient) -> None:
        response = await client.post(
            _SEND_URL, json={"telegram_identifier": "@nobody_here"}
        )

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "TELEGRAM_DELIVERY_FAILED"

    async def test_invalid_identifier_is_validation_error(
        self, client: AsyncClient
    ) -> None:
        response = await client.post(_SEND_URL, json={"telegram_identifier": "x!"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_verify_without_session_is_unprocessable(
        self, client: AsyncClient
    ) -> None:
        response = await client.post(_VERIFY_URL, json={"code": "A3F9C2E1"})

        assert response.status_code == 422

    async def test_unexpected_body_field_is_rejected(self, client: AsyncClient) -> None:
        response = await client.post(_VERIFY_URL, json={"code": "A3F9C2E1", "x": 1})

        assert response.status_code == 400


class TestStopAndUnlink:
    """Tests for POST /stop-polling and DELETE /profile/telegram."""

    async def test_stop_polling_cancels_pending_code(
        self,
        client: AsyncClient,
        linking_service: TelegramLinkingService,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await client.post(_GENERATE_URL)

        response = await client.post(_STOP_URL)

        assert response.status_code == 204
        assert linking_service.is_polling is False
        assert await _stored_code(session_factory) is None

    async def test_stop_polling_without_session_succeeds(
        self, client: AsyncClient
    ) -> None:
        response = await client.post(_STOP_URL)

        assert response.status_code == 204

    async def test_unlink_clears_identity(
        self,
        client: AsyncClient,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        async with session_factory() as db:
            await UserRepository.set_telegram_id(db, TEST_USER_ID, _SENDER)
            await db.commit()

        response = await client.delete(_BASE_URL)
        status_response = await client.get(_BASE_URL)

        assert response.status_code == 204
        assert status_response.json()["data"]["linked"] is False


class TestStatusAndBotInfo:
    """Tests for GET /profile/telegram and GET /bot-info."""

    async def test_status_shows_pending_code(self, client: AsyncClient) -> None:
        generated = await client.post(_GENERATE_URL)

        response = await client.get(_BASE_URL)

        data = response.json()["data"]
        assert data["linked"] is False
        assert data["pending_code"] == generated.json()["data"]["code"]

    async def test_bot_info(self, client: AsyncClient) -> None:
        response = await client.get(_BOT_INFO_URL)

        assert response.status_code == 200
        assert response.json()["data"]["username"] == TEST_BOT_USERNAME


class TestNotConfigured:
    """Without a running linking service every operation reports 503."""

    @pytest_asyncio.fixture
    async def bare_client(self) -> AsyncGenerator[AsyncClient, None]:
        from chatlink.main import app

        original_auth_enabled = settings.auth_enabled
        original_default_user = settings.default_user_id
        settings.auth_enabled = False
        settings.default_user_id = TEST_USER_ID
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as ac:
            yield ac
        settings.auth_enabled = original_auth_enabled
        settings.default_user_id = original_default_user

    async def test_generate_code_is_unavailable(self, bare_client: AsyncClient) -> None:
        response = await bare_client.post(_GENERATE_URL)

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "TELEGRAM_NOT_CONFIGURED"

    async def test_health_reports_idle_polling(self, bare_client: AsyncClient) -> None:
        response = await bare_client.get("/health")

        assert response.json() == {
            "status": "healthy",
            "telegram_polling": False,
            "active_linking_sessions": 0,
        }

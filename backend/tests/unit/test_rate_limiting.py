"""Tests for rate limiting behavior.

Security: code-issuing endpoints are limited per caller. The key moves from
the client IP to the JWT subject when auth is enabled.
"""

import json
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from pydantic import SecretStr
from starlette.requests import Request as StarletteRequest

from chatlink.core.config import settings
from chatlink.core.rate_limiting import (
    _rate_limit_key_func,
    rate_limit_exceeded_handler,
)
from tests.conftest import TEST_AUTH_SECRET, TEST_USER_ID, create_test_jwt


def _exceeded(detail: str | None) -> MagicMock:
    exc = MagicMock()
    exc.detail = detail
    return exc


class TestRateLimitExceededHandler:
    """Tests for rate limit exceeded response format."""

    @pytest.fixture
    def request_(self) -> StarletteRequest:
        scope = {
            "type": "http",
            "method": "POST",
            "path": "/api/v1/profile/telegram/generate-code",
        }
        return StarletteRequest(scope)

    def test_returns_429_with_error_envelope(self, request_: StarletteRequest):
        response = rate_limit_exceeded_handler(request_, _exceeded("10 per 1 minute"))
        body = json.loads(response.body.decode())

        assert response.status_code == 429
        assert body["error"]["code"] == "RATE_LIMITED"
        assert "Rate limit exceeded" in body["error"]["message"]

    @pytest.mark.parametrize("detail", ["unexpected format", None])
    def test_retry_after_falls_back_to_60(
        self, request_: StarletteRequest, detail: str | None
    ):
        """Retry-After should fall back to 60 if the detail cannot be parsed."""
        response = rate_limit_exceeded_handler(request_, _exceeded(detail))

        assert response.headers.get("Retry-After") == "60"


class TestRateLimitKeyFunction:
    """Rate limit key transitions from IP-based to per-user."""

    @pytest.fixture
    def auth_enabled_settings(self):
        """Enable auth with test secret, restore after test."""
        original_auth = settings.auth_enabled
        original_secret = settings.auth_secret
        settings.auth_enabled = True
        settings.auth_secret = SecretStr(TEST_AUTH_SECRET)
        yield
        settings.auth_enabled = original_auth
        settings.auth_secret = original_secret

    def _make_request(
        self, *, client_host: str = "192.168.1.1", cookies: dict | None = None
    ) -> MagicMock:
        request = MagicMock()
        request.client.host = client_host
        request.cookies = cookies or {}
        return request

    def test_returns_ip_when_auth_disabled(self):
        original = settings.auth_enabled
        settings.auth_enabled = False
        try:
            request = self._make_request(client_host="10.0.0.1")
            assert _rate_limit_key_func(request) == "10.0.0.1"
        finally:
            settings.auth_enabled = original

    @pytest.mark.usefixtures("auth_enabled_settings")
    def test_returns_user_sub_with_valid_jwt(self):
        request = self._make_request(
            cookies={settings.auth_cookie_name: create_test_jwt()}
        )
        assert _rate_limit_key_func(request) == f"user:{TEST_USER_ID}"

    @pytest.mark.usefixtures("auth_enabled_settings")
    @pytest.mark.parametrize(
        "token",
        [
            None,
            "invalid-jwt-token",
            create_test_jwt(expires_delta=timedelta(hours=-1)),
            create_test_jwt(secret="different-secret-that-does-not-match-the-real-one"),
        ],
        ids=["no-cookie", "garbage", "expired", "wrong-secret"],
    )
    def test_falls_back_to_unauth_ip(self, token: str | None):
        cookies = {settings.auth_cookie_name: token} if token else None
        request = self._make_request(client_host="198.51.100.10", cookies=cookies)

        assert _rate_limit_key_func(request) == "unauth:198.51.100.10"

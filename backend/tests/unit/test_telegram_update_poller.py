"""Tests for the Telegram update poll loop.

Lifecycle (start/stop/run_once), cursor handling, failure isolation,
rate-limit backoff and cancellation of an in-flight fetch or handler.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from chatlink.providers.errors import RateLimitError, TransientError
from chatlink.providers.messaging.base import ProviderUpdate
from chatlink.providers.messaging.mock_adapter import MockMessagingProvider
from chatlink.services.telegram_update_poller import (
    DEFAULT_INTERVAL_SECONDS,
    TelegramUpdatePoller,
)
from tests.conftest import wait_for


@pytest.fixture
def provider() -> MockMessagingProvider:
    return MockMessagingProvider()


class TestPollerLifecycle:
    """Tests for TelegramUpdatePoller start/stop."""

    async def test_default_interval_is_two_seconds(self) -> None:
        assert DEFAULT_INTERVAL_SECONDS == 2.0

    async def test_start_sets_running(self, provider: MockMessagingProvider) -> None:
        poller = TelegramUpdatePoller(provider, AsyncMock(), interval_seconds=60)

        with patch.object(poller, "_run_loop", new_callable=AsyncMock):
            poller.start()
            assert poller.is_running is True
            await poller.stop()

    async def test_stop_clears_running(self, provider: MockMessagingProvider) -> None:
        poller = TelegramUpdatePoller(provider, AsyncMock(), interval_seconds=60)
        poller.start()

        await poller.stop()

        assert poller.is_running is False

    async def test_start_is_idempotent(self, provider: MockMessagingProvider) -> None:
        poller = TelegramUpdatePoller(provider, AsyncMock(), interval_seconds=0.01)
        poller.start()
        first_task = poller._task

        poller.start()

        assert poller._task is first_task
        await poller.stop()

    async def test_stop_without_start_is_safe(
        self, provider: MockMessagingProvider
    ) -> None:
        poller = TelegramUpdatePoller(provider, AsyncMock())
        await poller.stop()
        assert poller.is_running is False


class TestRunOnce:
    """Tests for a single fetch cycle."""

    async def test_updates_are_handed_off_in_order(
        self, provider: MockMessagingProvider
    ) -> None:
        handler = AsyncMock()
        provider.add_message(12, "111", "second")
        provider.add_message(11, "111", "first")
        poller = TelegramUpdatePoller(provider, handler)

        handled = await poller.run_once()

        assert handled == 2
        assert [c.args[0].offset for c in handler.await_args_list] == [11, 12]

    async def test_cursor_advances_past_batch(
        self, provider: MockMessagingProvider
    ) -> None:
        provider.add_message(5, "111", "hello")
        provider.add_message(6, "111", "again")
        poller = TelegramUpdatePoller(provider, AsyncMock())

        await poller.run_once()
        await poller.run_once()

        assert poller.cursor == 6
        assert provider.fetch_offsets == [0, 6]

    async def test_empty_batch_leaves_cursor(
        self, provider: MockMessagingProvider
    ) -> None:
        poller = TelegramUpdatePoller(provider, AsyncMock())

        assert await poller.run_once() == 0
        assert poller.cursor == 0

    async def test_fetch_error_leaves_cursor_unchanged(
        self, provider: MockMessagingProvider
    ) -> None:
        provider.add_message(3, "111", "hello")
        provider.fetch_errors.append(TransientError("boom"))
        handler = AsyncMock()
        poller = TelegramUpdatePoller(provider, handler)

        with pytest.raises(TransientError):
            await poller.run_once()

        assert poller.cursor == 0
        handler.assert_not_awaited()

    async def test_handler_failure_does_not_stop_batch(
        self, provider: MockMessagingProvider
    ) -> None:
        provider.add_message(1, "111", "bad")
        provider.add_message(2, "111", "good")
        handler = AsyncMock(side_effect=[RuntimeError("boom"), None])
        poller = TelegramUpdatePoller(provider, handler)

        handled = await poller.run_once()

        assert handled == 2
        assert poller.cursor == 2


class TestRunLoop:
    """Tests for the background loop."""

    async def test_loop_continues_after_fetch_failure(
        self, provider: MockMessagingProvider
    ) -> None:
        handled: list[ProviderUpdate] = []

        async def handler(update: ProviderUpdate) -> None:
            handled.append(update)

        provider.fetch_errors.append(TransientError("network down"))
        provider.add_message(1, "111", "hello")
        poller = TelegramUpdatePoller(provider, handler, interval_seconds=0.01)

        poller.start()
        await wait_for(lambda: len(handled) == 1)
        await poller.stop()

        assert poller.cursor == 1
        assert provider.fetch_offsets[:2] == [0, 0]

    async def test_stop_cancels_in_flight_fetch(
        self, provider: MockMessagingProvider
    ) -> None:
        provider.fetch_gate = asyncio.Event()
        provider.add_message(1, "111", "hello")
        handler = AsyncMock()
        poller = TelegramUpdatePoller(provider, handler, interval_seconds=0.01)

        poller.start()
        await asyncio.wait_for(provider.fetch_started.wait(), timeout=1)
        await poller.stop()

        assert poller.is_running is False
        assert poller.cursor == 0
        handler.assert_not_awaited()

    async def test_stop_from_handler_finishes_batch_then_exits(
        self, provider: MockMessagingProvider
    ) -> None:
        handled: list[int] = []
        provider.add_message(1, "111", "first")
        provider.add_message(2, "111", "second")

        async def handler(update: ProviderUpdate) -> None:
            handled.append(update.offset)
            if update.offset == 1:
                await poller.stop()

        poller = TelegramUpdatePoller(provider, handler, interval_seconds=0.01)
        poller.start()
        task = poller._task
        await asyncio.wait_for(task, timeout=1)

        assert handled == [1, 2]
        assert poller.cursor == 2
        assert poller.is_running is False
        assert provider.fetch_offsets == [0]

    async def test_stop_during_handler_keeps_earlier_updates_consumed(
        self, provider: MockMessagingProvider
    ) -> None:
        handled: list[int] = []
        blocked = asyncio.Event()
        provider.add_message(1, "111", "first")
        provider.add_message(2, "111", "second")

        async def handler(update: ProviderUpdate) -> None:
            handled.append(update.offset)
            if update.offset == 2:
                blocked.set()
                await asyncio.Event().wait()

        poller = TelegramUpdatePoller(provider, handler, interval_seconds=0.01)
        poller.start()
        await asyncio.wait_for(blocked.wait(), timeout=1)
        await poller.stop()

        assert poller.cursor == 1

        poller.start()
        await wait_for(lambda: len(provider.fetch_offsets) == 2)
        await poller.stop()

        assert provider.fetch_offsets == [0, 1]
        assert handled == [1, 2, 2]

    async def test_rate_limit_waits_for_retry_after(
        self, provider: MockMessagingProvider
    ) -> None:
        provider.fetch_errors.append(
            RateLimitError("Too Many Requests", retry_after_seconds=0.3)
        )
        poller = TelegramUpdatePoller(provider, AsyncMock(), interval_seconds=0.01)

        poller.start()
        await asyncio.sleep(0.1)
        fetches_during_backoff = len(provider.fetch_offsets)
        await wait_for(lambda: len(provider.fetch_offsets) >= 2)
        await poller.stop()

        assert fetches_during_backoff == 1

    async def test_rate_limit_without_hint_uses_interval(
        self, provider: MockMessagingProvider
    ) -> None:
        provider.fetch_errors.append(RateLimitError("Too Many Requests"))
        poller = TelegramUpdatePoller(provider, AsyncMock(), interval_seconds=0.01)

        poller.start()
        await wait_for(lambda: len(provider.fetch_offsets) >= 2, timeout=0.5)
        await poller.stop()

        assert provider.fetch_offsets[:2] == [0, 0]

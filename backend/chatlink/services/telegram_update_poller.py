"""Telegram update poll loop.

asyncio background task owned by the linking service. It runs only while
at least one linking session is active: the service starts it when the
first session registers and stops it when the last one is retired.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from chatlink.providers.errors import ProviderError, RateLimitError
from chatlink.providers.messaging.base import MessagingProvider, ProviderUpdate

logger = logging.getLogger(__name__)

# Pause between fetch cycles. A rate-limit reply can only lengthen it.
DEFAULT_INTERVAL_SECONDS = 2.0

UpdateHandler = Callable[[ProviderUpdate], Awaitable[object]]


class TelegramUpdatePoller:
    """Background loop that fetches inbound messages and hands them off.

    Lifecycle:
    - start() creates the polling task. No-op if already running.
    - stop() cancels the task, aborting any in-flight fetch. When called
      from the handler (i.e., on the polling task itself) it only marks the
      loop stopped: the current batch finishes and the loop exits without
      another fetch.
    - run_once() executes a single fetch cycle (for testing).

    The cursor moves past each update as soon as the handler returns (or
    raises), so a cancellation between two updates never replays the ones
    already handed off. Fetch cycles never overlap, even across a
    stop/start while a previous loop is still finishing its batch.

    Args:
        provider: Messaging provider to fetch from.
        handler: Awaited once per update, in offset order.
        interval_seconds: Seconds to sleep between fetch cycles.
    """

    def __init__(
        self,
        provider: MessagingProvider,
        handler: UpdateHandler,
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    ) -> None:
        self._provider = provider
        self._handler = handler
        self._interval_seconds = interval_seconds
        self._cursor = 0
        self._task: asyncio.Task[None] | None = None
        self._draining: asyncio.Task[None] | None = None
        self._cycle_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        """Whether the polling task is active and has not been asked to stop."""
        return self._task is not None and not self._task.done()

    @property
    def cursor(self) -> int:
        """Highest update offset already handed off."""
        return self._cursor

    def start(self) -> None:
        """Start the polling loop.

        Must be called from an async context (running event loop).
        """
        if self.is_running:
            return

        self._task = asyncio.create_task(
            self._run_loop(), name="telegram-update-poller"
        )
        logger.info(
            "Telegram update poller started (interval=%.1fs, cursor=%d)",
            self._interval_seconds,
            self._cursor,
        )

    async def stop(self) -> None:
        """Stop the polling loop."""
        task, self._task = self._task, None
        current = asyncio.current_task()

        if task is not None and task is current:
            # Asked to stop by its own handler; finish the batch, then exit.
            self._draining = task
            logger.info("Telegram update poller stopping after current batch")
            return

        for pending in (task, self._draining):
            if pending is None or pending.done() or pending is current:
                continue
            pending.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pending
        if self._draining is not current:
            self._draining = None
        if task is not None:
            logger.info("Telegram update poller stopped")

    async def run_once(self) -> int:
        """Fetch one batch and hand every update to the handler.

        The cursor advances past each update once the handler is done with
        it, then past the whole batch. An error from the fetch leaves it
        unchanged.

        Returns:
            Number of updates handed off.
        """
        async with self._cycle_lock:
            updates = await self._provider.fetch_updates(self._cursor)
            handled = 0
            for update in updates:
                if update.offset <= self._cursor:
                    continue
                try:
                    await self._handler(update)
                except Exception:  # noqa: BLE001
                    logger.exception(
                        "Error handling Telegram update %d", update.offset
                    )
                self._cursor = max(self._cursor, update.offset)
                handled += 1
            if updates:
                self._cursor = max(self._cursor, max(u.offset for u in updates))
            return handled

    async def _run_loop(self) -> None:
        """Background loop: fetch → hand off → sleep → repeat."""
        current = asyncio.current_task()
        try:
            while self._task is current:
                delay = self._interval_seconds
                try:
                    await self.run_once()
                except RateLimitError as e:
                    delay = max(delay, e.retry_after_seconds or 0.0)
                    logger.warning(
                        "Telegram rate limited the fetch; retrying in %.1fs", delay
                    )
                except ProviderError as e:
                    logger.warning(
                        "Telegram fetch failed (%s): %s", type(e).__name__, e
                    )
                except Exception:  # noqa: BLE001
                    logger.exception("Error in Telegram fetch cycle")
                if self._task is not current:
                    break
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logger.debug("Telegram poll loop cancelled")
            raise
        finally:
            if self._draining is current:
                self._draining = None

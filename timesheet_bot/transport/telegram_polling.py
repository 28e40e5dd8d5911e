# timesheet_bot/transport/telegram_polling.py
"""
Telegram Bot API long-polling loop.

Alternative to webhook mode: no public URL or TLS needed.

Usage:
    poller = TelegramPoller(engine)
    await poller.start()
    # ... on shutdown:
    await poller.stop()
"""
from __future__ import annotations

import asyncio

from timesheet_bot.core.conversation import ConversationEngine
from timesheet_bot.infra.logging_config import get_logger
from timesheet_bot.transport.telegram_adapter import TelegramAdapter
from timesheet_bot.transport.telegram_sender import TelegramSendError, delete_webhook, get_updates

logger = get_logger(__name__)


def _safe_create_task(coro, *, name: str | None = None) -> asyncio.Task:
    """Create a background task whose failure is logged instead of lost."""
    task = asyncio.create_task(coro, name=name)
    task.add_done_callback(_log_task_exception)
    return task


def _log_task_exception(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            f"Background task {task.get_name()!r} failed: {exc}",
            exc_info=(type(exc), exc, exc.__traceback__),
        )


class TelegramPoller:
    """
    Calls getUpdates in a loop and hands each event to the conversation
    engine as its own task. Events of one sender are serialized by the
    engine's per-identity lock, different senders run in parallel.

    Error handling:
    - On API errors: exponential backoff (1s → 2s → 4s → ... → 30s max)
    - On processing errors: logged by the task callback, offset still advances
    - On cancellation: graceful shutdown, in-flight tasks are awaited
    """

    def __init__(self, engine: ConversationEngine, poll_timeout: int = 30, token: str | None = None):
        self.engine = engine
        self.poll_timeout = poll_timeout
        self.token = token
        self._adapter = TelegramAdapter()
        self._task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()
        self._offset: int | None = None
        self._running = False
        self._backoff = 1

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("Telegram poller already running")
            return

        try:
            await delete_webhook(token=self.token)
            logger.info("Telegram webhook removed (switching to polling mode)")
        except TelegramSendError as e:
            logger.warning(f"Could not delete Telegram webhook: {e}")

        self._running = True
        self._task = asyncio.create_task(self._poll_loop(), name="tg_poller")
        logger.info(f"Telegram poller started (timeout={self.poll_timeout}s)")

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        logger.info("Telegram poller stopped")

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                updates = await get_updates(
                    offset=self._offset,
                    timeout=self.poll_timeout,
                    token=self.token,
                )
                self._backoff = 1

                for update in updates:
                    self._offset = update.get("update_id", 0) + 1
                    self.dispatch_update(update)

            except TelegramSendError as e:
                if not self._running:
                    break
                logger.error(f"Telegram polling error: {e}, backing off {self._backoff}s")
                await asyncio.sleep(self._backoff)
                self._backoff = min(self._backoff * 2, 30)

            except asyncio.CancelledError:
                break

            except Exception as e:
                if not self._running:
                    break
                logger.error(f"Telegram polling unexpected error: {e}", exc_info=True)
                await asyncio.sleep(self._backoff)
                self._backoff = min(self._backoff * 2, 30)

    def dispatch_update(self, update: dict) -> asyncio.Task | None:
        """Schedule one update for processing; returns the task (None if ignored)."""
        event = self._adapter.adapt_update(update)
        if event is None:
            return None

        task = _safe_create_task(self.engine.handle(event), name=f"tg_event_{event.event_id}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

"""
Per-identity conversation state.

At most one pending state per channel identity; absence means Idle. State is
process-local: a restart resets every conversation to Idle.
"""
from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from threading import Lock
from typing import AsyncIterator, Callable

from timesheet_bot.core.domain import IDLE, Idle, Session
from timesheet_bot.infra.logging_config import get_logger
from timesheet_bot.infra.metrics import AppMetrics

logger = get_logger(__name__)


class InMemorySessionStore:
    """
    Session store with TTL expiry and a per-identity asyncio lock.

    ``lock(channel_id)`` serializes event handling for one identity while
    other identities proceed in parallel. Dictionary access is guarded by a
    thread lock so admin threads can clear sessions safely.
    """

    def __init__(self, ttl_seconds: int = 0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._states: dict[str, tuple[Session, float]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._mutex = Lock()

    def get(self, channel_id: str) -> Session:
        with self._mutex:
            entry = self._states.get(channel_id)
            if entry is None:
                return IDLE
            state, updated = entry
            if self.ttl_seconds and self._clock() - updated > self.ttl_seconds:
                del self._states[channel_id]
                expired = True
            else:
                expired = False

        if expired:
            AppMetrics.session_expired()
            logger.info("Session expired, resetting to idle", extra={"channel_id": channel_id})
            return IDLE
        return state

    def set(self, channel_id: str, state: Session) -> None:
        with self._mutex:
            if isinstance(state, Idle):
                self._states.pop(channel_id, None)
            else:
                self._states[channel_id] = (state, self._clock())

    def clear(self, channel_id: str) -> None:
        with self._mutex:
            self._states.pop(channel_id, None)

    def cleanup_expired(self) -> int:
        """Drop every expired session; returns how many were removed."""
        if not self.ttl_seconds:
            return 0
        now = self._clock()
        with self._mutex:
            stale = [k for k, (_, ts) in self._states.items() if now - ts > self.ttl_seconds]
            for key in stale:
                del self._states[key]
        if stale:
            logger.info(f"Cleaned up {len(stale)} expired sessions (ttl={self.ttl_seconds}s)")
        return len(stale)

    def __len__(self) -> int:
        with self._mutex:
            return len(self._states)

    @asynccontextmanager
    async def lock(self, channel_id: str) -> AsyncIterator[None]:
        with self._mutex:
            lk = self._locks.get(channel_id)
            if lk is None:
                lk = self._locks[channel_id] = asyncio.Lock()
            self._lock_users[channel_id] = self._lock_users.get(channel_id, 0) + 1
        try:
            async with lk:
                yield
        finally:
            with self._mutex:
                remaining = self._lock_users[channel_id] - 1
                if remaining:
                    self._lock_users[channel_id] = remaining
                else:
                    del self._lock_users[channel_id]
                    del self._locks[channel_id]

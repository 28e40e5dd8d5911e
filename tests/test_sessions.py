# tests/test_sessions.py
"""Tests for timesheet_bot/core/sessions.py: per-identity session state."""
from __future__ import annotations

import asyncio

import pytest

from timesheet_bot.core.domain import (
    IDLE,
    AwaitingFreeTextDispute,
    AwaitingNumericCorrection,
    FeedbackKind,
    Idle,
)
from timesheet_bot.core.sessions import InMemorySessionStore


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestSessionStore:
    def test_default_is_idle(self):
        assert isinstance(InMemorySessionStore().get("1001"), Idle)

    def test_set_get_clear(self):
        store = InMemorySessionStore()
        store.set("1001", AwaitingNumericCorrection(7))
        assert store.get("1001") == AwaitingNumericCorrection(7)

        store.clear("1001")
        assert store.get("1001") is IDLE
        assert len(store) == 0

    def test_new_state_replaces_pending(self):
        store = InMemorySessionStore()
        store.set("1001", AwaitingNumericCorrection(7))
        store.set("1001", AwaitingFreeTextDispute(FeedbackKind.GENERAL))
        assert store.get("1001") == AwaitingFreeTextDispute(FeedbackKind.GENERAL)
        assert len(store) == 1

    def test_setting_idle_removes_entry(self):
        store = InMemorySessionStore()
        store.set("1001", AwaitingNumericCorrection(7))
        store.set("1001", IDLE)
        assert len(store) == 0

    def test_identities_are_independent(self):
        store = InMemorySessionStore()
        store.set("1001", AwaitingNumericCorrection(1))
        store.set("2002", AwaitingNumericCorrection(2))
        store.clear("1001")
        assert store.get("2002") == AwaitingNumericCorrection(2)


class TestSessionExpiry:
    def test_expired_session_reads_idle(self):
        clock = FakeClock()
        store = InMemorySessionStore(ttl_seconds=60, clock=clock)
        store.set("1001", AwaitingNumericCorrection(7))

        clock.now += 61

        assert store.get("1001") is IDLE
        assert len(store) == 0

    def test_zero_ttl_never_expires(self):
        clock = FakeClock()
        store = InMemorySessionStore(ttl_seconds=0, clock=clock)
        store.set("1001", AwaitingNumericCorrection(7))
        clock.now += 10 ** 6
        assert store.get("1001") == AwaitingNumericCorrection(7)
        assert store.cleanup_expired() == 0

    def test_cleanup_expired(self):
        clock = FakeClock()
        store = InMemorySessionStore(ttl_seconds=60, clock=clock)
        store.set("1001", AwaitingNumericCorrection(1))
        clock.now += 30
        store.set("2002", AwaitingNumericCorrection(2))
        clock.now += 31

        assert store.cleanup_expired() == 1
        assert store.get("2002") == AwaitingNumericCorrection(2)


class TestSessionLock:
    @pytest.mark.asyncio
    async def test_same_identity_is_serialized(self):
        store = InMemorySessionStore()
        order: list[str] = []

        async def handle(tag: str, pause: float):
            async with store.lock("1001"):
                order.append(f"{tag}-start")
                await asyncio.sleep(pause)
                order.append(f"{tag}-end")

        await asyncio.gather(handle("a", 0.02), handle("b", 0))

        assert order == ["a-start", "a-end", "b-start", "b-end"]

    @pytest.mark.asyncio
    async def test_different_identities_run_in_parallel(self):
        store = InMemorySessionStore()
        order: list[str] = []

        async def handle(channel: str, pause: float):
            async with store.lock(channel):
                order.append(f"{channel}-start")
                await asyncio.sleep(pause)
                order.append(f"{channel}-end")

        await asyncio.gather(handle("1001", 0.02), handle("2002", 0))

        assert order.index("2002-end") < order.index("1001-end")

    @pytest.mark.asyncio
    async def test_locks_are_released(self):
        store = InMemorySessionStore()
        async with store.lock("1001"):
            pass
        assert store._locks == {}

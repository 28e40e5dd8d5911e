# tests/conftest.py
"""Pytest configuration and fixtures"""
from __future__ import annotations

import sys
from datetime import date
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from timesheet_bot.core.aggregation import AggregationEngine  # noqa: E402
from timesheet_bot.core.conversation import ConversationEngine  # noqa: E402
from timesheet_bot.core.dispatch import DispatchEngine  # noqa: E402
from timesheet_bot.core.domain import InboundEvent, Worker  # noqa: E402
from timesheet_bot.core.errors import TransportDeliveryFailure  # noqa: E402
from timesheet_bot.core.identity import IdentityResolver  # noqa: E402
from timesheet_bot.core.reconciliation import ReconciliationEngine  # noqa: E402
from timesheet_bot.core.sessions import InMemorySessionStore  # noqa: E402
from timesheet_bot.infra.memory_store import InMemoryRecordStore  # noqa: E402

TODAY = date(2024, 3, 5)


class FakeSender:
    """Records every outbound call; channels in ``fail_for`` raise TransportDeliveryFailure."""

    def __init__(self, fail_for: set[str] | None = None):
        self.fail_for = set(fail_for or ())
        self.sent: list[tuple[str, str, list | None]] = []
        self.keyboards: list[tuple[str, str, list]] = []
        self.answers: list[tuple[str, str | None, bool]] = []

    async def send(self, channel_id, text, buttons=None):
        if channel_id in self.fail_for:
            raise TransportDeliveryFailure(f"blocked by {channel_id}")
        self.sent.append((channel_id, text, buttons))

    async def send_menu_keyboard(self, channel_id, text, labels):
        if channel_id in self.fail_for:
            raise TransportDeliveryFailure(f"blocked by {channel_id}")
        self.keyboards.append((channel_id, text, labels))

    async def answer_callback(self, callback_id, text=None, *, alert=False):
        self.answers.append((callback_id, text, alert))

    def texts_to(self, channel_id: str) -> list[str]:
        return [text for cid, text, _ in self.sent if cid == channel_id]

    def last_to(self, channel_id: str) -> tuple[str, list | None]:
        for cid, text, buttons in reversed(self.sent):
            if cid == channel_id:
                return text, buttons
        raise AssertionError(f"nothing sent to {channel_id}")


class FakeNotifier:
    def __init__(self, result: bool = True, error: Exception | None = None):
        self.result = result
        self.error = error
        self.notices: list[str] = []

    async def notify(self, text: str) -> bool:
        if self.error is not None:
            raise self.error
        self.notices.append(text)
        return self.result


class Bot:
    """Every engine wired over one in-memory store, with ``today`` pinned."""

    def __init__(self, store=None, sender=None, notifier=None, today=TODAY, rolling_days=5):
        self.store = store or InMemoryRecordStore()
        self.sender = sender or FakeSender()
        self.notifier = notifier or FakeNotifier()
        self.sessions = InMemorySessionStore()
        self.identity = IdentityResolver(self.store)
        self.aggregation = AggregationEngine(self.store, lambda: today)
        self.dispatch = DispatchEngine(
            self.store, self.sender, self.aggregation, concurrency=4, rolling_days=rolling_days,
        )
        self.reconciliation = ReconciliationEngine(
            self.store, self.sender, self.notifier, self.sessions, self.identity,
        )
        self.conversation = ConversationEngine(
            sender=self.sender,
            sessions=self.sessions,
            identity=self.identity,
            aggregation=self.aggregation,
            dispatch=self.dispatch,
            reconciliation=self.reconciliation,
            rolling_days=rolling_days,
        )
        self._seq = 0

    def _event_id(self) -> str:
        self._seq += 1
        return f"tg_{self._seq}"

    async def text(self, channel_id: str, text: str) -> None:
        await self.conversation.handle(InboundEvent(channel_id, self._event_id(), text=text))

    async def press(self, channel_id: str, payload: str) -> None:
        event_id = self._event_id()
        await self.conversation.handle(InboundEvent(
            channel_id, event_id, callback_data=payload, callback_id=f"cb_{event_id}",
        ))


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def bot(store, sender, notifier):
    return Bot(store, sender, notifier)


@pytest.fixture
def ivan(store):
    """Worker 42 "Ivan Petrov", linked to channel 1001, with 2024-03-01..05 hours."""
    store.add_worker(Worker(id=42, name="Ivan Petrov", position="Foreman", channel_id="1001", is_linked=True))
    for day, hours in zip(range(1, 6), ["8", "8", "7.5", "8", "8"]):
        store.add_hours(42, date(2024, 3, day), hours, activity_description=f"Site {day}")
    return 42

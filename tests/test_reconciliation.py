# tests/test_reconciliation.py
"""Tests for timesheet_bot/core/reconciliation.py: confirmations, corrections, disputes."""
from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from timesheet_bot.core.domain import (
    IDLE,
    AwaitingFreeTextDispute,
    AwaitingNumericCorrection,
    DisputeKind,
    FeedbackKind,
    Worker,
)
from timesheet_bot.core.errors import ParseFailure
from timesheet_bot.core.payloads import to_epoch_day
from timesheet_bot.core.reconciliation import parse_hours
from timesheet_bot.core.texts import get_text
from timesheet_bot.infra.memory_store import InMemoryRecordStore

from conftest import TODAY, Bot, FakeNotifier

TODAY_EPOCH = to_epoch_day(TODAY)


# ============================================================================
# parse_hours
# ============================================================================

class TestParseHours:
    @pytest.mark.parametrize("text,expected", [
        ("7.5", Decimal("7.50")),
        ("7,5", Decimal("7.50")),
        (" 8 ", Decimal("8.00")),
        ("0", Decimal("0.00")),
        ("24", Decimal("24.00")),
    ])
    def test_valid(self, text, expected):
        assert parse_hours(text) == expected

    @pytest.mark.parametrize("text", ["abc", "", "24.5", "-1", "NaN", "Infinity", "7.5h"])
    def test_invalid(self, text):
        with pytest.raises(ParseFailure):
            parse_hours(text)


# ============================================================================
# Correct press
# ============================================================================

class TestConfirm:
    @pytest.mark.asyncio
    async def test_confirmation_creates_no_dispute(self, bot, store, sender, ivan):
        await bot.press("1001", f"correct:{ivan}:{TODAY_EPOCH}")

        assert sender.last_to("1001")[0] == get_text("confirm_thanks")
        assert sender.answers[-1][1] == get_text("ack_correct")
        assert store.disputes == []

    @pytest.mark.asyncio
    async def test_unknown_day(self, bot, sender, ivan):
        await bot.press("1001", f"correct:{ivan}:{to_epoch_day(date(2024, 1, 1))}")
        assert sender.last_to("1001")[0] == get_text("record_not_found")

    @pytest.mark.asyncio
    async def test_unlinked_sender(self, bot, sender, ivan):
        await bot.press("2002", f"correct:{ivan}:{TODAY_EPOCH}")
        assert sender.last_to("2002")[0] == get_text("link_first")


# ============================================================================
# Incorrect press + numeric follow-up
# ============================================================================

class TestCorrectionFlow:
    @pytest.mark.asyncio
    async def test_incorrect_then_number_creates_one_dispute(self, bot, store, sender, notifier, ivan):
        await bot.press("1001", f"incorrect:{ivan}:{TODAY_EPOCH}")

        assert bot.sessions.get("1001") == AwaitingNumericCorrection(5)
        assert "2024-03-05" in sender.last_to("1001")[0]

        await bot.text("1001", "7.5")

        [dispute] = store.disputes
        assert dispute.kind is DisputeKind.INCORRECT_HOURS
        assert dispute.record_id == 5
        assert dispute.worker_id == ivan
        assert dispute.message == "Сотрудник указал правильное количество часов: 7.5"
        assert dispute.admin_notified
        assert bot.sessions.get("1001") is IDLE
        assert sender.last_to("1001")[0] == get_text("correction_sent")
        assert "В системе: 8 ч. → указано сотрудником: 7.5 ч." in notifier.notices[0]

        # the session is back to idle: plain text is a search again
        await bot.text("1001", "Petrov")
        assert len(store.disputes) == 1
        assert sender.last_to("1001")[0] == get_text("search_found", count=1)

    @pytest.mark.asyncio
    async def test_garbage_re_prompts_and_keeps_state(self, bot, store, sender, ivan):
        await bot.press("1001", f"incorrect:{ivan}:{TODAY_EPOCH}")

        await bot.text("1001", "abc")

        assert sender.last_to("1001")[0] == get_text("correction_not_number")
        assert bot.sessions.get("1001") == AwaitingNumericCorrection(5)
        assert store.disputes == []

        await bot.text("1001", "7,5")
        assert len(store.disputes) == 1

    @pytest.mark.asyncio
    async def test_out_of_range_re_prompts(self, bot, store, sender, ivan):
        await bot.press("1001", f"incorrect:{ivan}:{TODAY_EPOCH}")
        await bot.text("1001", "30")
        assert sender.last_to("1001")[0] == get_text("correction_not_number")
        assert store.disputes == []

    @pytest.mark.asyncio
    async def test_unresolved_token_leaves_session(self, bot, store, sender, ivan):
        bot.sessions.set("1001", AwaitingFreeTextDispute(FeedbackKind.GENERAL))

        await bot.press("1001", f"incorrect:{ivan}:{to_epoch_day(date(2024, 2, 1))}")

        assert sender.last_to("1001")[0] == get_text("record_not_found")
        assert bot.sessions.get("1001") == AwaitingFreeTextDispute(FeedbackKind.GENERAL)

    @pytest.mark.asyncio
    async def test_out_of_calendar_day_is_rejected_and_keeps_session(self, bot, store, sender, ivan):
        await bot.press("1001", f"incorrect:{ivan}:{TODAY_EPOCH}")
        sent_before = len(sender.sent)

        await bot.press("1001", f"incorrect:{ivan}:99999999")

        assert sender.answers[-1][1] == get_text("unknown_action")
        assert get_text("generic_error") not in sender.texts_to("1001")
        assert len(sender.sent) == sent_before
        assert bot.sessions.get("1001") == AwaitingNumericCorrection(5)

        await bot.text("1001", "6")
        assert len(store.disputes) == 1

    @pytest.mark.asyncio
    async def test_foreign_worker_token_never_matches(self, bot, store, sender, ivan):
        await bot.press("1001", f"incorrect:99:{TODAY_EPOCH}")
        assert sender.last_to("1001")[0] == get_text("record_not_found")
        assert bot.sessions.get("1001") is IDLE

    @pytest.mark.asyncio
    async def test_notifier_failure_still_stores_dispute(self, store, sender, ivan):
        bot = Bot(store, sender, FakeNotifier(error=RuntimeError("channel down")))

        await bot.press("1001", f"incorrect:{ivan}:{TODAY_EPOCH}")
        await bot.text("1001", "6")

        [dispute] = store.disputes
        assert not dispute.admin_notified
        assert sender.last_to("1001")[0] == get_text("correction_sent")

    @pytest.mark.asyncio
    async def test_failed_write_sends_no_admin_notice(self, sender, notifier):
        class BrokenDisputeStore(InMemoryRecordStore):
            async def add_dispute(self, dispute):
                raise RuntimeError("disk full")

        broken = BrokenDisputeStore()
        broken.add_worker(Worker(id=42, name="Ivan Petrov", channel_id="1001", is_linked=True))
        broken.add_hours(42, TODAY, "8")
        bot = Bot(broken, sender, notifier)

        await bot.press("1001", f"incorrect:42:{TODAY_EPOCH}")
        await bot.text("1001", "6")

        assert notifier.notices == []
        assert sender.last_to("1001")[0] == get_text("generic_error")
        assert bot.sessions.get("1001") == AwaitingNumericCorrection(1)

    @pytest.mark.asyncio
    async def test_notified_flag_failure_keeps_dispute(self, sender, notifier):
        class StickyFlagStore(InMemoryRecordStore):
            async def mark_dispute_notified(self, dispute_id):
                raise RuntimeError("connection reset")

        sticky = StickyFlagStore()
        sticky.add_worker(Worker(id=42, name="Ivan Petrov", channel_id="1001", is_linked=True))
        sticky.add_hours(42, TODAY, "8")
        bot = Bot(sticky, sender, notifier)

        await bot.press("1001", f"incorrect:42:{TODAY_EPOCH}")
        await bot.text("1001", "6")

        [dispute] = sticky.disputes
        assert not dispute.admin_notified
        assert len(notifier.notices) == 1
        assert sender.last_to("1001")[0] == get_text("correction_sent")
        assert bot.sessions.get("1001") is IDLE

    @pytest.mark.asyncio
    async def test_menu_action_supersedes_pending_correction(self, bot, store, sender, ivan):
        await bot.press("1001", f"incorrect:{ivan}:{TODAY_EPOCH}")
        await bot.text("1001", "/week")
        assert bot.sessions.get("1001") is IDLE

        await bot.text("1001", "7")
        assert store.disputes == []


# ============================================================================
# Free-text feedback
# ============================================================================

class TestFeedback:
    @pytest.mark.asyncio
    async def test_general_feedback(self, bot, store, sender, notifier, ivan):
        await bot.press("1001", "feedback:general")
        assert bot.sessions.get("1001") == AwaitingFreeTextDispute(FeedbackKind.GENERAL)

        await bot.text("1001", "Не выдали перчатки")

        [dispute] = store.disputes
        assert dispute.kind is DisputeKind.GENERAL_OR_UNLINK
        assert dispute.message == "Не выдали перчатки"
        assert dispute.record_id is None
        assert sender.last_to("1001")[0] == get_text("feedback_thanks")
        assert "Не выдали перчатки" in notifier.notices[0]

    @pytest.mark.asyncio
    async def test_hours_feedback_kind(self, bot, store, ivan):
        await bot.press("1001", "feedback:hours_mistake")
        await bot.text("1001", "Вчера было 10 часов")
        assert store.disputes[0].kind is DisputeKind.INCORRECT_HOURS

    @pytest.mark.asyncio
    async def test_cancel(self, bot, store, sender, ivan):
        await bot.press("1001", "feedback:general")
        await bot.press("1001", "feedback:cancel")

        assert bot.sessions.get("1001") is IDLE
        assert get_text("feedback_cancelled") in sender.texts_to("1001")
        assert store.disputes == []


# ============================================================================
# Unlink request
# ============================================================================

class TestUnlinkRequest:
    @pytest.mark.asyncio
    async def test_request_records_dispute_and_keeps_link(self, bot, store, sender, ivan):
        await bot.press("1001", f"logout_request:{ivan}")

        [dispute] = store.disputes
        assert dispute.kind is DisputeKind.GENERAL_OR_UNLINK
        assert "Ivan Petrov" in dispute.message
        assert sender.last_to("1001")[0] == get_text("logout_request_sent")
        assert (await store.get_worker(ivan)).channel_id == "1001"

    @pytest.mark.asyncio
    async def test_other_identity_gets_alert(self, bot, store, sender, ivan):
        await bot.press("2002", f"logout_request:{ivan}")

        assert sender.answers[-1][1:] == (get_text("not_for_you"), True)
        assert store.disputes == []

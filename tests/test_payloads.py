# tests/test_payloads.py
"""Tests for timesheet_bot/core/payloads.py: callback payload codec."""
from __future__ import annotations

from datetime import date

import pytest

from timesheet_bot.core.domain import FeedbackKind
from timesheet_bot.core.errors import PayloadError
from timesheet_bot.core.payloads import (
    ActionPayload,
    CorrectPayload,
    FeedbackPayload,
    IncorrectPayload,
    LogoutRequestPayload,
    MonthPayload,
    MoreResultsPayload,
    SelectPayload,
    decode,
    encode,
    from_epoch_day,
    to_epoch_day,
)


class TestEpochDay:
    def test_epoch_start(self):
        assert to_epoch_day(date(1970, 1, 1)) == 0

    def test_known_date(self):
        assert to_epoch_day(date(2024, 3, 5)) == 19787
        assert from_epoch_day(19787) == date(2024, 3, 5)


class TestDecode:
    def test_correct(self):
        payload = decode("correct:42:19787")
        assert payload == CorrectPayload(42, 19787)
        assert payload.day == date(2024, 3, 5)

    def test_incorrect(self):
        assert decode("incorrect:7:19000") == IncorrectPayload(7, 19000)

    def test_calendar_bounds_accepted(self):
        assert decode(f"incorrect:7:{to_epoch_day(date.max)}").day == date.max
        assert decode(f"correct:7:{to_epoch_day(date.min)}").day == date.min

    def test_select_keeps_channel_as_string(self):
        assert decode("select:123456789:42") == SelectPayload("123456789", 42)

    def test_feedback_kinds(self):
        assert decode("feedback:hours_mistake").kind is FeedbackKind.HOURS_MISTAKE
        assert decode("feedback:general").kind is FeedbackKind.GENERAL
        assert decode("feedback:cancel").kind is None

    def test_logout_request(self):
        assert decode("logout_request:42") == LogoutRequestPayload(42)

    def test_action_and_month(self):
        assert decode("action:week") == ActionPayload("week")
        assert decode("month:2:2024") == MonthPayload(2, 2024)

    def test_more_results(self):
        assert decode("more_results") == MoreResultsPayload()

    @pytest.mark.parametrize("raw", [
        "",
        "bogus:1",
        "correct:42",
        "correct:abc:19787",
        "correct:0:19787",
        "correct:-5:19787",
        "incorrect:42:99999999",
        "correct:42:-999999",
        "correct:42:9999999999999",
        "incorrect:42:19787:extra",
        "select::42",
        "feedback:rant",
        "action:delete_everything",
        "month:13:2024",
        "more_results:1",
        "x" * 65,
    ])
    def test_malformed_payload_rejected(self, raw):
        with pytest.raises(PayloadError):
            decode(raw)


class TestEncode:
    def test_round_trip_of_each_kind(self):
        payloads = [
            CorrectPayload(42, 19787),
            IncorrectPayload(42, 19787),
            SelectPayload("1001", 42),
            FeedbackPayload("general"),
            LogoutRequestPayload(42),
            ActionPayload("history"),
            MonthPayload(12, 2023),
            MoreResultsPayload(),
        ]
        for payload in payloads:
            assert decode(encode(payload)) == payload

    def test_separator_in_argument_rejected(self):
        with pytest.raises(PayloadError):
            encode(SelectPayload("a:b", 1))

    def test_oversized_payload_rejected(self):
        with pytest.raises(PayloadError):
            encode(SelectPayload("9" * 60, 1))

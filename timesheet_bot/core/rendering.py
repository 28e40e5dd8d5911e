"""
Message and keyboard rendering (Telegram HTML subset).
"""
from __future__ import annotations

from datetime import date
from decimal import Decimal
from html import escape
from typing import Iterable, Optional

from timesheet_bot.core.aggregation import (
    AggregationResult,
    CalendarMonth,
    CalendarWeek,
    RollingDays,
    round_display,
)
from timesheet_bot.core.domain import Button, ButtonRows, HoursRecord, Worker
from timesheet_bot.core.payloads import (
    ActionPayload,
    CorrectPayload,
    FeedbackPayload,
    IncorrectPayload,
    LogoutRequestPayload,
    MonthPayload,
    MoreResultsPayload,
    SelectPayload,
    encode,
    to_epoch_day,
)
from timesheet_bot.core.texts import MENU_LABELS, get_text, month_label


def fmt_hours(value: Decimal | int) -> str:
    """``Decimal('8.00')`` -> ``'8'``, ``Decimal('7.50')`` -> ``'7.5'``."""
    if isinstance(value, int):
        return str(value)
    normalized = value.normalize()
    text = format(normalized, "f")
    return text


def fmt_date(day: date) -> str:
    return day.isoformat()


def _header(title: str, worker: Worker) -> list[str]:
    return [
        f"<b>{escape(title)}</b>",
        "",
        f"<b>{get_text('label_name')}</b> {escape(worker.name)}",
        f"<b>{get_text('label_position')}</b> {escape(worker.position or get_text('no_position'))}",
    ]


def render_daily(
    worker: Worker,
    day: date,
    records: Iterable[HoursRecord],
    *,
    annotation: Optional[str] = None,
    override_hours: Optional[Decimal] = None,
) -> str:
    """
    Daily digest: header, one line per record, footer total.

    ``override_hours`` replaces every displayed line value (admin follow-up
    before/after a correction); the total is computed from the displayed values.
    """
    records = list(records)
    lines: list[str] = []
    if annotation:
        lines += [f"<b>⚠️⚠️⚠️ {escape(annotation)} ⚠️⚠️⚠️</b>", ""]

    lines += _header(get_text("daily_title"), worker)
    lines.append(f"<b>{get_text('label_date')}</b> {fmt_date(day)}")
    lines.append("")

    shown_total = Decimal("0")
    for rec in records:
        value = override_hours if override_hours is not None else rec.hours
        shown_total += value
        lines.append(
            f"• {escape(rec.activity_description or '')} — {fmt_hours(value)} {get_text('hours_unit')}"
        )

    lines.append("")
    lines.append(
        f"<b>{get_text('label_total')}</b> {round_display(shown_total)} {get_text('hours_unit')}"
    )
    return "\n".join(lines)


def _window_title(result: AggregationResult) -> tuple[str, str]:
    window = result.window
    period = f"{fmt_date(result.start)} — {fmt_date(result.end)}"
    if isinstance(window, RollingDays):
        return get_text("rolling_title", days=window.days), period
    if isinstance(window, CalendarWeek):
        return get_text("week_title"), period
    if isinstance(window, CalendarMonth):
        return get_text("month_title"), month_label(result.start.month, result.start.year)
    return get_text("range_title"), period


def render_window(result: AggregationResult) -> str:
    title, period = _window_title(result)
    lines = _header(title, result.worker)
    lines.append(f"<b>{get_text('label_period')}</b> {escape(period)}")
    lines.append("")
    for rec in result.records:
        desc = f" ({escape(rec.activity_description)})" if rec.activity_description else ""
        lines.append(
            f"<b>{fmt_date(rec.date)}</b>: {fmt_hours(rec.hours)} {get_text('hours_unit')}{desc}"
        )
    lines.append("")
    lines.append(f"<b>{get_text('label_total')}</b> {result.total} {get_text('hours_unit')}")
    return "\n".join(lines)


# ============================================================================
# KEYBOARDS
# ============================================================================

def confirmation_buttons(worker_id: int, day: date) -> ButtonRows:
    epoch_day = to_epoch_day(day)
    return [[
        Button(get_text("btn_correct"), encode(CorrectPayload(worker_id, epoch_day))),
        Button(get_text("btn_incorrect"), encode(IncorrectPayload(worker_id, epoch_day))),
    ]]


def main_menu_buttons(rolling_days: int) -> ButtonRows:
    return [
        [Button(get_text("btn_rolling", days=rolling_days), encode(ActionPayload("last5days")))],
        [Button(get_text("btn_week"), encode(ActionPayload("week")))],
        [Button(get_text("btn_month"), encode(ActionPayload("month")))],
        [Button(get_text("btn_history"), encode(ActionPayload("history")))],
        [Button(get_text("btn_feedback"), encode(ActionPayload("feedback")))],
    ]


def menu_keyboard_labels() -> list[list[str]]:
    labels = list(MENU_LABELS)
    return [labels[0:2], labels[2:4], labels[4:]]


def feedback_buttons() -> ButtonRows:
    return [
        [Button(get_text("btn_feedback_hours"), encode(FeedbackPayload("hours_mistake")))],
        [Button(get_text("btn_feedback_general"), encode(FeedbackPayload("general")))],
        [Button(get_text("btn_cancel"), encode(FeedbackPayload("cancel")))],
    ]


def history_buttons(today: date, months: int = 12) -> ButtonRows:
    rows: ButtonRows = []
    year, month = today.year, today.month
    for _ in range(months):
        rows.append([Button(month_label(month, year), encode(MonthPayload(month, year)))])
        month -= 1
        if month == 0:
            month, year = 12, year - 1
    return rows


def search_buttons(channel_id: str, workers: Iterable[Worker], hidden_count: int) -> ButtonRows:
    rows: ButtonRows = [
        [Button(
            f"👤 {w.name} | {w.position or get_text('no_position')} | ID: {w.id}",
            encode(SelectPayload(channel_id, w.id)),
        )]
        for w in workers
    ]
    if hidden_count:
        rows.append([Button(get_text("search_more", count=hidden_count), encode(MoreResultsPayload()))])
    return rows


def logout_request_buttons(worker_id: int) -> ButtonRows:
    return [[Button(get_text("btn_logout_request"), encode(LogoutRequestPayload(worker_id)))]]

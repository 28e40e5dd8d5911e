"""
Time-window aggregation of hours records.

Windows resolve to inclusive ``[start, end]`` day ranges relative to a
calendar-local "today". Totals are rounded for display only; stored values
are never touched.
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Optional, Union
from zoneinfo import ZoneInfo

from timesheet_bot.core.domain import HoursRecord, Worker
from timesheet_bot.core.errors import InvalidRange, NotFound
from timesheet_bot.core.ports import AsyncRecordStore
from timesheet_bot.infra.logging_config import get_logger

logger = get_logger(__name__)


def local_today_factory(tz_name: str) -> Callable[[], date]:
    """Return a callable giving today's date in ``tz_name``."""
    tz = ZoneInfo(tz_name)

    def today() -> date:
        return datetime.now(tz).date()

    return today


def round_display(total: Decimal) -> int:
    """Round half away from zero: 6.5 -> 7, -6.5 -> -7."""
    return int(total.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _parse_day(value: Union[date, str]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise InvalidRange(f"unparseable date: {value!r}") from None


# ============================================================================
# WINDOWS
# ============================================================================

@dataclass(frozen=True)
class RollingDays:
    days: int

    def resolve(self, today: date) -> tuple[date, date]:
        if self.days < 1:
            raise InvalidRange("rolling window needs at least one day")
        return today - timedelta(days=self.days - 1), today


@dataclass(frozen=True)
class CalendarWeek:
    reference: Optional[date] = None

    def resolve(self, today: date) -> tuple[date, date]:
        ref = self.reference or today
        monday = ref - timedelta(days=ref.weekday())
        return monday, monday + timedelta(days=6)


@dataclass(frozen=True)
class CalendarMonth:
    month: Optional[int] = None
    year: Optional[int] = None

    def resolve(self, today: date) -> tuple[date, date]:
        month = self.month or today.month
        year = self.year or today.year
        if not 1 <= month <= 12:
            raise InvalidRange(f"month out of range: {month}")
        last = calendar.monthrange(year, month)[1]
        return date(year, month, 1), date(year, month, last)


@dataclass(frozen=True)
class ExplicitRange:
    start: Union[date, str]
    end: Union[date, str]

    def resolve(self, today: date) -> tuple[date, date]:
        start, end = _parse_day(self.start), _parse_day(self.end)
        if start > end:
            raise InvalidRange(f"start {start} is after end {end}")
        return start, end


Window = Union[RollingDays, CalendarWeek, CalendarMonth, ExplicitRange]


# ============================================================================
# RESULT
# ============================================================================

@dataclass(frozen=True)
class AggregationResult:
    worker: Worker
    window: Window
    start: date
    end: date
    records: tuple[HoursRecord, ...]

    @property
    def exact_total(self) -> Decimal:
        return sum((r.hours for r in self.records), Decimal("0"))

    @property
    def total(self) -> int:
        return round_display(self.exact_total)

    @property
    def is_empty(self) -> bool:
        return not self.records


def order_records(records: list[HoursRecord]) -> tuple[HoursRecord, ...]:
    return tuple(sorted(records, key=lambda r: (r.date, r.id)))


class AggregationEngine:
    def __init__(self, store: AsyncRecordStore, today: Callable[[], date]) -> None:
        self.store = store
        self.today = today

    def resolve(self, window: Window) -> tuple[date, date]:
        return window.resolve(self.today())

    async def aggregate(self, worker_id: int, window: Window) -> AggregationResult:
        """
        Raises:
            NotFound: unknown worker
            InvalidRange: malformed window
        """
        start, end = self.resolve(window)

        worker = await self.store.get_worker(worker_id)
        if worker is None:
            raise NotFound(f"worker {worker_id} not found")

        records = await self.store.hours_between(worker.id, start, end)
        return AggregationResult(
            worker=worker,
            window=window,
            start=start,
            end=end,
            records=order_records(records),
        )

    async def aggregate_day(self, worker_id: int, day: date) -> AggregationResult:
        return await self.aggregate(worker_id, ExplicitRange(day, day))

    async def aggregate_linked(self, window: Window) -> list[AggregationResult]:
        """One result per linked worker, including empty ones; callers filter."""
        start, end = self.resolve(window)
        results = []
        for worker in await self.store.list_linked_workers():
            records = await self.store.hours_between(worker.id, start, end)
            results.append(AggregationResult(worker, window, start, end, order_records(records)))
        return results

    async def totals_by_worker(self, window: Window) -> dict[int, Decimal]:
        """Exact per-worker sums over a window (reporting primitive)."""
        start, end = self.resolve(window)
        totals: dict[int, Decimal] = {}
        for rec in await self.store.hours_in_range(start, end):
            totals[rec.worker_id] = totals.get(rec.worker_id, Decimal("0")) + rec.hours
        return totals

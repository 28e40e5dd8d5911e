# timesheet_bot/core/reporting.py
"""Admin reporting projections built on AggregationEngine.totals_by_worker."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from timesheet_bot.core.aggregation import (
    AggregationEngine,
    CalendarMonth,
    CalendarWeek,
    ExplicitRange,
    Window,
    round_display,
)
from timesheet_bot.core.domain import Worker
from timesheet_bot.core.ports import AsyncRecordStore

ALL_WORKERS_LIMIT = 100_000


@dataclass(frozen=True)
class WorkerTotal:
    worker: Optional[Worker]
    worker_id: int
    exact_hours: Decimal
    records_count: int = 0

    @property
    def total_hours(self) -> int:
        return round_display(self.exact_hours)


class ReportingService:
    def __init__(self, store: AsyncRecordStore, aggregation: AggregationEngine) -> None:
        self.store = store
        self.aggregation = aggregation

    async def hours_sum(self, start: date | str, end: date | str) -> tuple[date, date, list[WorkerTotal]]:
        """Every worker's total over an explicit range, zero totals included."""
        window = ExplicitRange(start, end)
        first, last = self.aggregation.resolve(window)

        counts: dict[int, int] = {}
        sums: dict[int, Decimal] = {}
        for rec in await self.store.hours_in_range(first, last):
            counts[rec.worker_id] = counts.get(rec.worker_id, 0) + 1
            sums[rec.worker_id] = sums.get(rec.worker_id, Decimal("0")) + rec.hours

        workers, _ = await self.store.list_workers(offset=0, limit=ALL_WORKERS_LIMIT)
        rows = [
            WorkerTotal(w, w.id, sums.get(w.id, Decimal("0")), counts.get(w.id, 0))
            for w in workers
        ]
        return first, last, rows

    async def top(self, window: Window, limit: int = 10) -> list[WorkerTotal]:
        totals = await self.aggregation.totals_by_worker(window)
        ranked = sorted(totals.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]
        result = []
        for worker_id, hours in ranked:
            result.append(WorkerTotal(await self.store.get_worker(worker_id), worker_id, hours))
        return result

    async def top_weekly(self, limit: int = 10) -> list[WorkerTotal]:
        return await self.top(CalendarWeek(), limit)

    async def top_monthly(self, limit: int = 10) -> list[WorkerTotal]:
        return await self.top(CalendarMonth(), limit)

    async def monthly_totals(self) -> list[tuple[date, Decimal]]:
        return await self.store.monthly_totals()

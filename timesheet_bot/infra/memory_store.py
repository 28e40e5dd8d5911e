# timesheet_bot/infra/memory_store.py
"""
In-memory AsyncRecordStore.

Used for ``STORAGE_BACKEND=memory`` (local development) and as the store
double in tests. Objects are copied on the way in and out so callers only
change state through the store methods, as with the Postgres store.
"""
from __future__ import annotations

import itertools
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from threading import Lock
from typing import Optional, Sequence

from timesheet_bot.core.domain import (
    Dispute,
    HoursRecord,
    ImportBatch,
    IngestRow,
    Worker,
    to_hours,
    utcnow,
)


class InMemoryRecordStore:
    def __init__(self) -> None:
        self._workers: dict[int, Worker] = {}
        self._hours: dict[int, HoursRecord] = {}
        self._disputes: list[Dispute] = []
        self._imports: list[ImportBatch] = []
        self._hours_ids = itertools.count(1)
        self._dispute_ids = itertools.count(1)
        self._import_ids = itertools.count(1)
        self._lock = Lock()

    # --- test/dev helpers ----------------------------------------------

    def add_worker(self, worker: Worker) -> Worker:
        with self._lock:
            self._workers[worker.id] = replace(worker)
        return worker

    def add_hours(self, worker_id: int, day: date, hours, **fields) -> HoursRecord:
        with self._lock:
            record = HoursRecord(
                id=next(self._hours_ids),
                worker_id=worker_id,
                date=day,
                hours=to_hours(hours),
                **fields,
            )
            self._hours[record.id] = record
        return replace(record)

    @property
    def disputes(self) -> list[Dispute]:
        with self._lock:
            return list(self._disputes)

    # --- workers -------------------------------------------------------

    async def get_worker(self, worker_id: int) -> Optional[Worker]:
        with self._lock:
            worker = self._workers.get(worker_id)
            return replace(worker) if worker else None

    async def get_worker_by_channel(self, channel_id: str) -> Optional[Worker]:
        with self._lock:
            for worker in self._workers.values():
                if worker.is_linked and worker.channel_id == channel_id:
                    return replace(worker)
        return None

    async def save_worker(self, worker: Worker) -> None:
        with self._lock:
            self._workers[worker.id] = replace(worker)

    def _sorted_workers(self) -> list[Worker]:
        return sorted(self._workers.values(), key=lambda w: (w.name.casefold(), w.id))

    async def list_workers(self, *, offset: int = 0, limit: int = 100) -> tuple[list[Worker], int]:
        with self._lock:
            ordered = sorted(self._workers.values(), key=lambda w: w.id)
            return [replace(w) for w in ordered[offset:offset + limit]], len(ordered)

    async def list_linked_workers(self) -> list[Worker]:
        with self._lock:
            return [
                replace(w) for w in sorted(self._workers.values(), key=lambda w: w.id)
                if w.is_linked and w.channel_id
            ]

    async def search_workers(self, token: str, limit: int) -> list[Worker]:
        needle = token.lower()
        with self._lock:
            found = [
                w for w in self._sorted_workers()
                if needle in w.name.lower() or needle in (w.position or "").lower()
            ]
            return [replace(w) for w in found[:limit]]

    async def scan_workers(self, limit: int) -> list[Worker]:
        with self._lock:
            return [replace(w) for w in self._sorted_workers()[:limit]]

    async def clear_channel(self, channel_id: str) -> list[Worker]:
        cleared = []
        with self._lock:
            for worker in self._workers.values():
                if worker.channel_id == channel_id:
                    worker.channel_id = None
                    worker.is_linked = False
                    worker.updated_at = utcnow()
                    cleared.append(replace(worker))
        return cleared

    # --- hours ---------------------------------------------------------

    @staticmethod
    def _ordered(records) -> list[HoursRecord]:
        return [replace(r) for r in sorted(records, key=lambda r: (r.date, r.id))]

    async def get_hours_record(self, record_id: int) -> Optional[HoursRecord]:
        with self._lock:
            record = self._hours.get(record_id)
            return replace(record) if record else None

    async def hours_between(self, worker_id: int, start: date, end: date) -> list[HoursRecord]:
        with self._lock:
            return self._ordered(
                r for r in self._hours.values()
                if r.worker_id == worker_id and start <= r.date <= end
            )

    async def hours_in_range(self, start: date, end: date) -> list[HoursRecord]:
        with self._lock:
            return self._ordered(r for r in self._hours.values() if start <= r.date <= end)

    async def latest_hours_on(self, worker_id: int, day: date) -> Optional[HoursRecord]:
        with self._lock:
            matches = [r for r in self._hours.values() if r.worker_id == worker_id and r.date == day]
            if not matches:
                return None
            return replace(max(matches, key=lambda r: r.id))

    async def update_hours(self, record_id: int, hours: Decimal) -> Optional[HoursRecord]:
        with self._lock:
            record = self._hours.get(record_id)
            if record is None:
                return None
            record.hours = to_hours(hours)
            return replace(record)

    async def mark_delivered(self, record_ids: Sequence[int], at: datetime) -> int:
        count = 0
        with self._lock:
            for record_id in record_ids:
                record = self._hours.get(record_id)
                if record is None:
                    continue
                if not record.delivered:
                    record.delivered = True
                    record.delivered_at = at
                count += 1
        return count

    async def replace_hours_for_date(self, day: date, rows: Sequence[IngestRow]) -> int:
        with self._lock:
            for record_id in [k for k, r in self._hours.items() if r.date == day]:
                del self._hours[record_id]

            now = utcnow()
            for row in rows:
                worker = self._workers.get(row.worker_id)
                if worker is None:
                    self._workers[row.worker_id] = Worker(
                        id=row.worker_id, name=row.name, position=row.position or "",
                    )
                else:
                    worker.name = row.name
                    worker.position = row.position or ""
                    worker.updated_at = now

                record = HoursRecord(
                    id=next(self._hours_ids),
                    worker_id=row.worker_id,
                    date=day,
                    hours=to_hours(row.hours),
                    activity_code=row.activity_code,
                    activity_description=row.activity_description,
                    cost_center=row.cost_center,
                    description=row.description,
                )
                self._hours[record.id] = record
        return len(rows)

    async def list_hours(
        self, *, offset: int = 0, limit: int = 10, search: Optional[str] = None,
    ) -> tuple[list[HoursRecord], int]:
        with self._lock:
            records = sorted(self._hours.values(), key=lambda r: (r.date, r.id), reverse=True)
            if search:
                needle = search.lower()
                records = [
                    r for r in records
                    if needle in r.activity_description.lower()
                    or needle in r.cost_center.lower()
                    or needle in r.description.lower()
                ]
            return [replace(r) for r in records[offset:offset + limit]], len(records)

    async def monthly_totals(self) -> list[tuple[date, Decimal]]:
        totals: dict[date, Decimal] = {}
        with self._lock:
            for r in self._hours.values():
                key = r.date.replace(day=1)
                totals[key] = totals.get(key, Decimal("0")) + r.hours
        return sorted(totals.items())

    async def record_import(self, batch: ImportBatch) -> ImportBatch:
        with self._lock:
            stored = replace(batch, id=next(self._import_ids))
            self._imports.append(stored)
        return stored

    async def list_imports(self, *, offset: int = 0, limit: int = 20) -> tuple[list[ImportBatch], int]:
        with self._lock:
            ordered = list(reversed(self._imports))
            return ordered[offset:offset + limit], len(ordered)

    # --- disputes ------------------------------------------------------

    async def add_dispute(self, dispute: Dispute) -> Dispute:
        with self._lock:
            stored = replace(dispute, id=next(self._dispute_ids))
            self._disputes.append(stored)
        return stored

    async def mark_dispute_notified(self, dispute_id: int) -> None:
        with self._lock:
            for index, dispute in enumerate(self._disputes):
                if dispute.id == dispute_id:
                    self._disputes[index] = replace(dispute, admin_notified=True)

    async def list_disputes(self, *, offset: int = 0, limit: int = 20) -> tuple[list[Dispute], int]:
        with self._lock:
            ordered = list(reversed(self._disputes))
            return ordered[offset:offset + limit], len(ordered)

    async def count_disputes_since(self, since: datetime) -> int:
        with self._lock:
            return sum(1 for d in self._disputes if d.created_at >= since)

# timesheet_bot/infra/pg_record_store_async.py
"""
Async PostgreSQL record store (asyncpg).

Schema lives in ``infra/sql``; apply it with ``python -m timesheet_bot.infra.migrate``.
Every public method retries transient connection errors.
"""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Sequence

import asyncpg

from timesheet_bot.core.domain import (
    Dispute,
    DisputeKind,
    HoursRecord,
    ImportBatch,
    IngestRow,
    Worker,
    to_hours,
)
from timesheet_bot.infra.db_async import db_conn
from timesheet_bot.infra.db_resilience_async import retry_on_transient_error
from timesheet_bot.infra.logging_config import get_logger

logger = get_logger(__name__)

_WORKER_COLUMNS = "id, name, position, channel_id, is_linked, created_at, updated_at"
_HOURS_COLUMNS = (
    "id, worker_id, work_date, hours, activity_code, activity_description, "
    "cost_center, description, delivered, delivered_at, created_at"
)
_DISPUTE_COLUMNS = "id, worker_id, record_id, kind, message, channel_id, admin_notified, created_at"


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _worker(row: asyncpg.Record) -> Worker:
    return Worker(
        id=row["id"],
        name=row["name"],
        position=row["position"] or "",
        channel_id=row["channel_id"],
        is_linked=row["is_linked"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _hours(row: asyncpg.Record) -> HoursRecord:
    return HoursRecord(
        id=row["id"],
        worker_id=row["worker_id"],
        date=row["work_date"],
        hours=to_hours(row["hours"]),
        activity_code=row["activity_code"],
        activity_description=row["activity_description"],
        cost_center=row["cost_center"],
        description=row["description"],
        delivered=row["delivered"],
        delivered_at=row["delivered_at"],
        created_at=row["created_at"],
    )


def _dispute(row: asyncpg.Record) -> Dispute:
    return Dispute(
        id=row["id"],
        worker_id=row["worker_id"],
        record_id=row["record_id"],
        kind=DisputeKind(row["kind"]),
        message=row["message"],
        channel_id=row["channel_id"],
        admin_notified=row["admin_notified"],
        created_at=row["created_at"],
    )


class AsyncPostgresRecordStore:
    """AsyncRecordStore over the shared asyncpg pool."""

    # --- workers -------------------------------------------------------

    @retry_on_transient_error()
    async def get_worker(self, worker_id: int) -> Optional[Worker]:
        async with db_conn() as conn:
            row = await conn.fetchrow(f"SELECT {_WORKER_COLUMNS} FROM workers WHERE id = $1", worker_id)
        return _worker(row) if row else None

    @retry_on_transient_error()
    async def get_worker_by_channel(self, channel_id: str) -> Optional[Worker]:
        async with db_conn() as conn:
            row = await conn.fetchrow(
                f"SELECT {_WORKER_COLUMNS} FROM workers WHERE channel_id = $1 AND is_linked",
                channel_id,
            )
        return _worker(row) if row else None

    @retry_on_transient_error()
    async def save_worker(self, worker: Worker) -> None:
        async with db_conn() as conn:
            await conn.execute(
                """
                INSERT INTO workers (id, name, position, channel_id, is_linked, updated_at)
                VALUES ($1, $2, $3, $4, $5, now())
                ON CONFLICT (id) DO UPDATE
                SET name = EXCLUDED.name,
                    position = EXCLUDED.position,
                    channel_id = EXCLUDED.channel_id,
                    is_linked = EXCLUDED.is_linked,
                    updated_at = now()
                """,
                worker.id, worker.name, worker.position or "", worker.channel_id, worker.is_linked,
            )

    @retry_on_transient_error()
    async def list_workers(self, *, offset: int = 0, limit: int = 100) -> tuple[list[Worker], int]:
        async with db_conn() as conn:
            total = await conn.fetchval("SELECT count(*) FROM workers")
            rows = await conn.fetch(
                f"SELECT {_WORKER_COLUMNS} FROM workers ORDER BY id OFFSET $1 LIMIT $2",
                offset, limit,
            )
        return [_worker(r) for r in rows], total

    @retry_on_transient_error()
    async def list_linked_workers(self) -> list[Worker]:
        async with db_conn() as conn:
            rows = await conn.fetch(
                f"SELECT {_WORKER_COLUMNS} FROM workers "
                "WHERE is_linked AND channel_id IS NOT NULL ORDER BY id"
            )
        return [_worker(r) for r in rows]

    @retry_on_transient_error()
    async def search_workers(self, token: str, limit: int) -> list[Worker]:
        pattern = f"%{_escape_like(token.lower())}%"
        async with db_conn() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_WORKER_COLUMNS} FROM workers
                WHERE lower(name) LIKE $1 OR lower(position) LIKE $1
                ORDER BY lower(name), id
                LIMIT $2
                """,
                pattern, limit,
            )
        return [_worker(r) for r in rows]

    @retry_on_transient_error()
    async def scan_workers(self, limit: int) -> list[Worker]:
        async with db_conn() as conn:
            rows = await conn.fetch(
                f"SELECT {_WORKER_COLUMNS} FROM workers ORDER BY lower(name), id LIMIT $1", limit
            )
        return [_worker(r) for r in rows]

    @retry_on_transient_error()
    async def clear_channel(self, channel_id: str) -> list[Worker]:
        async with db_conn() as conn:
            rows = await conn.fetch(
                f"""
                UPDATE workers SET channel_id = NULL, is_linked = false, updated_at = now()
                WHERE channel_id = $1
                RETURNING {_WORKER_COLUMNS}
                """,
                channel_id,
            )
        return [_worker(r) for r in rows]

    # --- hours ---------------------------------------------------------

    @retry_on_transient_error()
    async def get_hours_record(self, record_id: int) -> Optional[HoursRecord]:
        async with db_conn() as conn:
            row = await conn.fetchrow(f"SELECT {_HOURS_COLUMNS} FROM hours_records WHERE id = $1", record_id)
        return _hours(row) if row else None

    @retry_on_transient_error()
    async def hours_between(self, worker_id: int, start: date, end: date) -> list[HoursRecord]:
        async with db_conn() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_HOURS_COLUMNS} FROM hours_records
                WHERE worker_id = $1 AND work_date BETWEEN $2 AND $3
                ORDER BY work_date, id
                """,
                worker_id, start, end,
            )
        return [_hours(r) for r in rows]

    @retry_on_transient_error()
    async def hours_in_range(self, start: date, end: date) -> list[HoursRecord]:
        async with db_conn() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_HOURS_COLUMNS} FROM hours_records
                WHERE work_date BETWEEN $1 AND $2
                ORDER BY work_date, id
                """,
                start, end,
            )
        return [_hours(r) for r in rows]

    @retry_on_transient_error()
    async def latest_hours_on(self, worker_id: int, day: date) -> Optional[HoursRecord]:
        async with db_conn() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_HOURS_COLUMNS} FROM hours_records
                WHERE worker_id = $1 AND work_date = $2
                ORDER BY id DESC LIMIT 1
                """,
                worker_id, day,
            )
        return _hours(row) if row else None

    @retry_on_transient_error()
    async def update_hours(self, record_id: int, hours: Decimal) -> Optional[HoursRecord]:
        async with db_conn() as conn:
            row = await conn.fetchrow(
                f"UPDATE hours_records SET hours = $2 WHERE id = $1 RETURNING {_HOURS_COLUMNS}",
                record_id, to_hours(hours),
            )
        return _hours(row) if row else None

    @retry_on_transient_error()
    async def mark_delivered(self, record_ids: Sequence[int], at: datetime) -> int:
        if not record_ids:
            return 0
        async with db_conn() as conn:
            # delivered_at keeps the first delivery time
            result = await conn.execute(
                """
                UPDATE hours_records
                SET delivered = true, delivered_at = COALESCE(delivered_at, $2)
                WHERE id = ANY($1::bigint[])
                """,
                list(record_ids), at,
            )
        return int(result.split()[-1]) if result else 0

    @retry_on_transient_error()
    async def replace_hours_for_date(self, day: date, rows: Sequence[IngestRow]) -> int:
        async with db_conn(autocommit=False) as conn:
            await conn.execute("DELETE FROM hours_records WHERE work_date = $1", day)

            workers = {r.worker_id: r for r in rows}
            await conn.executemany(
                """
                INSERT INTO workers (id, name, position)
                VALUES ($1, $2, $3)
                ON CONFLICT (id) DO UPDATE
                SET name = EXCLUDED.name, position = EXCLUDED.position, updated_at = now()
                """,
                [(r.worker_id, r.name, r.position or "") for r in workers.values()],
            )
            await conn.executemany(
                """
                INSERT INTO hours_records
                  (worker_id, work_date, hours, activity_code, activity_description, cost_center, description)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                """,
                [
                    (
                        r.worker_id, day, to_hours(r.hours), r.activity_code,
                        r.activity_description, r.cost_center, r.description,
                    )
                    for r in rows
                ],
            )
        return len(rows)

    @retry_on_transient_error()
    async def list_hours(
        self, *, offset: int = 0, limit: int = 10, search: Optional[str] = None,
    ) -> tuple[list[HoursRecord], int]:
        where = ""
        args: list = []
        if search:
            args.append(f"%{_escape_like(search.lower())}%")
            where = (
                "WHERE lower(activity_description) LIKE $1 "
                "OR lower(cost_center) LIKE $1 OR lower(description) LIKE $1"
            )

        async with db_conn() as conn:
            total = await conn.fetchval(f"SELECT count(*) FROM hours_records {where}", *args)
            n = len(args)
            rows = await conn.fetch(
                f"SELECT {_HOURS_COLUMNS} FROM hours_records {where} "
                f"ORDER BY work_date DESC, id DESC OFFSET ${n + 1} LIMIT ${n + 2}",
                *args, offset, limit,
            )
        return [_hours(r) for r in rows], total

    @retry_on_transient_error()
    async def monthly_totals(self) -> list[tuple[date, Decimal]]:
        async with db_conn() as conn:
            rows = await conn.fetch(
                """
                SELECT date_trunc('month', work_date)::date AS month, sum(hours) AS total
                FROM hours_records
                GROUP BY 1 ORDER BY 1
                """
            )
        return [(r["month"], Decimal(r["total"])) for r in rows]

    @retry_on_transient_error()
    async def record_import(self, batch: ImportBatch) -> ImportBatch:
        async with db_conn() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO import_batches (source_name, records_count, target_date)
                VALUES ($1, $2, $3)
                RETURNING id, created_at
                """,
                batch.source_name, batch.records_count, batch.target_date,
            )
        return ImportBatch(
            source_name=batch.source_name,
            records_count=batch.records_count,
            target_date=batch.target_date,
            id=row["id"],
            created_at=row["created_at"],
        )

    @retry_on_transient_error()
    async def list_imports(self, *, offset: int = 0, limit: int = 20) -> tuple[list[ImportBatch], int]:
        async with db_conn() as conn:
            total = await conn.fetchval("SELECT count(*) FROM import_batches")
            rows = await conn.fetch(
                """
                SELECT id, source_name, records_count, target_date, created_at
                FROM import_batches ORDER BY id DESC OFFSET $1 LIMIT $2
                """,
                offset, limit,
            )
        return [ImportBatch(**dict(r)) for r in rows], total

    # --- disputes ------------------------------------------------------

    @retry_on_transient_error()
    async def add_dispute(self, dispute: Dispute) -> Dispute:
        async with db_conn() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO disputes (worker_id, record_id, kind, message, channel_id, admin_notified)
                VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING {_DISPUTE_COLUMNS}
                """,
                dispute.worker_id, dispute.record_id, dispute.kind.value,
                dispute.message, dispute.channel_id, dispute.admin_notified,
            )
        return _dispute(row)

    @retry_on_transient_error()
    async def mark_dispute_notified(self, dispute_id: int) -> None:
        async with db_conn() as conn:
            await conn.execute("UPDATE disputes SET admin_notified = true WHERE id = $1", dispute_id)

    @retry_on_transient_error()
    async def list_disputes(self, *, offset: int = 0, limit: int = 20) -> tuple[list[Dispute], int]:
        async with db_conn() as conn:
            total = await conn.fetchval("SELECT count(*) FROM disputes")
            rows = await conn.fetch(
                f"SELECT {_DISPUTE_COLUMNS} FROM disputes ORDER BY created_at DESC, id DESC OFFSET $1 LIMIT $2",
                offset, limit,
            )
        return [_dispute(r) for r in rows], total

    @retry_on_transient_error()
    async def count_disputes_since(self, since: datetime) -> int:
        async with db_conn() as conn:
            return await conn.fetchval("SELECT count(*) FROM disputes WHERE created_at >= $1", since)

# timesheet_bot/core/ingestion.py
"""
Import of normalized spreadsheet rows.

Contract: every record dated ``target_date`` is replaced (never merged) by
the incoming rows, worker name/position are upserted, and an ImportBatch is
recorded.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Sequence

from timesheet_bot.core.domain import ImportBatch, IngestRow
from timesheet_bot.core.errors import InvalidRange
from timesheet_bot.core.ports import AsyncRecordStore
from timesheet_bot.infra.logging_config import get_logger
from timesheet_bot.infra.metrics import inc_counter

logger = get_logger(__name__)


@dataclass(frozen=True)
class IngestResult:
    batch: ImportBatch
    records_count: int
    workers_count: int


def validate_rows(rows: Sequence[IngestRow]) -> None:
    """Raises InvalidRange on the first row that cannot be stored."""
    for index, row in enumerate(rows):
        if row.worker_id <= 0:
            raise InvalidRange(f"row {index}: worker id must be positive")
        if not (row.name or "").strip():
            raise InvalidRange(f"row {index}: worker name is empty")
        if row.hours < 0:
            raise InvalidRange(f"row {index}: hours must not be negative")


async def ingest_batch(
    store: AsyncRecordStore,
    target_date: date,
    rows: Sequence[IngestRow],
    *,
    source_name: str = "upload",
) -> IngestResult:
    validate_rows(rows)

    inserted = await store.replace_hours_for_date(target_date, rows)
    batch = await store.record_import(ImportBatch(
        source_name=source_name,
        records_count=inserted,
        target_date=target_date,
    ))

    workers = len({r.worker_id for r in rows})
    inc_counter("ingested_records_total", amount=inserted)
    logger.info(
        "Imported %s records for %s workers on %s from %s",
        inserted, workers, target_date.isoformat(), source_name,
    )
    return IngestResult(batch=batch, records_count=inserted, workers_count=workers)

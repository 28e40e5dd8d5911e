# timesheet_bot/core/ports.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Protocol, Sequence

from timesheet_bot.core.domain import (
    ButtonRows,
    Dispute,
    HoursRecord,
    ImportBatch,
    IngestRow,
    Worker,
)


class AsyncRecordStore(Protocol):
    # --- workers -----------------------------------------------------------
    async def get_worker(self, worker_id: int) -> Optional[Worker]: ...
    async def get_worker_by_channel(self, channel_id: str) -> Optional[Worker]: ...
    async def save_worker(self, worker: Worker) -> None: ...
    async def list_workers(self, *, offset: int = 0, limit: int = 100) -> tuple[list[Worker], int]: ...
    async def list_linked_workers(self) -> list[Worker]: ...

    async def search_workers(self, token: str, limit: int) -> list[Worker]:
        """Case-insensitive substring match on name OR position, ordered by name."""
        ...

    async def scan_workers(self, limit: int) -> list[Worker]:
        """First ``limit`` workers ordered by name (multi-token search input)."""
        ...

    async def clear_channel(self, channel_id: str) -> list[Worker]:
        """Unlink every worker bound to ``channel_id``; returns the affected workers."""
        ...

    # --- hours -------------------------------------------------------------
    async def get_hours_record(self, record_id: int) -> Optional[HoursRecord]: ...

    async def hours_between(self, worker_id: int, start: date, end: date) -> list[HoursRecord]:
        """Inclusive range, ordered by (date, id) ascending."""
        ...

    async def hours_in_range(self, start: date, end: date) -> list[HoursRecord]:
        """All workers, inclusive range, ordered by (date, id) ascending."""
        ...

    async def latest_hours_on(self, worker_id: int, day: date) -> Optional[HoursRecord]: ...
    async def update_hours(self, record_id: int, hours: Decimal) -> Optional[HoursRecord]: ...
    async def mark_delivered(self, record_ids: Sequence[int], at: datetime) -> int: ...

    async def replace_hours_for_date(self, day: date, rows: Sequence[IngestRow]) -> int:
        """Delete every record dated ``day`` and insert ``rows``; upserts worker name/position."""
        ...

    async def list_hours(
        self, *, offset: int = 0, limit: int = 10, search: Optional[str] = None,
    ) -> tuple[list[HoursRecord], int]: ...

    async def monthly_totals(self) -> list[tuple[date, Decimal]]:
        """Exact hours per calendar month (first day of month), ascending."""
        ...

    async def record_import(self, batch: ImportBatch) -> ImportBatch: ...
    async def list_imports(self, *, offset: int = 0, limit: int = 20) -> tuple[list[ImportBatch], int]: ...

    # --- disputes ----------------------------------------------------------
    async def add_dispute(self, dispute: Dispute) -> Dispute: ...
    async def mark_dispute_notified(self, dispute_id: int) -> None: ...
    async def list_disputes(self, *, offset: int = 0, limit: int = 20) -> tuple[list[Dispute], int]: ...
    async def count_disputes_since(self, since: datetime) -> int: ...


class MessageSender(Protocol):
    async def send(self, channel_id: str, text: str, buttons: ButtonRows | None = None) -> None:
        """Raises TransportDeliveryFailure when the recipient cannot be reached."""
        ...

    async def send_menu_keyboard(self, channel_id: str, text: str, labels: list[list[str]]) -> None: ...

    async def answer_callback(self, callback_id: str, text: str | None = None, *, alert: bool = False) -> None: ...


class AdminNotifier(Protocol):
    async def notify(self, text: str) -> bool: ...

# timesheet_bot/admin/models.py
"""
Pydantic request/response models for the admin API.

These live *outside* the transport layer so the service can
validate payloads without depending on FastAPI.
"""
from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from timesheet_bot.core.domain import Dispute, HoursRecord, ImportBatch, IngestRow, Worker

MAX_HOURS = Decimal("24")


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class DispatchRequest(BaseModel):
    """Manual run of the daily dispatch."""

    target_date: Optional[dt.date] = Field(default=None, description="Target date, defaults to today")
    include_digest: bool = Field(default=True, description="Also send the rolling-window digest")


class CorrectionRequest(BaseModel):
    """
    Admin answer to a dispute: optionally fix the stored hours, then
    re-deliver the day to the worker with a highlighted note.

    With ``record_id`` the given record is corrected; otherwise the worker's
    latest record on ``work_date`` (default today).
    """

    worker_id: int = Field(..., gt=0)
    record_id: Optional[int] = Field(default=None, gt=0)
    work_date: Optional[dt.date] = None
    hours: Optional[Decimal] = Field(default=None, ge=0, le=MAX_HOURS)
    message: Optional[str] = Field(default=None, max_length=1000)


class DisconnectRequest(BaseModel):
    channel_id: str = Field(..., min_length=1, max_length=64)

    @field_validator("channel_id")
    @classmethod
    def channel_id_must_be_non_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("channel_id is required")
        return v


class IngestRowModel(BaseModel):
    worker_id: int = Field(..., gt=0)
    name: str = Field(..., min_length=1, max_length=256)
    position: str = Field(default="", max_length=256)
    hours: Decimal = Field(..., ge=0, le=MAX_HOURS)
    activity_code: str = ""
    activity_description: str = ""
    cost_center: str = ""
    description: str = ""

    def to_domain(self) -> IngestRow:
        return IngestRow(
            worker_id=self.worker_id,
            name=self.name.strip(),
            position=self.position.strip(),
            hours=self.hours,
            activity_code=self.activity_code,
            activity_description=self.activity_description,
            cost_center=self.cost_center,
            description=self.description,
        )


class IngestRequest(BaseModel):
    """Normalized rows for one date; replaces everything stored for that date."""

    target_date: Optional[dt.date] = None
    source_name: str = Field(default="upload", max_length=256)
    rows: list[IngestRowModel] = Field(..., min_length=1)
    dispatch: bool = Field(default=False, description="Run the daily dispatch for the date afterwards")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class WorkerOut(BaseModel):
    id: int
    name: str
    position: str
    channel_id: Optional[str] = None
    is_linked: bool

    @classmethod
    def from_domain(cls, w: Worker) -> "WorkerOut":
        return cls(id=w.id, name=w.name, position=w.position, channel_id=w.channel_id, is_linked=w.is_linked)


class HoursOut(BaseModel):
    id: int
    worker_id: int
    date: dt.date
    hours: float
    activity_code: str
    activity_description: str
    cost_center: str
    description: str
    delivered: bool
    delivered_at: Optional[dt.datetime] = None

    @classmethod
    def from_domain(cls, r: HoursRecord) -> "HoursOut":
        return cls(
            id=r.id,
            worker_id=r.worker_id,
            date=r.date,
            hours=float(r.hours),
            activity_code=r.activity_code,
            activity_description=r.activity_description,
            cost_center=r.cost_center,
            description=r.description,
            delivered=r.delivered,
            delivered_at=r.delivered_at,
        )


class DisputeOut(BaseModel):
    id: Optional[int] = None
    worker_id: int
    kind: str
    message: str
    channel_id: str
    record_id: Optional[int] = None
    admin_notified: bool
    created_at: dt.datetime

    @classmethod
    def from_domain(cls, d: Dispute) -> "DisputeOut":
        return cls(
            id=d.id,
            worker_id=d.worker_id,
            kind=d.kind.value,
            message=d.message,
            channel_id=d.channel_id,
            record_id=d.record_id,
            admin_notified=d.admin_notified,
            created_at=d.created_at,
        )


class ImportOut(BaseModel):
    id: Optional[int] = None
    source_name: str
    records_count: int
    target_date: dt.date
    created_at: dt.datetime

    @classmethod
    def from_domain(cls, b: ImportBatch) -> "ImportOut":
        return cls(
            id=b.id,
            source_name=b.source_name,
            records_count=b.records_count,
            target_date=b.target_date,
            created_at=b.created_at,
        )


class Page(BaseModel):
    """One page of a listing; ``page`` is 1-based."""

    items: list[Any]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


class DispatchResponse(BaseModel):
    ok: bool = True
    daily: dict[str, Any]
    digest: Optional[dict[str, Any]] = None


class IngestResponse(BaseModel):
    ok: bool = True
    batch: ImportOut
    records_processed: int
    workers: int
    dispatch: Optional[dict[str, Any]] = None


class DisconnectResponse(BaseModel):
    ok: bool = True
    message: str
    workers: list[dict[str, Any]] = Field(default_factory=list)
    notified: bool = False


class StatsResponse(BaseModel):
    total_workers: int
    linked_workers: int
    unlinked_workers: int
    disputes_today: int


class WorkerTotalOut(BaseModel):
    worker: Optional[WorkerOut] = None
    worker_id: int
    total_hours: int
    exact_hours: float
    records_count: int = 0


class HoursSumResponse(BaseModel):
    start: dt.date
    end: dt.date
    items: list[WorkerTotalOut]


class MonthlyTotalOut(BaseModel):
    month: dt.date
    total_hours: float


class OkResponse(BaseModel):
    """Generic success response."""

    ok: bool = True
    worker_id: Optional[int] = None
    records: Optional[int] = None

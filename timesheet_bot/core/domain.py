# timesheet_bot/core/domain.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional, Union

HOURS_QUANT = Decimal("0.01")


def to_hours(value) -> Decimal:
    """Normalize any numeric input to a fixed-point hours value (two decimals)."""
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value).quantize(HOURS_QUANT, rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# RECORDS
# ============================================================================

@dataclass
class Worker:
    """
    Internal worker identity. ``id`` comes from payroll and is never generated here.
    ``channel_id`` is the linked messaging identity (at most one, exclusive).
    """
    id: int
    name: str
    position: str = ""
    channel_id: Optional[str] = None
    is_linked: bool = False
    created_at: datetime = field(default_factory=utcnow, repr=False)
    updated_at: datetime = field(default_factory=utcnow, repr=False)

    @property
    def display_position(self) -> str:
        return self.position or "—"


@dataclass
class HoursRecord:
    id: int
    worker_id: int
    date: date
    hours: Decimal
    activity_code: str = ""
    activity_description: str = ""
    cost_center: str = ""
    description: str = ""
    delivered: bool = False
    delivered_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow, repr=False)


class DisputeKind(str, Enum):
    INCORRECT_HOURS = "incorrect_hours"
    GENERAL_OR_UNLINK = "general_or_unlink"


@dataclass(frozen=True)
class Dispute:
    """A recipient's complaint. ``record_id`` is None for general/unlink requests."""
    worker_id: int
    message: str
    kind: DisputeKind
    channel_id: str
    record_id: Optional[int] = None
    admin_notified: bool = False
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None


@dataclass
class ImportBatch:
    source_name: str
    records_count: int
    target_date: date
    id: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class IngestRow:
    """One normalized row produced by the spreadsheet pipeline."""
    worker_id: int
    name: str
    position: str
    hours: Decimal
    activity_code: str = ""
    activity_description: str = ""
    cost_center: str = ""
    description: str = ""


# ============================================================================
# CONVERSATION SESSION (tagged variant)
# ============================================================================

class FeedbackKind(str, Enum):
    HOURS_MISTAKE = "hours_mistake"
    GENERAL = "general"

    @property
    def dispute_kind(self) -> DisputeKind:
        if self is FeedbackKind.HOURS_MISTAKE:
            return DisputeKind.INCORRECT_HOURS
        return DisputeKind.GENERAL_OR_UNLINK


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class AwaitingFreeTextDispute:
    kind: FeedbackKind


@dataclass(frozen=True)
class AwaitingNumericCorrection:
    record_id: int


Session = Union[Idle, AwaitingFreeTextDispute, AwaitingNumericCorrection]

IDLE = Idle()


# ============================================================================
# MESSAGING
# ============================================================================

@dataclass(frozen=True)
class Button:
    """Interactive affordance; ``payload`` is an encoded callback string."""
    text: str
    payload: str


ButtonRows = list[list[Button]]


@dataclass
class InboundEvent:
    """
    Normalized inbound event from the messaging transport.
    Either free text or an affordance press carrying an opaque payload.
    """
    channel_id: str
    event_id: str
    text: Optional[str] = None
    callback_data: Optional[str] = None
    callback_id: Optional[str] = None
    sender_name: Optional[str] = None

    def is_callback(self) -> bool:
        return self.callback_data is not None

    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())

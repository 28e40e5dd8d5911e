"""
Affordance payload codec.

Payloads travel as ``kind:arg1:arg2`` strings inside inline buttons. Decoding
yields one of a closed set of dataclasses; anything else raises PayloadError.

    >>> decode("correct:42:19787")
    CorrectPayload(worker_id=42, epoch_day=19787)
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Union

from timesheet_bot.core.domain import FeedbackKind
from timesheet_bot.core.errors import PayloadError

SEP = ":"
MAX_PAYLOAD_BYTES = 64  # Telegram callback_data limit

_EPOCH = date(1970, 1, 1)


def to_epoch_day(day: date) -> int:
    return (day - _EPOCH).days


def from_epoch_day(value: int) -> date:
    return _EPOCH + timedelta(days=value)


# ============================================================================
# PAYLOAD TYPES
# ============================================================================

@dataclass(frozen=True)
class CorrectPayload:
    worker_id: int
    epoch_day: int

    @property
    def day(self) -> date:
        return from_epoch_day(self.epoch_day)


@dataclass(frozen=True)
class IncorrectPayload:
    worker_id: int
    epoch_day: int

    @property
    def day(self) -> date:
        return from_epoch_day(self.epoch_day)


@dataclass(frozen=True)
class SelectPayload:
    channel_id: str
    worker_id: int


@dataclass(frozen=True)
class FeedbackPayload:
    subtype: str  # FeedbackKind value or "cancel"

    @property
    def kind(self) -> FeedbackKind | None:
        if self.subtype == "cancel":
            return None
        return FeedbackKind(self.subtype)


@dataclass(frozen=True)
class LogoutRequestPayload:
    worker_id: int


@dataclass(frozen=True)
class ActionPayload:
    action: str


@dataclass(frozen=True)
class MonthPayload:
    month: int
    year: int


@dataclass(frozen=True)
class MoreResultsPayload:
    pass


Payload = Union[
    CorrectPayload,
    IncorrectPayload,
    SelectPayload,
    FeedbackPayload,
    LogoutRequestPayload,
    ActionPayload,
    MonthPayload,
    MoreResultsPayload,
]

MENU_ACTIONS = ("last5days", "week", "month", "history", "feedback")
FEEDBACK_SUBTYPES = ("hours_mistake", "general", "cancel")


# ============================================================================
# ENCODING
# ============================================================================

def encode(payload: Payload) -> str:
    if isinstance(payload, CorrectPayload):
        parts = ["correct", str(payload.worker_id), str(payload.epoch_day)]
    elif isinstance(payload, IncorrectPayload):
        parts = ["incorrect", str(payload.worker_id), str(payload.epoch_day)]
    elif isinstance(payload, SelectPayload):
        parts = ["select", payload.channel_id, str(payload.worker_id)]
    elif isinstance(payload, FeedbackPayload):
        parts = ["feedback", payload.subtype]
    elif isinstance(payload, LogoutRequestPayload):
        parts = ["logout_request", str(payload.worker_id)]
    elif isinstance(payload, ActionPayload):
        parts = ["action", payload.action]
    elif isinstance(payload, MonthPayload):
        parts = ["month", str(payload.month), str(payload.year)]
    elif isinstance(payload, MoreResultsPayload):
        parts = ["more_results"]
    else:
        raise PayloadError(f"cannot encode {type(payload).__name__}")

    if any(SEP in p for p in parts[1:]):
        raise PayloadError("payload argument contains the separator")
    encoded = SEP.join(parts)
    if len(encoded.encode("utf-8")) > MAX_PAYLOAD_BYTES:
        raise PayloadError("payload too long")
    return encoded


# ============================================================================
# DECODING
# ============================================================================

def _int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise PayloadError(f"not an integer: {value!r}") from None


def _decode_day_ref(cls):
    def build(args: list[str]):
        worker_id, epoch_day = _int(args[0]), _int(args[1])
        if worker_id <= 0:
            raise PayloadError("worker id must be positive")
        try:
            from_epoch_day(epoch_day)
        except OverflowError:
            raise PayloadError(f"epoch day out of range: {epoch_day}") from None
        return cls(worker_id, epoch_day)
    return build


def _decode_select(args: list[str]) -> SelectPayload:
    if not args[0]:
        raise PayloadError("empty channel identity")
    return SelectPayload(args[0], _int(args[1]))


def _decode_feedback(args: list[str]) -> FeedbackPayload:
    if args[0] not in FEEDBACK_SUBTYPES:
        raise PayloadError(f"unknown feedback subtype {args[0]!r}")
    return FeedbackPayload(args[0])


def _decode_action(args: list[str]) -> ActionPayload:
    if args[0] not in MENU_ACTIONS:
        raise PayloadError(f"unknown action {args[0]!r}")
    return ActionPayload(args[0])


def _decode_month(args: list[str]) -> MonthPayload:
    month, year = _int(args[0]), _int(args[1])
    if not 1 <= month <= 12 or not 1900 <= year <= 9999:
        raise PayloadError("month out of range")
    return MonthPayload(month, year)


# kind -> (arity, builder)
_DECODERS: dict[str, tuple[int, Callable[[list[str]], Payload]]] = {
    "correct": (2, _decode_day_ref(CorrectPayload)),
    "incorrect": (2, _decode_day_ref(IncorrectPayload)),
    "select": (2, _decode_select),
    "feedback": (1, _decode_feedback),
    "logout_request": (1, lambda a: LogoutRequestPayload(_int(a[0]))),
    "action": (1, _decode_action),
    "month": (2, _decode_month),
    "more_results": (0, lambda a: MoreResultsPayload()),
}


def decode(raw: str) -> Payload:
    """Decode a payload string; raises PayloadError on anything malformed."""
    if not raw or len(raw.encode("utf-8")) > MAX_PAYLOAD_BYTES:
        raise PayloadError("empty or oversized payload")

    kind, *args = raw.split(SEP)
    spec = _DECODERS.get(kind)
    if spec is None:
        raise PayloadError(f"unknown payload kind {kind!r}")

    arity, build = spec
    if len(args) != arity:
        raise PayloadError(f"{kind} expects {arity} argument(s), got {len(args)}")
    return build(args)

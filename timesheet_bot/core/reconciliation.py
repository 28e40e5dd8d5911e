# timesheet_bot/core/reconciliation.py
"""
Reconciliation: correlate correct/incorrect presses and free-text follow-ups
to the record they refer to, and turn them into Dispute entries.

Session transitions handled here:

    Idle --incorrect--> AwaitingNumericCorrection(record)
    Idle --feedback:kind--> AwaitingFreeTextDispute(kind)
    AwaitingNumericCorrection + number --> Dispute(INCORRECT_HOURS), Idle
    AwaitingNumericCorrection + garbage --> re-prompt, state kept
    AwaitingFreeTextDispute + text --> Dispute(kind), Idle
"""
from __future__ import annotations

from dataclasses import replace
from decimal import Decimal, InvalidOperation
from html import escape
from typing import Optional

from timesheet_bot.core.domain import (
    IDLE,
    AwaitingFreeTextDispute,
    AwaitingNumericCorrection,
    Dispute,
    DisputeKind,
    FeedbackKind,
    HoursRecord,
    InboundEvent,
    Session,
    Worker,
    to_hours,
)
from timesheet_bot.core.errors import ParseFailure
from timesheet_bot.core.identity import IdentityResolver
from timesheet_bot.core.payloads import CorrectPayload, IncorrectPayload, LogoutRequestPayload
from timesheet_bot.core.ports import AdminNotifier, AsyncRecordStore, MessageSender
from timesheet_bot.core.rendering import fmt_hours
from timesheet_bot.core.sessions import InMemorySessionStore
from timesheet_bot.core.texts import get_text
from timesheet_bot.infra.logging_config import LogContext, get_logger
from timesheet_bot.infra.metrics import AppMetrics

logger = get_logger(__name__)

MAX_CORRECTION_HOURS = Decimal("24")


def parse_hours(text: str) -> Decimal:
    """
    Parse a claimed hours value; both "." and "," are accepted as separator.

    Raises:
        ParseFailure: not a finite number in [0, 24]
    """
    raw = (text or "").strip().replace(",", ".")
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise ParseFailure(f"not a number: {text!r}") from None
    if not value.is_finite() or value < 0 or value > MAX_CORRECTION_HOURS:
        raise ParseFailure(f"out of range: {text!r}")
    return to_hours(value)


class ReconciliationEngine:
    def __init__(
        self,
        store: AsyncRecordStore,
        sender: MessageSender,
        notifier: AdminNotifier,
        sessions: InMemorySessionStore,
        identity: IdentityResolver,
    ) -> None:
        self.store = store
        self.sender = sender
        self.notifier = notifier
        self.sessions = sessions
        self.identity = identity

    # ------------------------------------------------------------------
    # affordance presses
    # ------------------------------------------------------------------

    async def _find_referenced_record(
        self, channel_id: str, worker_id: int, day
    ) -> tuple[Optional[Worker], Optional[HoursRecord]]:
        """Latest record of the sender's own worker on ``day``; a foreign worker id never matches."""
        worker = await self.identity.find(channel_id)
        if worker is None or worker.id != worker_id:
            return worker, None
        return worker, await self.store.latest_hours_on(worker.id, day)

    async def confirm(self, event: InboundEvent, payload: CorrectPayload) -> None:
        """Confirmation press: acknowledge only, no dispute."""
        await self._answer(event, get_text("ack_correct"))
        worker, record = await self._find_referenced_record(event.channel_id, payload.worker_id, payload.day)
        if worker is None:
            await self.sender.send(event.channel_id, get_text("link_first"))
            return
        if record is None:
            await self.sender.send(event.channel_id, get_text("record_not_found"))
            return
        await self.sender.send(event.channel_id, get_text("confirm_thanks"))

    async def begin_correction(self, event: InboundEvent, payload: IncorrectPayload) -> None:
        """Dispute press: ask for the right value. An unresolvable token leaves the session as it was."""
        await self._answer(event, get_text("ack_incorrect"))
        worker, record = await self._find_referenced_record(event.channel_id, payload.worker_id, payload.day)
        if worker is None:
            await self.sender.send(event.channel_id, get_text("link_first"))
            return
        if record is None:
            logger.info(
                "Incorrect press for unknown record on %s", payload.day.isoformat(),
                extra={"channel_id": event.channel_id, "worker_id": payload.worker_id},
            )
            await self.sender.send(event.channel_id, get_text("record_not_found"))
            return

        self.sessions.set(event.channel_id, AwaitingNumericCorrection(record.id))
        await self.sender.send(event.channel_id, get_text("correction_prompt", date=record.date.isoformat()))

    async def begin_feedback(self, channel_id: str, kind: FeedbackKind) -> None:
        self.sessions.set(channel_id, AwaitingFreeTextDispute(kind))
        await self.sender.send(channel_id, get_text(f"feedback_prompt_{kind.value}"))

    async def request_unlink(self, event: InboundEvent, payload: LogoutRequestPayload) -> Optional[Dispute]:
        """Unlink request: recorded as a dispute for an administrator, nothing is unlinked here."""
        worker = await self.identity.find(event.channel_id)
        if worker is None or worker.id != payload.worker_id:
            await self._answer(event, get_text("not_for_you"), alert=True)
            return None

        dispute = await self._create_dispute(
            worker,
            channel_id=event.channel_id,
            kind=DisputeKind.GENERAL_OR_UNLINK,
            message=get_text("unlink_request_message", name=worker.name),
            admin_text=get_text(
                "admin_unlink",
                name=escape(worker.name), position=escape(worker.display_position), worker_id=worker.id,
            ),
        )
        await self._answer(event, get_text("logout_request_ack"))
        await self.sender.send(event.channel_id, get_text("logout_request_sent"))
        return dispute

    # ------------------------------------------------------------------
    # free-text follow-ups
    # ------------------------------------------------------------------

    async def handle_pending_text(self, event: InboundEvent, session: Session) -> bool:
        """
        Consume ``event.text`` if ``session`` is waiting for it.
        Returns False when the session is Idle and the text is not ours.
        """
        if isinstance(session, AwaitingNumericCorrection):
            await self._complete_correction(event, session)
            return True
        if isinstance(session, AwaitingFreeTextDispute):
            await self._complete_feedback(event, session)
            return True
        return False

    async def _complete_correction(self, event: InboundEvent, session: AwaitingNumericCorrection) -> None:
        channel_id = event.channel_id
        worker = await self.identity.find(channel_id)
        if worker is None:
            self.sessions.set(channel_id, IDLE)
            await self.sender.send(channel_id, get_text("link_first"))
            return

        try:
            claimed = parse_hours(event.text or "")
        except ParseFailure as exc:
            logger.debug("Correction input rejected: %s", exc.detail, extra={"channel_id": channel_id})
            await self.sender.send(channel_id, get_text("correction_not_number"))
            return

        record = await self.store.get_hours_record(session.record_id)
        if record is None or record.worker_id != worker.id:
            self.sessions.set(channel_id, IDLE)
            await self.sender.send(channel_id, get_text("record_not_found"))
            return

        await self._create_dispute(
            worker,
            channel_id=channel_id,
            kind=DisputeKind.INCORRECT_HOURS,
            message=get_text("correction_message", hours=fmt_hours(claimed)),
            record_id=record.id,
            admin_text=get_text(
                "admin_correction",
                name=escape(worker.name), position=escape(worker.display_position), worker_id=worker.id,
                date=record.date.isoformat(), original=fmt_hours(record.hours), claimed=fmt_hours(claimed),
            ),
        )
        self.sessions.set(channel_id, IDLE)
        await self.sender.send(channel_id, get_text("correction_sent"))

    async def _complete_feedback(self, event: InboundEvent, session: AwaitingFreeTextDispute) -> None:
        channel_id = event.channel_id
        worker = await self.identity.find(channel_id)
        if worker is None:
            self.sessions.set(channel_id, IDLE)
            await self.sender.send(channel_id, get_text("link_first"))
            return

        text = (event.text or "").strip()
        kind_label = get_text(
            "admin_kind_hours" if session.kind is FeedbackKind.HOURS_MISTAKE else "admin_kind_general"
        )
        await self._create_dispute(
            worker,
            channel_id=channel_id,
            kind=session.kind.dispute_kind,
            message=text,
            admin_text=get_text(
                "admin_feedback",
                kind_label=kind_label, name=escape(worker.name),
                position=escape(worker.display_position), worker_id=worker.id, message=escape(text),
            ),
        )
        self.sessions.set(channel_id, IDLE)
        await self.sender.send(channel_id, get_text("feedback_thanks"))

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _create_dispute(
        self,
        worker: Worker,
        *,
        channel_id: str,
        kind: DisputeKind,
        message: str,
        admin_text: str,
        record_id: Optional[int] = None,
    ) -> Dispute:
        """
        Persist, then notify the admin channel and record the outcome.

        A failed write raises before any notice goes out. A notification
        failure leaves the stored dispute with ``admin_notified=False``.
        """
        ctx = LogContext(logger, channel_id=channel_id, worker_id=worker.id)
        dispute = await self.store.add_dispute(Dispute(
            worker_id=worker.id,
            message=message,
            kind=kind,
            channel_id=channel_id,
            record_id=record_id,
        ))
        AppMetrics.dispute_created(kind.value)

        try:
            notified = await self.notifier.notify(admin_text)
        except Exception:
            ctx.error("Admin notification failed", exc_info=True)
            notified = False

        if notified:
            try:
                await self.store.mark_dispute_notified(dispute.id)
                dispute = replace(dispute, admin_notified=True)
            except Exception:
                ctx.error(f"Dispute {dispute.id} notified but flag not stored", exc_info=True)
                AppMetrics.store_error("mark_dispute_notified")

        ctx.info("Dispute created: kind=%s record=%s notified=%s", kind.value, record_id, notified)
        return dispute

    async def _answer(self, event: InboundEvent, text: str, *, alert: bool = False) -> None:
        if not event.callback_id:
            return
        try:
            await self.sender.answer_callback(event.callback_id, text, alert=alert)
        except Exception:
            logger.warning("answer_callback failed", exc_info=True, extra={"channel_id": event.channel_id})

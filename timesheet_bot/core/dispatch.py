# timesheet_bot/core/dispatch.py
"""
Dispatch engine: render aggregation results and deliver them to workers.

Batch runs iterate over "records on the target date" (not "records not yet
delivered"), so one trigger firing reaches each (worker, date) pair once.
Re-dispatch is always allowed; the delivered flag only feeds reporting.
A transport failure for one worker is logged, counted and skipped.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from timesheet_bot.core.aggregation import AggregationEngine, ExplicitRange, RollingDays, Window
from timesheet_bot.core.domain import HoursRecord, Worker, utcnow
from timesheet_bot.core.errors import NoData, NotLinked, TransportDeliveryFailure
from timesheet_bot.core.ports import AsyncRecordStore, MessageSender
from timesheet_bot.core.rendering import confirmation_buttons, render_daily, render_window
from timesheet_bot.infra.logging_config import LogContext, get_logger
from timesheet_bot.infra.metrics import AppMetrics

logger = get_logger(__name__)


@dataclass
class DispatchReport:
    """
    Outcome of one batch run. ``sent_count`` excludes failed recipients;
    ``unmarked`` lists recipients whose message went out but whose records
    are still flagged undelivered.
    """
    trigger: str
    target_start: date
    target_end: date
    sent_count: int = 0
    failed: list[int] = field(default_factory=list)
    unmarked: list[int] = field(default_factory=list)
    skipped: int = 0

    def to_dict(self) -> dict:
        return {
            "trigger": self.trigger,
            "start": self.target_start.isoformat(),
            "end": self.target_end.isoformat(),
            "sent_count": self.sent_count,
            "failed_count": len(self.failed),
            "failed_worker_ids": list(self.failed),
            "unmarked_worker_ids": list(self.unmarked),
            "skipped": self.skipped,
        }


class DispatchEngine:
    def __init__(
        self,
        store: AsyncRecordStore,
        sender: MessageSender,
        aggregation: AggregationEngine,
        *,
        concurrency: int = 10,
        rolling_days: int = 5,
    ) -> None:
        self.store = store
        self.sender = sender
        self.aggregation = aggregation
        self.concurrency = max(1, concurrency)
        self.rolling_days = rolling_days

    # ------------------------------------------------------------------
    # single worker
    # ------------------------------------------------------------------

    async def _deliver(
        self,
        worker: Worker,
        text: str,
        records: list[HoursRecord] | tuple[HoursRecord, ...],
        *,
        trigger: str,
        buttons=None,
        mark: bool = True,
    ) -> bool:
        """
        Send, then mark delivered. Raises TransportDeliveryFailure.

        Returns False when the message went out but the delivered flag could
        not be stored; the send itself still counts as delivered.
        """
        if not worker.channel_id:
            raise NotLinked(f"worker {worker.id} has no channel identity")

        with AppMetrics.track_dispatch_time(trigger):
            await self.sender.send(worker.channel_id, text, buttons)
        AppMetrics.dispatch_sent(trigger)

        if not (mark and records):
            return True
        try:
            await self.store.mark_delivered([r.id for r in records], utcnow())
        except Exception:
            logger.error(
                "Message sent but records not marked delivered",
                exc_info=True,
                extra={"worker_id": worker.id, "trigger": trigger},
            )
            AppMetrics.store_error("mark_delivered")
            return False
        return True

    async def dispatch_one(
        self,
        worker_id: int,
        day: Optional[date] = None,
        *,
        annotation: Optional[str] = None,
        override_hours: Optional[Decimal] = None,
        trigger: str = "manual",
    ) -> int:
        """
        Re-deliver one day's records for a worker.

        ``override_hours`` only changes what is displayed; storage is left as is.
        Returns the number of records delivered.

        Raises:
            NotFound: unknown worker
            NotLinked: worker has no channel identity
            NoData: no records for the day
            TransportDeliveryFailure: recipient unreachable
        """
        day = day or self.aggregation.today()
        result = await self.aggregation.aggregate_day(worker_id, day)
        worker = result.worker
        if not worker.channel_id:
            raise NotLinked(f"worker {worker.id} has no channel identity")
        if result.is_empty:
            raise NoData(f"no hours for worker {worker.id} on {day.isoformat()}")

        text = render_daily(
            worker, day, result.records,
            annotation=annotation, override_hours=override_hours,
        )
        await self._deliver(
            worker, text, result.records,
            trigger=trigger, buttons=confirmation_buttons(worker.id, day),
        )
        logger.info(
            "Daily hours re-delivered to worker %s for %s", worker.id, day.isoformat(),
            extra={"worker_id": worker.id, "channel_id": worker.channel_id, "trigger": trigger},
        )
        return len(result.records)

    async def dispatch_window(
        self,
        worker_id: int,
        window: Window,
        *,
        mark_delivered: bool = False,
        trigger: str = "self_service",
    ) -> int:
        """
        Deliver an aggregated window (rolling / week / month / range).

        Raises:
            NotFound, InvalidRange, NotLinked, NoData, TransportDeliveryFailure
        """
        result = await self.aggregation.aggregate(worker_id, window)
        if not result.worker.channel_id:
            raise NotLinked(f"worker {worker_id} has no channel identity")
        if result.is_empty:
            raise NoData(f"no hours for worker {worker_id} in {result.start}..{result.end}")

        await self._deliver(
            result.worker, render_window(result), result.records,
            trigger=trigger, mark=mark_delivered,
        )
        return len(result.records)

    # ------------------------------------------------------------------
    # batch
    # ------------------------------------------------------------------

    async def _run_batch(self, report: DispatchReport, jobs: list[tuple[Worker, str, tuple, object]]) -> None:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(worker: Worker, text: str, records: tuple, buttons) -> bool:
            ctx = LogContext(logger, worker_id=worker.id, channel_id=worker.channel_id, trigger=report.trigger)
            async with semaphore:
                try:
                    if not await self._deliver(worker, text, records, trigger=report.trigger, buttons=buttons):
                        report.unmarked.append(worker.id)
                    return True
                except TransportDeliveryFailure as exc:
                    ctx.warning(f"Delivery failed, skipping worker: {exc.detail}")
                except Exception:
                    ctx.error("Unexpected error while dispatching to worker", exc_info=True)
                    AppMetrics.store_error("dispatch")
            AppMetrics.dispatch_failed(report.trigger)
            return False

        outcomes = await asyncio.gather(*(run(*job) for job in jobs))
        for (worker, *_), ok in zip(jobs, outcomes):
            if ok:
                report.sent_count += 1
            else:
                report.failed.append(worker.id)

    async def dispatch_daily(self, target_date: Optional[date] = None, *, trigger: str = "daily") -> DispatchReport:
        """
        Send the day's hours with correct/incorrect buttons to every linked
        worker that has records on ``target_date`` (default: local today).
        """
        day = target_date or self.aggregation.today()
        report = DispatchReport(trigger=trigger, target_start=day, target_end=day)

        results = await self.aggregation.aggregate_linked(ExplicitRange(day, day))
        jobs = []
        for result in results:
            if result.is_empty:
                report.skipped += 1
                continue
            jobs.append((
                result.worker,
                render_daily(result.worker, day, result.records),
                result.records,
                confirmation_buttons(result.worker.id, day),
            ))

        await self._run_batch(report, jobs)
        logger.info(
            "Daily dispatch finished for %s: sent=%s failed=%s skipped=%s",
            day.isoformat(), report.sent_count, len(report.failed), report.skipped,
            extra={"trigger": trigger},
        )
        return report

    async def dispatch_rolling_digest(self, days: Optional[int] = None, *, trigger: str = "digest") -> DispatchReport:
        """Send the RollingDays(N) summary to every linked worker with data in the window."""
        window = RollingDays(days or self.rolling_days)
        start, end = self.aggregation.resolve(window)
        report = DispatchReport(trigger=trigger, target_start=start, target_end=end)

        jobs = []
        for result in await self.aggregation.aggregate_linked(window):
            if result.is_empty:
                report.skipped += 1
                continue
            jobs.append((result.worker, render_window(result), result.records, None))

        await self._run_batch(report, jobs)
        logger.info(
            "Rolling digest finished for %s..%s: sent=%s failed=%s skipped=%s",
            start.isoformat(), end.isoformat(), report.sent_count, len(report.failed), report.skipped,
            extra={"trigger": trigger},
        )
        return report

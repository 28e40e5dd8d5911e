# timesheet_bot/admin/service.py
"""
Admin Application Service: the single orchestration point for all
operator-facing operations.

Responsibilities:
    1. Validate requests (via Pydantic models)
    2. Call the record store / domain engines
    3. Map domain errors to ``AdminError`` subtypes
    4. Return DTOs, never domain objects

The transport layer (http_app.py admin routes) stays a thin adapter:
    parse request → call service → map AdminError → return JSON.
"""
from __future__ import annotations

from datetime import datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from timesheet_bot.admin.errors import NotFoundError, UnprocessableError, ValidationError
from timesheet_bot.admin.models import (
    CorrectionRequest,
    DisconnectResponse,
    DisconnectRequest,
    DispatchRequest,
    DispatchResponse,
    DisputeOut,
    HoursOut,
    HoursSumResponse,
    ImportOut,
    IngestRequest,
    IngestResponse,
    MonthlyTotalOut,
    OkResponse,
    Page,
    StatsResponse,
    WorkerOut,
    WorkerTotalOut,
)
from timesheet_bot.core.aggregation import AggregationEngine
from timesheet_bot.core.dispatch import DispatchEngine
from timesheet_bot.core.errors import (
    InvalidRange,
    NoData,
    NotLinked,
    TransportDeliveryFailure,
)
from timesheet_bot.core.identity import IdentityResolver
from timesheet_bot.core.ingestion import ingest_batch
from timesheet_bot.core.ports import AsyncRecordStore, MessageSender
from timesheet_bot.core.reporting import ReportingService, WorkerTotal
from timesheet_bot.core.texts import get_text
from timesheet_bot.infra.logging_config import get_logger

logger = get_logger(__name__)

MAX_PAGE_SIZE = 200


def _page_bounds(page: int, limit: int) -> tuple[int, int]:
    if page < 1:
        raise ValidationError("page must be >= 1")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    return (page - 1) * limit, limit


def _total_out(row: WorkerTotal) -> WorkerTotalOut:
    return WorkerTotalOut(
        worker=WorkerOut.from_domain(row.worker) if row.worker else None,
        worker_id=row.worker_id,
        total_hours=row.total_hours,
        exact_hours=float(row.exact_hours),
        records_count=row.records_count,
    )


class AdminApplicationService:
    """
    Orchestrates all admin-facing operations.

    Stateless apart from its collaborators, safe to share across requests.
    """

    def __init__(
        self,
        store: AsyncRecordStore,
        *,
        sender: MessageSender,
        identity: IdentityResolver,
        aggregation: AggregationEngine,
        dispatch: DispatchEngine,
        reporting: Optional[ReportingService] = None,
        tz_name: str = "UTC",
    ) -> None:
        self.store = store
        self.sender = sender
        self.identity = identity
        self.aggregation = aggregation
        self.dispatch = dispatch
        self.reporting = reporting or ReportingService(store, aggregation)
        self.tz = ZoneInfo(tz_name)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def trigger_daily_dispatch(self, req: DispatchRequest) -> DispatchResponse:
        """
        Run the daily dispatch now, optionally followed by the rolling digest.

        Per-worker failures are reported in the response, never raised.
        """
        daily = await self.dispatch.dispatch_daily(req.target_date, trigger="admin")
        digest = None
        if req.include_digest:
            digest = await self.dispatch.dispatch_rolling_digest(trigger="admin_digest")

        logger.info(
            f"Admin dispatch: sent={daily.sent_count}, failed={len(daily.failed)}, "
            f"digest_sent={digest.sent_count if digest else '-'}"
        )
        return DispatchResponse(
            daily=daily.to_dict(),
            digest=digest.to_dict() if digest else None,
        )

    async def push_correction(self, req: CorrectionRequest) -> OkResponse:
        """
        Apply an admin correction and re-deliver the day to the worker.

        1. Locate the record: ``record_id`` (must belong to the worker) or the
           worker's latest record on ``work_date``.
        2. Store the new hours if given.
        3. ``dispatch_one`` with the message as annotation and the hours as
           displayed override.
        """
        if await self.store.get_worker(req.worker_id) is None:
            raise NotFoundError(f"Worker {req.worker_id} not found")

        if req.record_id is not None:
            record = await self.store.get_hours_record(req.record_id)
            if record is None or record.worker_id != req.worker_id:
                raise NotFoundError(f"Hours record {req.record_id} not found for worker {req.worker_id}")
        else:
            day = req.work_date or self.aggregation.today()
            record = await self.store.latest_hours_on(req.worker_id, day)
            if record is None:
                raise NotFoundError(f"No hours for worker {req.worker_id} on {day.isoformat()}")

        if req.hours is not None:
            await self.store.update_hours(record.id, req.hours)
            logger.info(
                f"Hours record {record.id} corrected: {record.hours} -> {req.hours}",
                extra={"worker_id": req.worker_id},
            )

        try:
            delivered = await self.dispatch.dispatch_one(
                req.worker_id,
                record.date,
                annotation=req.message,
                override_hours=req.hours,
                trigger="correction",
            )
        except NotLinked:
            raise UnprocessableError(f"Worker {req.worker_id} has no linked Telegram account")
        except NoData:
            raise NotFoundError(f"No hours for worker {req.worker_id} on {record.date.isoformat()}")
        except TransportDeliveryFailure as exc:
            raise UnprocessableError(f"Delivery failed: {exc.detail}")

        return OkResponse(worker_id=req.worker_id, records=delivered)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def force_unlink(self, req: DisconnectRequest) -> DisconnectResponse:
        """
        Detach a Telegram account from every worker bound to it and tell
        the account about it. A failed notice does not undo the unlink.
        """
        workers = await self.identity.unlink_channel(req.channel_id)
        if not workers:
            raise NotFoundError("No workers found with this Telegram ID")

        notified = True
        try:
            await self.sender.send(req.channel_id, get_text("unlinked_notice", channel_id=req.channel_id))
        except TransportDeliveryFailure as exc:
            notified = False
            logger.warning(
                f"Unlink notice not delivered: {exc.detail}",
                extra={"channel_id": req.channel_id},
            )

        return DisconnectResponse(
            message=f"Telegram ID {req.channel_id} disconnected from {len(workers)} worker(s)",
            workers=[{"id": w.id, "name": w.name} for w in workers],
            notified=notified,
        )

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest(self, req: IngestRequest) -> IngestResponse:
        target = req.target_date or self.aggregation.today()
        try:
            result = await ingest_batch(
                self.store, target, [row.to_domain() for row in req.rows],
                source_name=req.source_name,
            )
        except InvalidRange as exc:
            raise ValidationError(exc.detail)

        report = None
        if req.dispatch:
            report = (await self.dispatch.dispatch_daily(target, trigger="ingest")).to_dict()

        return IngestResponse(
            batch=ImportOut.from_domain(result.batch),
            records_processed=result.records_count,
            workers=result.workers_count,
            dispatch=report,
        )

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def list_workers(self, page: int = 1, limit: int = 100) -> Page:
        offset, limit = _page_bounds(page, limit)
        workers, total = await self.store.list_workers(offset=offset, limit=limit)
        return Page(
            items=[WorkerOut.from_domain(w).model_dump(mode="json") for w in workers],
            total=total, page=page, limit=limit,
        )

    async def list_hours(self, page: int = 1, limit: int = 10, search: Optional[str] = None) -> Page:
        offset, limit = _page_bounds(page, limit)
        records, total = await self.store.list_hours(
            offset=offset, limit=limit, search=(search or "").strip() or None,
        )
        return Page(
            items=[HoursOut.from_domain(r).model_dump(mode="json") for r in records],
            total=total, page=page, limit=limit,
        )

    async def list_disputes(self, page: int = 1, limit: int = 20) -> Page:
        offset, limit = _page_bounds(page, limit)
        disputes, total = await self.store.list_disputes(offset=offset, limit=limit)
        return Page(
            items=[DisputeOut.from_domain(d).model_dump(mode="json") for d in disputes],
            total=total, page=page, limit=limit,
        )

    async def list_imports(self, page: int = 1, limit: int = 20) -> Page:
        offset, limit = _page_bounds(page, limit)
        batches, total = await self.store.list_imports(offset=offset, limit=limit)
        return Page(
            items=[ImportOut.from_domain(b).model_dump(mode="json") for b in batches],
            total=total, page=page, limit=limit,
        )

    # ------------------------------------------------------------------
    # Stats / reporting
    # ------------------------------------------------------------------

    async def stats(self) -> StatsResponse:
        _, total = await self.store.list_workers(offset=0, limit=1)
        linked = len(await self.store.list_linked_workers())
        start_of_day = datetime.combine(self.aggregation.today(), time.min, tzinfo=self.tz)
        disputes_today = await self.store.count_disputes_since(start_of_day.astimezone(timezone.utc))
        return StatsResponse(
            total_workers=total,
            linked_workers=linked,
            unlinked_workers=total - linked,
            disputes_today=disputes_today,
        )

    async def hours_sum(self, start: Optional[str] = None, end: Optional[str] = None) -> HoursSumResponse:
        today = self.aggregation.today().isoformat()
        try:
            first, last, rows = await self.reporting.hours_sum(start or today, end or today)
        except InvalidRange as exc:
            raise ValidationError(f"Invalid date range: {exc.detail}. Use YYYY-MM-DD format.")
        return HoursSumResponse(start=first, end=last, items=[_total_out(r) for r in rows])

    async def top_weekly(self, limit: int = 10) -> list[WorkerTotalOut]:
        return [_total_out(r) for r in await self.reporting.top_weekly(limit)]

    async def top_monthly(self, limit: int = 10) -> list[WorkerTotalOut]:
        return [_total_out(r) for r in await self.reporting.top_monthly(limit)]

    async def monthly_totals(self) -> list[MonthlyTotalOut]:
        return [
            MonthlyTotalOut(month=month, total_hours=float(total))
            for month, total in await self.reporting.monthly_totals()
        ]


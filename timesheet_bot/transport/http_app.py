# timesheet_bot/transport/http_app.py
"""
HTTP application: Telegram webhook, health/metrics and the admin API.

Layers:
1. Public: /health and the Telegram webhook (secret-token validated)
2. Internal: /metrics
3. Admin: /admin/... thin adapters over AdminApplicationService
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Optional

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from timesheet_bot.admin.errors import AdminError
from timesheet_bot.admin.models import (
    CorrectionRequest,
    DisconnectRequest,
    DispatchRequest,
    IngestRequest,
)
from timesheet_bot.admin.service import AdminApplicationService
from timesheet_bot.config import settings
from timesheet_bot.core.aggregation import AggregationEngine, local_today_factory
from timesheet_bot.core.conversation import ConversationEngine
from timesheet_bot.core.dispatch import DispatchEngine
from timesheet_bot.core.identity import IdentityResolver
from timesheet_bot.core.ports import AdminNotifier, AsyncRecordStore, MessageSender
from timesheet_bot.core.reconciliation import ReconciliationEngine
from timesheet_bot.core.reporting import ReportingService
from timesheet_bot.core.sessions import InMemorySessionStore
from timesheet_bot.infra.logging_config import get_logger, setup_logging
from timesheet_bot.infra.metrics import get_metrics_collector
from timesheet_bot.infra.scheduler import PeriodicScheduler, ScheduledJob, parse_hhmm
from timesheet_bot.transport.middleware import (
    ErrorHandlingMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
)
from timesheet_bot.transport.telegram_webhook import telegram_webhook_handler

# Initialize logging first
setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)


# ============================================================================
# WIRING
# ============================================================================

@dataclass
class AppContainer:
    """Every long-lived collaborator of one running bot."""
    store: AsyncRecordStore
    sender: MessageSender
    notifier: AdminNotifier
    sessions: InMemorySessionStore
    identity: IdentityResolver
    aggregation: AggregationEngine
    dispatch: DispatchEngine
    reconciliation: ReconciliationEngine
    conversation: ConversationEngine
    admin: AdminApplicationService


def build_container(
    store: AsyncRecordStore,
    sender: MessageSender,
    notifier: AdminNotifier,
    *,
    today: Optional[Callable[[], date]] = None,
) -> AppContainer:
    sessions = InMemorySessionStore(ttl_seconds=settings.session_ttl_seconds)
    identity = IdentityResolver(
        store,
        candidate_limit=settings.search_candidate_limit,
        display_limit=settings.search_display_limit,
        scan_limit=settings.search_scan_limit,
    )
    aggregation = AggregationEngine(store, today or local_today_factory(settings.timezone))
    dispatch = DispatchEngine(
        store, sender, aggregation,
        concurrency=settings.dispatch_concurrency,
        rolling_days=settings.rolling_window_days,
    )
    reconciliation = ReconciliationEngine(store, sender, notifier, sessions, identity)
    conversation = ConversationEngine(
        sender=sender,
        sessions=sessions,
        identity=identity,
        aggregation=aggregation,
        dispatch=dispatch,
        reconciliation=reconciliation,
        rolling_days=settings.rolling_window_days,
    )
    admin = AdminApplicationService(
        store,
        sender=sender,
        identity=identity,
        aggregation=aggregation,
        dispatch=dispatch,
        reporting=ReportingService(store, aggregation),
        tz_name=settings.timezone,
    )
    return AppContainer(
        store=store,
        sender=sender,
        notifier=notifier,
        sessions=sessions,
        identity=identity,
        aggregation=aggregation,
        dispatch=dispatch,
        reconciliation=reconciliation,
        conversation=conversation,
        admin=admin,
    )


def build_scheduler(container: AppContainer) -> PeriodicScheduler:
    """Daily dispatch, rolling digest on the configured days, nightly session sweep."""

    async def sweep_sessions() -> int:
        return container.sessions.cleanup_expired()

    jobs = [
        ScheduledJob("daily", parse_hhmm(settings.daily_dispatch_time), container.dispatch.dispatch_daily),
        ScheduledJob("session_cleanup", parse_hhmm("03:00"), sweep_sessions),
    ]
    if settings.digest_days:
        jobs.append(ScheduledJob(
            "digest",
            parse_hhmm(settings.digest_dispatch_time),
            container.dispatch.dispatch_rolling_digest,
            tuple(settings.digest_days),
        ))
    return PeriodicScheduler(jobs, tz_name=settings.timezone)


async def _open_store() -> AsyncRecordStore:
    if settings.storage_backend == "memory":
        from timesheet_bot.infra.memory_store import InMemoryRecordStore
        logger.warning("Using in-memory record store (data is lost on restart)")
        return InMemoryRecordStore()

    from timesheet_bot.infra.db_async import init_pool
    from timesheet_bot.infra.pg_record_store_async import AsyncPostgresRecordStore

    # Migrations are applied separately: python -m timesheet_bot.infra.migrate
    await init_pool()
    logger.info("Database pool initialized")
    return AsyncPostgresRecordStore()


def get_container(request: Request) -> AppContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Service is starting")
    return container


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""

    # STARTUP
    logger.info(
        f"Starting application: env={settings.app_env}, run_mode={settings.run_mode}, "
        f"storage={settings.storage_backend}"
    )

    if settings.is_production:
        missing = settings.validate_required_for_production()
        if missing:
            logger.critical(f"Missing required production settings: {missing}")
            raise RuntimeError(f"Missing production config: {missing}")

    from timesheet_bot.infra.notifications import get_admin_notifier
    from timesheet_bot.transport.messaging import TelegramMessageSender

    store = await _open_store()
    container = build_container(store, TelegramMessageSender(), get_admin_notifier())
    fastapi_app.state.container = container

    # Only one process may consume getUpdates
    poller = None
    if (
        settings.run_mode in ("all", "poller")
        and settings.telegram_enabled
        and settings.telegram_mode == "polling"
    ):
        from timesheet_bot.transport.telegram_polling import TelegramPoller
        poller = TelegramPoller(container.conversation)
        await poller.start()
    elif settings.telegram_mode == "webhook":
        logger.info("Telegram webhook path: /webhooks/telegram  (register it with setWebhook)")
    else:
        logger.info(f"Telegram poller skipped (run_mode={settings.run_mode})")

    scheduler = None
    if settings.scheduler_enabled and settings.run_mode in ("all", "web"):
        scheduler = build_scheduler(container)
        await scheduler.start()
    else:
        logger.info("Scheduler skipped")

    logger.info(
        f"Dispatch settings: daily={settings.daily_dispatch_time}, "
        f"digest_days={settings.digest_days}, rolling_window={settings.rolling_window_days}d, "
        f"tz={settings.timezone}"
    )
    logger.info("Application startup complete")

    yield

    # SHUTDOWN
    logger.info("Shutting down application")

    if scheduler is not None:
        await scheduler.stop()
    if poller is not None:
        await poller.stop()

    from timesheet_bot.infra.http_client import close_all_sessions
    await close_all_sessions()

    if settings.storage_backend == "postgres":
        from timesheet_bot.infra.db_async import close_pool
        await close_pool()
    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="Timesheet Bot",
    description="Daily worked-hours delivery and reconciliation over Telegram",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

if not settings.is_production:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(AdminError)
async def admin_error_handler(request: Request, exc: AdminError):
    if exc.status_code >= 500:
        logger.error(f"Admin error: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


def _parse(model: type[BaseModel], payload: Optional[dict]) -> Any:
    try:
        return model(**(payload or {}))
    except PydanticValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/health")
def health():
    """Basic liveness check for load balancers."""
    return {"status": "healthy"}


@app.post("/webhooks/telegram")
async def webhook_telegram(request: Request):
    """
    Telegram Bot API webhook endpoint - PUBLIC but VALIDATED.

    - X-Telegram-Bot-Api-Secret-Token validation (if configured)
    - Returns 200 quickly so Telegram does not redeliver
    """
    container = get_container(request)
    return await telegram_webhook_handler(request, container.conversation)


@app.get("/metrics")
def metrics():
    """In-process counters and histograms."""
    if not settings.enable_metrics:
        raise HTTPException(status_code=404, detail="Not found")
    return get_metrics_collector().get_metrics()


# ============================================================================
# ADMIN ENDPOINTS
#
# Thin transport layer; all business logic lives in AdminApplicationService.
# Routes: parse request → call service → AdminError handler → JSON.
# ============================================================================

@app.post("/admin/send-daily-hours")
async def admin_send_daily_hours(request: Request, payload: Optional[dict] = Body(default=None)):
    """Run the daily dispatch (and the rolling digest) now."""
    req = _parse(DispatchRequest, payload)
    result = await get_container(request).admin.trigger_daily_dispatch(req)
    return result.model_dump(mode="json")


@app.get("/admin/workers")
async def admin_workers(request: Request, page: int = 1, limit: int = 100):
    result = await get_container(request).admin.list_workers(page, limit)
    return result.model_dump(mode="json")


@app.get("/admin/worker-hours")
async def admin_worker_hours(request: Request, page: int = 1, limit: int = 10, search: Optional[str] = None):
    result = await get_container(request).admin.list_hours(page, limit, search)
    return result.model_dump(mode="json")


@app.get("/admin/disputes")
async def admin_disputes(request: Request, page: int = 1, limit: int = 20):
    result = await get_container(request).admin.list_disputes(page, limit)
    return result.model_dump(mode="json")


@app.get("/admin/uploads")
async def admin_uploads(request: Request, page: int = 1, limit: int = 20):
    result = await get_container(request).admin.list_imports(page, limit)
    return result.model_dump(mode="json")


@app.post("/admin/ingest")
async def admin_ingest(request: Request, payload: dict = Body(...)):
    """Replace all records of one date with the given normalized rows."""
    req = _parse(IngestRequest, payload)
    result = await get_container(request).admin.ingest(req)
    return result.model_dump(mode="json")


@app.post("/admin/correction")
async def admin_correction(request: Request, payload: dict = Body(...)):
    """Fix a worker's hours and re-deliver the day with a highlighted note."""
    req = _parse(CorrectionRequest, payload)
    result = await get_container(request).admin.push_correction(req)
    return result.model_dump(mode="json", exclude_none=True)


@app.post("/admin/disconnect-telegram")
async def admin_disconnect_telegram(request: Request, payload: dict = Body(...)):
    req = _parse(DisconnectRequest, payload)
    result = await get_container(request).admin.force_unlink(req)
    return result.model_dump(mode="json")


@app.get("/admin/stats")
async def admin_stats(request: Request):
    result = await get_container(request).admin.stats()
    return result.model_dump(mode="json")


@app.get("/admin/user-hours-sum")
async def admin_user_hours_sum(
    request: Request, start_date: Optional[str] = None, end_date: Optional[str] = None,
):
    result = await get_container(request).admin.hours_sum(start_date, end_date)
    return result.model_dump(mode="json")


@app.get("/admin/stats/top-weekly")
async def admin_top_weekly(request: Request, limit: int = 10):
    rows = await get_container(request).admin.top_weekly(limit)
    return [r.model_dump(mode="json") for r in rows]


@app.get("/admin/stats/top-monthly")
async def admin_top_monthly(request: Request, limit: int = 10):
    rows = await get_container(request).admin.top_monthly(limit)
    return [r.model_dump(mode="json") for r in rows]


@app.get("/admin/stats/monthly-total")
async def admin_monthly_total(request: Request):
    rows = await get_container(request).admin.monthly_totals()
    return [r.model_dump(mode="json") for r in rows]


@app.post("/admin/metrics/reset")
def admin_reset_metrics():
    get_metrics_collector().reset()
    logger.info("Metrics reset by admin")
    return {"ok": True}


# ============================================================================
# CATCH-ALL (Return 404 for unknown routes)
# ============================================================================

@app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "DELETE", "PATCH"])
async def catch_all(path: str):
    logger.warning(f"404 - Unknown route accessed: {path}")
    raise HTTPException(status_code=404, detail="Not found")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "timesheet_bot.transport.http_app:app",
        host="0.0.0.0",
        port=8099,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
        access_log=not settings.is_production,
        server_header=False,
        date_header=False,
    )

# tests/test_admin_service.py
"""Tests for timesheet_bot/admin/service.py: admin orchestration and error mapping."""
from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from timesheet_bot.admin.errors import NotFoundError, UnprocessableError, ValidationError
from timesheet_bot.admin.models import (
    CorrectionRequest,
    DisconnectRequest,
    DispatchRequest,
    IngestRequest,
)
from timesheet_bot.admin.service import AdminApplicationService
from timesheet_bot.core.domain import Dispute, DisputeKind, Worker

from conftest import TODAY, Bot, FakeSender


@pytest.fixture
def admin(bot):
    return AdminApplicationService(
        bot.store,
        sender=bot.sender,
        identity=bot.identity,
        aggregation=bot.aggregation,
        dispatch=bot.dispatch,
        tz_name="Europe/Moscow",
    )


# ============================================================================
# Dispatch
# ============================================================================

class TestTriggerDispatch:
    @pytest.mark.asyncio
    async def test_daily_and_digest(self, admin, sender, ivan):
        result = await admin.trigger_daily_dispatch(DispatchRequest())

        assert result.daily["sent_count"] == 1
        assert result.daily["trigger"] == "admin"
        assert result.digest["sent_count"] == 1
        assert len(sender.texts_to("1001")) == 2

    @pytest.mark.asyncio
    async def test_without_digest(self, admin, sender, ivan):
        result = await admin.trigger_daily_dispatch(
            DispatchRequest(target_date=date(2024, 3, 3), include_digest=False)
        )
        assert result.digest is None
        assert result.daily["start"] == "2024-03-03"


# ============================================================================
# Corrections
# ============================================================================

class TestPushCorrection:
    @pytest.mark.asyncio
    async def test_updates_hours_and_redelivers(self, admin, store, sender, ivan):
        result = await admin.push_correction(CorrectionRequest(
            worker_id=ivan, hours=Decimal("7"), message="Часы исправлены",
        ))

        assert result.ok and result.records == 1
        record = await store.latest_hours_on(ivan, TODAY)
        assert record.hours == Decimal("7.00")
        text, buttons = sender.last_to("1001")
        assert "Часы исправлены" in text
        assert "— 7 ч." in text
        assert buttons is not None

    @pytest.mark.asyncio
    async def test_explicit_record(self, admin, store, ivan):
        await admin.push_correction(CorrectionRequest(worker_id=ivan, record_id=3, hours=Decimal("8")))
        assert (await store.get_hours_record(3)).hours == Decimal("8.00")

    @pytest.mark.asyncio
    async def test_message_only_keeps_hours(self, admin, store, sender, ivan):
        await admin.push_correction(CorrectionRequest(worker_id=ivan, work_date=date(2024, 3, 3), message="Проверено"))
        assert (await store.get_hours_record(3)).hours == Decimal("7.50")
        assert "7.5" in sender.last_to("1001")[0]

    @pytest.mark.asyncio
    async def test_unknown_worker(self, admin):
        with pytest.raises(NotFoundError):
            await admin.push_correction(CorrectionRequest(worker_id=999))

    @pytest.mark.asyncio
    async def test_record_of_other_worker(self, admin, store, ivan):
        store.add_worker(Worker(id=60, name="Olga"))
        other = store.add_hours(60, TODAY, "8")
        with pytest.raises(NotFoundError):
            await admin.push_correction(CorrectionRequest(worker_id=ivan, record_id=other.id))

    @pytest.mark.asyncio
    async def test_no_record_on_date(self, admin, ivan):
        with pytest.raises(NotFoundError):
            await admin.push_correction(CorrectionRequest(worker_id=ivan, work_date=date(2024, 2, 1)))

    @pytest.mark.asyncio
    async def test_unlinked_worker(self, admin, store):
        store.add_worker(Worker(id=60, name="Olga"))
        store.add_hours(60, TODAY, "8")
        with pytest.raises(UnprocessableError):
            await admin.push_correction(CorrectionRequest(worker_id=60))

    @pytest.mark.asyncio
    async def test_delivery_failure(self, store, ivan):
        bot = Bot(store, FakeSender(fail_for={"1001"}))
        service = AdminApplicationService(
            store, sender=bot.sender, identity=bot.identity,
            aggregation=bot.aggregation, dispatch=bot.dispatch,
        )
        with pytest.raises(UnprocessableError):
            await service.push_correction(CorrectionRequest(worker_id=ivan))


# ============================================================================
# Force unlink
# ============================================================================

class TestForceUnlink:
    @pytest.mark.asyncio
    async def test_unlinks_and_notifies(self, admin, store, sender, ivan):
        result = await admin.force_unlink(DisconnectRequest(channel_id=" 1001 "))

        assert result.workers == [{"id": ivan, "name": "Ivan Petrov"}]
        assert result.notified is True
        assert result.message == "Telegram ID 1001 disconnected from 1 worker(s)"
        assert sender.texts_to("1001") == ["Telegram аккаунт 1001 отключён администратором."]
        worker = await store.get_worker(ivan)
        assert worker.channel_id is None and not worker.is_linked

    @pytest.mark.asyncio
    async def test_unknown_channel(self, admin):
        with pytest.raises(NotFoundError):
            await admin.force_unlink(DisconnectRequest(channel_id="5555"))

    @pytest.mark.asyncio
    async def test_undeliverable_notice_keeps_unlink(self, admin, store, sender, ivan):
        sender.fail_for.add("1001")

        result = await admin.force_unlink(DisconnectRequest(channel_id="1001"))

        assert result.notified is False
        assert (await store.get_worker(ivan)).channel_id is None


# ============================================================================
# Ingestion
# ============================================================================

class TestIngest:
    @pytest.mark.asyncio
    async def test_ingest_and_dispatch(self, admin, store, sender, ivan):
        result = await admin.ingest(IngestRequest(
            source_name="march05.xlsx",
            dispatch=True,
            rows=[
                {"worker_id": ivan, "name": "Ivan Petrov", "hours": "6", "activity_description": "Warehouse"},
                {"worker_id": 60, "name": "Olga Smirnova", "hours": "8"},
            ],
        ))

        assert result.records_processed == 2
        assert result.workers == 2
        assert result.batch.target_date == TODAY
        assert result.dispatch["sent_count"] == 1
        assert "Warehouse" in sender.last_to("1001")[0]

    @pytest.mark.asyncio
    async def test_ingest_without_dispatch(self, admin, sender):
        result = await admin.ingest(IngestRequest(
            target_date=date(2024, 3, 4),
            rows=[{"worker_id": 60, "name": "Olga", "hours": "8"}],
        ))
        assert result.dispatch is None
        assert sender.sent == []


# ============================================================================
# Listings and stats
# ============================================================================

class TestListings:
    @pytest.mark.asyncio
    async def test_workers_page(self, admin, store, ivan):
        for i in range(1, 4):
            store.add_worker(Worker(id=i, name=f"Worker {i}"))

        page = await admin.list_workers(page=2, limit=2)

        assert page.total == 4
        assert page.pages == 2
        assert [w["id"] for w in page.items] == [3, 42]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page,limit", [(0, 10), (1, 0), (1, 201)])
    async def test_bad_paging(self, admin, page, limit):
        with pytest.raises(ValidationError):
            await admin.list_workers(page=page, limit=limit)

    @pytest.mark.asyncio
    async def test_hours_newest_first_with_search(self, admin, ivan):
        page = await admin.list_hours(limit=2)
        assert [h["date"] for h in page.items] == ["2024-03-05", "2024-03-04"]
        assert page.total == 5

        found = await admin.list_hours(search="site 3")
        assert [h["id"] for h in found.items] == [3]
        assert found.items[0]["hours"] == 7.5

    @pytest.mark.asyncio
    async def test_disputes_newest_first(self, admin, store, ivan):
        for text in ("first", "second"):
            await store.add_dispute(Dispute(
                worker_id=ivan, message=text, kind=DisputeKind.GENERAL_OR_UNLINK, channel_id="1001",
            ))

        page = await admin.list_disputes()

        assert [d["message"] for d in page.items] == ["second", "first"]
        assert page.items[0]["kind"] == "general_or_unlink"


class TestStats:
    @pytest.mark.asyncio
    async def test_counts(self, admin, store, ivan):
        store.add_worker(Worker(id=60, name="Olga"))

        stats = await admin.stats()

        assert stats.total_workers == 2
        assert stats.linked_workers == 1
        assert stats.unlinked_workers == 1

    @pytest.mark.asyncio
    async def test_hours_sum_defaults_to_today(self, admin, ivan):
        result = await admin.hours_sum()
        assert result.start == result.end == TODAY
        assert result.items[0].total_hours == 8

    @pytest.mark.asyncio
    async def test_hours_sum_bad_range(self, admin):
        with pytest.raises(ValidationError) as exc_info:
            await admin.hours_sum("2024-03-05", "garbage")
        assert "Use YYYY-MM-DD format." in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_monthly_totals(self, admin, ivan):
        rows = await admin.monthly_totals()
        assert [(r.month, r.total_hours) for r in rows] == [(date(2024, 3, 1), 39.5)]


# ============================================================================
# Error types
# ============================================================================

class TestAdminErrors:
    @pytest.mark.parametrize("cls,status", [
        (ValidationError, 400),
        (NotFoundError, 404),
        (UnprocessableError, 422),
    ])
    def test_status_and_body(self, cls, status):
        err = cls("Worker 7 has no linked Telegram account")
        assert err.status_code == status
        assert err.to_body() == {"error": "Worker 7 has no linked Telegram account"}

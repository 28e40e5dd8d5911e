# tests/test_scheduler.py
"""Tests for timesheet_bot/infra/scheduler.py"""
from __future__ import annotations

import asyncio
from datetime import datetime, time
from zoneinfo import ZoneInfo

import pytest

from timesheet_bot.infra.metrics import get_metrics_collector
from timesheet_bot.infra.scheduler import PeriodicScheduler, ScheduledJob, parse_hhmm

MSK = ZoneInfo("Europe/Moscow")


async def _noop():
    return "ok"


class TestParseHHMM:
    def test_parse(self):
        assert parse_hhmm("09:00") == time(9, 0)
        assert parse_hhmm(" 18:30 ") == time(18, 30)
        assert parse_hhmm("7") == time(7, 0)

    @pytest.mark.parametrize("value", ["25:00", "ab:cd", "09:61"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_hhmm(value)


class TestNextFire:
    def test_later_today(self):
        job = ScheduledJob("daily", time(9, 0), _noop)
        now = datetime(2024, 3, 5, 8, 30, tzinfo=MSK)
        assert job.next_fire(now) == datetime(2024, 3, 5, 9, 0, tzinfo=MSK)

    def test_already_passed_moves_to_tomorrow(self):
        job = ScheduledJob("daily", time(9, 0), _noop)
        now = datetime(2024, 3, 5, 9, 0, tzinfo=MSK)
        assert job.next_fire(now) == datetime(2024, 3, 6, 9, 0, tzinfo=MSK)

    def test_days_of_month(self):
        job = ScheduledJob("digest", time(9, 0), _noop, days_of_month=(1, 5, 10))
        now = datetime(2024, 3, 5, 10, 0, tzinfo=MSK)
        assert job.next_fire(now) == datetime(2024, 3, 10, 9, 0, tzinfo=MSK)

    def test_days_of_month_wraps_to_next_month(self):
        job = ScheduledJob("digest", time(9, 0), _noop, days_of_month=(1, 5, 10))
        now = datetime(2024, 3, 20, 10, 0, tzinfo=MSK)
        assert job.next_fire(now) == datetime(2024, 4, 1, 9, 0, tzinfo=MSK)

    def test_impossible_day_never_fires(self):
        job = ScheduledJob("never", time(9, 0), _noop, days_of_month=(32,))
        assert job.next_fire(datetime(2024, 3, 5, tzinfo=MSK)) is None


class TestScheduler:
    def test_next_run_groups_jobs_due_together(self):
        now = datetime(2024, 3, 5, 8, 0, tzinfo=MSK)
        daily = ScheduledJob("daily", time(9, 0), _noop)
        digest = ScheduledJob("digest", time(9, 0), _noop, days_of_month=(5,))
        cleanup = ScheduledJob("cleanup", time(3, 0), _noop)
        scheduler = PeriodicScheduler([daily, digest, cleanup], tz_name="Europe/Moscow", clock=lambda: now)

        fire_at, due = scheduler.next_run()

        assert fire_at == datetime(2024, 3, 5, 9, 0, tzinfo=MSK)
        assert [j.name for j in due] == ["daily", "digest"]

    def test_next_run_after_last_fire(self):
        now = datetime(2024, 3, 5, 8, 0, tzinfo=MSK)
        scheduler = PeriodicScheduler(
            [ScheduledJob("daily", time(9, 0), _noop)], tz_name="Europe/Moscow", clock=lambda: now,
        )
        fire_at, _ = scheduler.next_run(after=datetime(2024, 3, 5, 9, 0, tzinfo=MSK))
        assert fire_at == datetime(2024, 3, 6, 9, 0, tzinfo=MSK)

    @pytest.mark.asyncio
    async def test_run_job_swallows_exceptions(self):
        async def boom():
            raise RuntimeError("store down")

        scheduler = PeriodicScheduler([], tz_name="UTC")
        before = get_metrics_collector().get_counter(
            "scheduled_jobs_total", {"job": "boom", "status": "failed"},
        )

        ok = await scheduler.run_job(ScheduledJob("boom", time(9, 0), boom))

        assert ok is False
        assert get_metrics_collector().get_counter(
            "scheduled_jobs_total", {"job": "boom", "status": "failed"},
        ) == before + 1

    @pytest.mark.asyncio
    async def test_run_job_success(self):
        calls = []

        async def action():
            calls.append(1)

        ok = await PeriodicScheduler([], tz_name="UTC").run_job(ScheduledJob("x", time(9, 0), action))
        assert ok is True
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_loop_fires_due_jobs(self):
        fired = asyncio.Event()

        async def action():
            fired.set()

        # clock sits just before 09:00, so the first fire is almost immediate
        now = datetime(2024, 3, 5, 8, 59, 59, 990000, tzinfo=MSK)
        scheduler = PeriodicScheduler(
            [ScheduledJob("daily", time(9, 0), action)], tz_name="Europe/Moscow", clock=lambda: now,
        )

        await scheduler.start()
        try:
            await asyncio.wait_for(fired.wait(), timeout=2)
        finally:
            await scheduler.stop()

        assert scheduler._task is None

# timesheet_bot/infra/scheduler.py
"""
In-process periodic trigger facility.

Each ScheduledJob fires at a wall-clock time in the configured timezone,
either every day or on selected days of the month. Jobs run to completion;
an exception is logged and the scheduler keeps going.

Usage:
    scheduler = PeriodicScheduler([
        ScheduledJob("daily", parse_hhmm("09:00"), dispatch.dispatch_daily),
        ScheduledJob("digest", parse_hhmm("09:00"), dispatch.dispatch_rolling_digest, (1, 5, 10)),
    ], tz_name="Europe/Moscow")
    await scheduler.start()
    ...
    await scheduler.stop()
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Any, Awaitable, Callable, Optional, Sequence
from zoneinfo import ZoneInfo

from timesheet_bot.infra.logging_config import get_logger
from timesheet_bot.infra.metrics import Timer, inc_counter

logger = get_logger(__name__)

_MAX_LOOKAHEAD_DAYS = 62


def parse_hhmm(value: str) -> time:
    """``"09:00"`` -> ``time(9, 0)``; raises ValueError on anything else."""
    hours, _, minutes = value.strip().partition(":")
    return time(int(hours), int(minutes or 0))


@dataclass(frozen=True)
class ScheduledJob:
    name: str
    at: time
    action: Callable[[], Awaitable[Any]]
    days_of_month: Optional[tuple[int, ...]] = None  # None = every day

    def runs_on(self, day: int) -> bool:
        return self.days_of_month is None or day in self.days_of_month

    def next_fire(self, now: datetime) -> Optional[datetime]:
        """First fire time strictly after ``now`` (timezone-aware)."""
        candidate = now.replace(hour=self.at.hour, minute=self.at.minute, second=0, microsecond=0)
        if candidate <= now:
            candidate += timedelta(days=1)
        for _ in range(_MAX_LOOKAHEAD_DAYS):
            if self.runs_on(candidate.day):
                return candidate
            candidate += timedelta(days=1)
        return None


class PeriodicScheduler:
    def __init__(
        self,
        jobs: Sequence[ScheduledJob],
        *,
        tz_name: str = "UTC",
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.jobs = list(jobs)
        self.tz = ZoneInfo(tz_name)
        self._clock = clock or (lambda: datetime.now(self.tz))
        self._task: asyncio.Task | None = None
        self._running = False

    def next_run(self, after: Optional[datetime] = None) -> Optional[tuple[datetime, list[ScheduledJob]]]:
        """Earliest fire time (after ``after`` and now) and every job due at that moment."""
        now = self._clock()
        if after is not None and after > now:
            now = after
        upcoming: dict[datetime, list[ScheduledJob]] = {}
        for job in self.jobs:
            fire = job.next_fire(now)
            if fire is not None:
                upcoming.setdefault(fire, []).append(job)
        if not upcoming:
            return None
        first = min(upcoming)
        return first, upcoming[first]

    async def run_job(self, job: ScheduledJob) -> bool:
        logger.info(f"Scheduled job '{job.name}' starting", extra={"trigger": job.name})
        try:
            with Timer("scheduled_job_seconds", job=job.name):
                result = await job.action()
        except Exception:
            logger.error(f"Scheduled job '{job.name}' failed", exc_info=True, extra={"trigger": job.name})
            inc_counter("scheduled_jobs_total", job=job.name, status="failed")
            return False

        inc_counter("scheduled_jobs_total", job=job.name, status="ok")
        logger.info(f"Scheduled job '{job.name}' finished: {result}", extra={"trigger": job.name})
        return True

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="periodic_scheduler")
        logger.info(f"Scheduler started: jobs={[j.name for j in self.jobs]}, tz={self.tz.key}")

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Scheduler stopped")

    async def _loop(self) -> None:
        last_fire: Optional[datetime] = None
        while self._running:
            planned = self.next_run(after=last_fire)
            if planned is None:
                logger.warning("Scheduler has no upcoming runs, stopping")
                return

            fire_at, due = planned
            delay = (fire_at - self._clock()).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)

            # a fire time is used once even if the jobs finish within the same minute
            last_fire = fire_at
            for job in due:
                await self.run_job(job)

"""Periodic driver that triggers the retention policies on fixed cadences."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Protocol

from anyio import to_thread

from telemetry.config import Settings
from telemetry.utils import utcnow

from .data_retention import (
    DAILY_CLEANUP,
    MONTHLY_ARCHIVAL,
    WEEKLY_CLEANUP,
    DataRetentionService,
)


class Cadence(Protocol):
    interval: timedelta

    def next_after(self, moment: datetime) -> datetime: ...


def _validate_hour(hour: int) -> None:
    if not 0 <= hour <= 23:
        raise ValueError("hour must be between 0 and 23")


@dataclass(frozen=True)
class DailyCadence:
    hour: int = 2
    tz: tzinfo = timezone.utc

    def __post_init__(self) -> None:
        _validate_hour(self.hour)

    @property
    def interval(self) -> timedelta:
        return timedelta(days=1)

    def next_after(self, moment: datetime) -> datetime:
        local = moment.astimezone(self.tz)
        candidate = local.replace(hour=self.hour, minute=0, second=0, microsecond=0)
        if candidate <= local:
            candidate += timedelta(days=1)
        return candidate.astimezone(timezone.utc)


@dataclass(frozen=True)
class WeeklyCadence:
    """Weekly trigger; ``weekday`` follows :meth:`datetime.weekday` (0 is Monday)."""

    weekday: int = 6
    hour: int = 3
    tz: tzinfo = timezone.utc

    def __post_init__(self) -> None:
        _validate_hour(self.hour)
        if not 0 <= self.weekday <= 6:
            raise ValueError("weekday must be between 0 and 6")

    @property
    def interval(self) -> timedelta:
        return timedelta(weeks=1)

    def next_after(self, moment: datetime) -> datetime:
        local = moment.astimezone(self.tz)
        candidate = local.replace(hour=self.hour, minute=0, second=0, microsecond=0)
        candidate += timedelta(days=(self.weekday - local.weekday()) % 7)
        if candidate <= local:
            candidate += timedelta(weeks=1)
        return candidate.astimezone(timezone.utc)


@dataclass(frozen=True)
class MonthlyCadence:
    day: int = 1
    hour: int = 4
    tz: tzinfo = timezone.utc

    def __post_init__(self) -> None:
        _validate_hour(self.hour)
        if not 1 <= self.day <= 28:
            raise ValueError("day must be between 1 and 28")

    @property
    def interval(self) -> timedelta:
        return timedelta(days=30)

    def next_after(self, moment: datetime) -> datetime:
        local = moment.astimezone(self.tz)
        candidate = local.replace(
            day=self.day, hour=self.hour, minute=0, second=0, microsecond=0
        )
        if candidate <= local:
            if candidate.month == 12:
                candidate = candidate.replace(year=candidate.year + 1, month=1)
            else:
                candidate = candidate.replace(month=candidate.month + 1)
        return candidate.astimezone(timezone.utc)


@dataclass
class PeriodicTask:
    """A named action fired whenever its cadence comes due.

    A task never runs twice concurrently: a trigger that arrives while the
    previous run is still in progress is skipped.
    """

    name: str
    cadence: Cadence
    action: Callable[[], Any]
    last_run: datetime | None = None
    next_run: datetime | None = None
    last_result: Any = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def schedule_from(self, moment: datetime) -> datetime:
        self.next_run = self.cadence.next_after(moment)
        return self.next_run

    def is_due(self, now: datetime) -> bool:
        return self.next_run is not None and now >= self.next_run and not self.running

    def run(self, now: datetime | None = None) -> bool:
        """Run the action once; return ``False`` when a run was already in progress."""

        if not self._lock.acquire(blocking=False):
            return False
        started = now or utcnow()
        try:
            self.last_result = self.action()
        finally:
            self.last_run = started
            self.next_run = self.cadence.next_after(started)
            self._lock.release()
        return True


class RetentionScheduler:
    """Drive the daily, weekly and monthly retention policies."""

    def __init__(
        self,
        tasks: list[PeriodicTask],
        *,
        tick_seconds: float = 60.0,
        clock: Callable[[], datetime] = utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        self._tasks = {task.name: task for task in tasks}
        self._tick_seconds = tick_seconds
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        self._runner: asyncio.Task[None] | None = None
        now = clock()
        for task in self._tasks.values():
            if task.next_run is None:
                task.schedule_from(now)

    @classmethod
    def for_service(
        cls,
        service: DataRetentionService,
        settings: Settings,
        *,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] = utcnow,
        logger: logging.Logger | None = None,
    ) -> "RetentionScheduler":
        tasks = [
            PeriodicTask(
                DAILY_CLEANUP,
                DailyCadence(settings.daily_cleanup_hour, tz),
                service.run_daily_cleanup,
            ),
            PeriodicTask(
                WEEKLY_CLEANUP,
                WeeklyCadence(settings.weekly_cleanup_weekday, settings.weekly_cleanup_hour, tz),
                service.run_weekly_cleanup,
            ),
            PeriodicTask(
                MONTHLY_ARCHIVAL,
                MonthlyCadence(settings.monthly_archival_day, settings.monthly_archival_hour, tz),
                service.run_monthly_archival,
            ),
        ]
        return cls(tasks, tick_seconds=settings.scheduler_tick_seconds, clock=clock, logger=logger)

    @property
    def tasks(self) -> list[PeriodicTask]:
        return list(self._tasks.values())

    def get(self, name: str) -> PeriodicTask | None:
        return self._tasks.get(name)

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    def due_tasks(self, now: datetime | None = None) -> list[PeriodicTask]:
        moment = now or self._clock()
        return [task for task in self._tasks.values() if task.is_due(moment)]

    def run_task(self, task: PeriodicTask, now: datetime | None = None) -> bool:
        self._logger.info("Starting scheduled task %s", task.name)
        try:
            executed = task.run(now)
        except Exception:
            self._logger.exception("Scheduled task %s failed", task.name)
            return True
        if not executed:
            self._logger.warning("Scheduled task %s is still running; skipping", task.name)
        return executed

    def tick(self, now: datetime | None = None) -> list[str]:
        """Synchronously run every due task and return the names that ran."""

        moment = now or self._clock()
        return [
            task.name for task in self.due_tasks(moment) if self.run_task(task, moment)
        ]

    async def tick_async(self, now: datetime | None = None) -> list[str]:
        """Run due tasks on worker threads, concurrently across tasks."""

        moment = now or self._clock()
        due = self.due_tasks(moment)
        if not due:
            return []
        results = await asyncio.gather(
            *(to_thread.run_sync(self.run_task, task, moment) for task in due)
        )
        return [task.name for task, executed in zip(due, results) if executed]

    def start(self) -> None:
        if self.running:
            return
        loop = asyncio.get_running_loop()
        self._runner = loop.create_task(self._loop())
        self._logger.info(
            "Retention scheduler started with tasks: %s", ", ".join(self._tasks)
        )

    async def stop(self) -> None:
        runner, self._runner = self._runner, None
        if runner is None:
            return
        runner.cancel()
        try:
            await runner
        except asyncio.CancelledError:
            pass
        self._logger.info("Retention scheduler stopped")

    async def _loop(self) -> None:
        while True:
            await self.tick_async()
            await asyncio.sleep(self._tick_seconds)


__all__ = [
    "Cadence",
    "DailyCadence",
    "MonthlyCadence",
    "PeriodicTask",
    "RetentionScheduler",
    "WeeklyCadence",
]

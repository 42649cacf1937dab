import threading
from datetime import datetime, timedelta, timezone

import pytest

from telemetry.application.use_cases.retention_scheduler import (
    DailyCadence,
    MonthlyCadence,
    PeriodicTask,
    RetentionScheduler,
    WeeklyCadence,
)
from telemetry.utils import resolve_timezone

# 2023-01-20 is a Friday.
NOW = datetime(2023, 1, 20, 12, 0, tzinfo=timezone.utc)


class _StubRetentionService:
    def __init__(self):
        self.calls = []

    def run_daily_cleanup(self):
        self.calls.append("daily")
        return "daily-result"

    def run_weekly_cleanup(self):
        self.calls.append("weekly")

    def run_monthly_archival(self):
        self.calls.append("monthly")


def test_daily_cadence():
    cadence = DailyCadence(hour=2)

    assert cadence.interval == timedelta(days=1)
    assert cadence.next_after(NOW) == datetime(2023, 1, 21, 2, tzinfo=timezone.utc)
    assert cadence.next_after(datetime(2023, 1, 20, 1, 59, tzinfo=timezone.utc)) == datetime(
        2023, 1, 20, 2, tzinfo=timezone.utc
    )
    assert cadence.next_after(datetime(2023, 1, 20, 2, tzinfo=timezone.utc)) == datetime(
        2023, 1, 21, 2, tzinfo=timezone.utc
    )


def test_daily_cadence_in_local_timezone():
    cadence = DailyCadence(hour=2, tz=resolve_timezone("UTC+02:00"))

    assert cadence.next_after(NOW) == datetime(2023, 1, 21, 0, tzinfo=timezone.utc)


def test_weekly_cadence_runs_on_sunday():
    cadence = WeeklyCadence(weekday=6, hour=3)

    assert cadence.interval == timedelta(weeks=1)
    assert cadence.next_after(NOW) == datetime(2023, 1, 22, 3, tzinfo=timezone.utc)
    assert cadence.next_after(datetime(2023, 1, 22, 3, tzinfo=timezone.utc)) == datetime(
        2023, 1, 29, 3, tzinfo=timezone.utc
    )


def test_monthly_cadence_wraps_year():
    cadence = MonthlyCadence(day=1, hour=4)

    assert cadence.next_after(NOW) == datetime(2023, 2, 1, 4, tzinfo=timezone.utc)
    assert cadence.next_after(datetime(2023, 12, 5, tzinfo=timezone.utc)) == datetime(
        2024, 1, 1, 4, tzinfo=timezone.utc
    )


@pytest.mark.parametrize(
    "factory",
    [
        lambda: DailyCadence(hour=24),
        lambda: WeeklyCadence(weekday=7),
        lambda: MonthlyCadence(day=29),
    ],
)
def test_invalid_cadences_are_rejected(factory):
    with pytest.raises(ValueError):
        factory()


def test_periodic_task_run_updates_schedule():
    calls = []
    task = PeriodicTask("job", DailyCadence(hour=2), lambda: calls.append(1) or "done")
    task.schedule_from(NOW)

    assert not task.is_due(NOW)
    assert task.is_due(datetime(2023, 1, 21, 2, tzinfo=timezone.utc))

    assert task.run(datetime(2023, 1, 21, 2, tzinfo=timezone.utc)) is True
    assert calls == [1]
    assert task.last_result == "done"
    assert task.last_run == datetime(2023, 1, 21, 2, tzinfo=timezone.utc)
    assert task.next_run == datetime(2023, 1, 22, 2, tzinfo=timezone.utc)
    assert task.running is False


def test_periodic_task_is_not_reentered():
    started = threading.Event()
    release = threading.Event()
    calls = []

    def slow_action():
        calls.append(1)
        started.set()
        release.wait(timeout=5)

    task = PeriodicTask("slow", DailyCadence(), slow_action)
    worker = threading.Thread(target=task.run)
    worker.start()
    started.wait(timeout=5)

    assert task.running is True
    assert task.run() is False
    assert not task.is_due(NOW + timedelta(days=365))

    release.set()
    worker.join(timeout=5)
    assert calls == [1]
    assert task.running is False


def test_periodic_task_releases_after_failure():
    def boom():
        raise RuntimeError("boom")

    task = PeriodicTask("boom", DailyCadence(), boom)

    with pytest.raises(RuntimeError):
        task.run(NOW)
    assert task.running is False
    assert task.next_run == datetime(2023, 1, 21, 2, tzinfo=timezone.utc)


def test_scheduler_registers_named_tasks(settings):
    scheduler = RetentionScheduler.for_service(_StubRetentionService(), settings, clock=lambda: NOW)

    names = [task.name for task in scheduler.tasks]

    assert names == ["daily_cleanup", "weekly_cleanup", "monthly_archival"]
    assert scheduler.get("daily_cleanup").next_run == datetime(2023, 1, 21, 2, tzinfo=timezone.utc)
    assert scheduler.get("weekly_cleanup").next_run == datetime(2023, 1, 22, 3, tzinfo=timezone.utc)
    assert scheduler.get("monthly_archival").next_run == datetime(2023, 2, 1, 4, tzinfo=timezone.utc)


def test_tick_runs_only_due_tasks(settings):
    service = _StubRetentionService()
    scheduler = RetentionScheduler.for_service(service, settings, clock=lambda: NOW)

    assert scheduler.tick(NOW) == []
    assert scheduler.tick(datetime(2023, 1, 21, 2, 0, 30, tzinfo=timezone.utc)) == ["daily_cleanup"]
    assert scheduler.tick(datetime(2023, 1, 21, 2, 1, tzinfo=timezone.utc)) == []
    assert scheduler.tick(datetime(2023, 2, 1, 5, tzinfo=timezone.utc)) == [
        "daily_cleanup",
        "weekly_cleanup",
        "monthly_archival",
    ]
    assert service.calls == ["daily", "daily", "weekly", "monthly"]
    assert scheduler.get("daily_cleanup").last_result == "daily-result"


def test_failing_task_does_not_stop_the_tick(settings, caplog):
    def boom():
        raise RuntimeError("boom")

    scheduler = RetentionScheduler(
        [
            PeriodicTask("broken", DailyCadence(hour=2), boom),
            PeriodicTask("healthy", DailyCadence(hour=2), lambda: "ok"),
        ],
        clock=lambda: NOW,
    )

    ran = scheduler.tick(datetime(2023, 1, 21, 3, tzinfo=timezone.utc))

    assert ran == ["broken", "healthy"]
    assert "Scheduled task broken failed" in caplog.text
    assert scheduler.get("broken").next_run == datetime(2023, 1, 22, 2, tzinfo=timezone.utc)


@pytest.mark.anyio
async def test_tick_async_runs_tasks_on_worker_threads(settings):
    service = _StubRetentionService()
    scheduler = RetentionScheduler.for_service(service, settings, clock=lambda: NOW)

    ran = await scheduler.tick_async(datetime(2023, 1, 22, 4, tzinfo=timezone.utc))

    assert sorted(ran) == ["daily_cleanup", "weekly_cleanup"]
    assert sorted(service.calls) == ["daily", "weekly"]


@pytest.mark.anyio
async def test_start_and_stop(settings):
    scheduler = RetentionScheduler.for_service(_StubRetentionService(), settings, clock=lambda: NOW)

    scheduler.start()
    assert scheduler.running is True
    await scheduler.stop()
    assert scheduler.running is False

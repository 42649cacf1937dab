"""Use cases implementing the activity retention, anonymization and archival policies."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from functools import partial
from typing import Any

from telemetry.config import Settings
from telemetry.domain.entities import ActivityRecord, ActivityType, RetentionAuditEntry
from telemetry.domain.result import Result
from telemetry.infrastructure.archive import ArchiveSink
from telemetry.infrastructure.repositories import (
    ActivityRecordRepository,
    RetentionAuditRepository,
)
from telemetry.utils import anonymize_ip, anonymize_user_agent, parse_timestamp, utcnow
from telemetry.utils.serialization import to_jsonable

from .activity_aggregation import ActivityAggregationService, LoginAnalysis, TypeSummary

DEDUPE_WINDOW_SECONDS = 60

DAILY_CLEANUP = "daily_cleanup"
WEEKLY_CLEANUP = "weekly_cleanup"
MONTHLY_ARCHIVAL = "monthly_archival"
MANUAL_CLEANUP = "manual_cleanup"


class CleanupType(str, Enum):
    ALL = "all"
    ACTIVITIES = "activities"
    FAILED = "failed"


@dataclass
class PolicyOutcome:
    """Effect of one policy step: records affected and per-record errors."""

    affected: int = 0
    errors: int = 0
    retention_days: int | None = None
    cutoff: datetime | None = None
    dry_run: bool = False
    aborted: bool = False


@dataclass
class MonthlyReport:
    start_date: datetime
    end_date: datetime
    activity_summary: TypeSummary
    login_analysis: LoginAnalysis
    generated_at: datetime


@dataclass
class RetentionRunResult:
    """Result shape shared by every scheduled and manual retention run."""

    policy: str
    started_at: datetime
    dry_run: bool = False
    outcomes: dict[str, PolicyOutcome] = field(default_factory=dict)
    finished_at: datetime | None = None
    report: MonthlyReport | None = None
    report_failed: bool = False

    @property
    def errors_encountered(self) -> int:
        return sum(outcome.errors for outcome in self.outcomes.values()) + int(
            self.report_failed
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "policy": self.policy,
            "dry_run": self.dry_run,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "errors_encountered": self.errors_encountered,
            "outcomes": self.outcomes,
        }
        if self.report is not None:
            payload["report"] = {
                "start_date": self.report.start_date,
                "end_date": self.report.end_date,
                "total_activities": self.report.activity_summary.total_activities,
                "activity_types": self.report.activity_summary.activity_types,
                "login_attempts": self.report.login_analysis.total_attempts,
            }
        return to_jsonable(payload)


@dataclass(frozen=True)
class RetentionWindows:
    retention_days: int = 90
    failed_retention_days: int = 30
    session_retention_days: int = 7
    anonymization_days: int = 180
    archive_days: int = 365

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetentionWindows":
        return cls(
            retention_days=settings.retention_days,
            failed_retention_days=settings.failed_retention_days,
            session_retention_days=settings.session_retention_days,
            anonymization_days=settings.anonymization_days,
            archive_days=settings.archive_days,
        )


def dedupe_key(record: ActivityRecord) -> tuple[str | None, str, int] | None:
    """``(actor, activity type, minute)`` used to collapse near-duplicates."""

    moment = parse_timestamp(record.created_at)
    if moment is None:
        return None
    activity_type = record.activity_type
    type_value = activity_type.value if isinstance(activity_type, Enum) else str(activity_type)
    return record.actor_ref, type_value, int(moment.timestamp() // DEDUPE_WINDOW_SECONDS)


def previous_month_bounds(reference: datetime, tz: tzinfo = timezone.utc) -> tuple[datetime, datetime]:
    """Return the first and last instant of the calendar month before ``reference``."""

    local = reference.astimezone(tz)
    current_start = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if current_start.month == 1:
        previous_start = current_start.replace(year=current_start.year - 1, month=12)
    else:
        previous_start = current_start.replace(month=current_start.month - 1)
    return (
        previous_start.astimezone(timezone.utc),
        (current_start - timedelta(microseconds=1)).astimezone(timezone.utc),
    )


class DataRetentionService:
    """Idempotent cleanup, anonymization, deduplication and archival policies.

    Per-record failures are counted and never stop a policy. A failure to
    list candidate records aborts only the step that hit it.
    """

    def __init__(
        self,
        repository: ActivityRecordRepository,
        aggregation: ActivityAggregationService,
        *,
        archive_sink: ArchiveSink | None = None,
        audit_repository: RetentionAuditRepository | None = None,
        windows: RetentionWindows | None = None,
        batch_size: int = 1000,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] = utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        self._repository = repository
        self._aggregation = aggregation
        self._archive_sink = archive_sink
        self._audit_repository = audit_repository
        self._windows = windows or RetentionWindows()
        self._batch_size = batch_size
        self._tz = tz
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

    @property
    def windows(self) -> RetentionWindows:
        return self._windows

    # Scheduled policies -------------------------------------------------

    def run_daily_cleanup(self) -> RetentionRunResult:
        result = RetentionRunResult(policy=DAILY_CLEANUP, started_at=self._clock())
        windows = self._windows
        result.outcomes["activities"] = self._run_step(
            "activity cleanup", lambda: self.cleanup_activities(windows.retention_days)
        )
        result.outcomes["failed"] = self._run_step(
            "failed activity cleanup",
            lambda: self.cleanup_failed_activities(windows.failed_retention_days),
        )
        result.outcomes["sessions"] = self._run_step(
            "expired session sweep",
            lambda: self.process_expired_sessions(windows.session_retention_days),
        )
        return self._finish(result, automated=True)

    def run_weekly_cleanup(self) -> RetentionRunResult:
        result = RetentionRunResult(policy=WEEKLY_CLEANUP, started_at=self._clock())
        result.outcomes["anonymized"] = self._run_step(
            "anonymization",
            lambda: self.anonymize_old_records(self._windows.anonymization_days),
        )
        result.outcomes["duplicates"] = self._run_step(
            "duplicate removal", self.remove_duplicates
        )
        return self._finish(result, automated=True)

    def run_monthly_archival(self) -> RetentionRunResult:
        result = RetentionRunResult(policy=MONTHLY_ARCHIVAL, started_at=self._clock())
        result.outcomes["archived"] = self._run_step(
            "archival", lambda: self.archive_old_records(self._windows.archive_days)
        )
        try:
            result.report = self.generate_monthly_report()
        except Exception:
            self._logger.exception("Monthly activity report could not be generated")
            result.report_failed = True
        return self._finish(result, automated=True)

    def run_manual_cleanup(
        self,
        *,
        retention_days: int = 90,
        cleanup_type: CleanupType | str = CleanupType.ALL,
        dry_run: bool = False,
    ) -> RetentionRunResult:
        """Run the activity and/or failed-activity cleanup on demand.

        In dry-run mode only the number of records that would be deleted is
        reported; the store is not modified.
        """

        if retention_days <= 0:
            raise ValueError("retention_days must be positive")
        cleanup_type = CleanupType(cleanup_type)
        failed_days = self._windows.failed_retention_days
        if dry_run:
            self._logger.info("Running manual cleanup in dry-run mode")

        result = RetentionRunResult(
            policy=MANUAL_CLEANUP, started_at=self._clock(), dry_run=dry_run
        )
        if cleanup_type in (CleanupType.ALL, CleanupType.ACTIVITIES):
            if dry_run:
                step = partial(
                    self._count_candidates, self._activity_filters(retention_days), retention_days
                )
            else:
                step = partial(self.cleanup_activities, retention_days)
            result.outcomes["activities"] = self._run_step("manual activity cleanup", step)
        if cleanup_type in (CleanupType.ALL, CleanupType.FAILED):
            if dry_run:
                step = partial(
                    self._count_candidates, self._failed_filters(failed_days), failed_days
                )
            else:
                step = partial(self.cleanup_failed_activities, failed_days)
            result.outcomes["failed"] = self._run_step("manual failed cleanup", step)
        return self._finish(result, automated=False)

    # Policy steps -------------------------------------------------------

    def cleanup_activities(self, retention_days: int) -> PolicyOutcome:
        """Delete every record older than ``retention_days``."""

        filters = self._activity_filters(retention_days)
        outcome = self._outcome(filters, retention_days)
        for record in self._iter_candidates(filters):
            self._apply(outcome, record, lambda item: self._repository.delete(item.id))
        self._logger.info(
            "Cleaned up %s user activities older than %s days", outcome.affected, retention_days
        )
        return outcome

    def cleanup_failed_activities(self, retention_days: int) -> PolicyOutcome:
        filters = self._failed_filters(retention_days)
        outcome = self._outcome(filters, retention_days)
        for record in self._iter_candidates(filters):
            self._apply(outcome, record, lambda item: self._repository.delete(item.id))
        self._logger.info(
            "Cleaned up %s failed activities older than %s days", outcome.affected, retention_days
        )
        return outcome

    def process_expired_sessions(self, retention_days: int) -> PolicyOutcome:
        """Count login/logout records past the session window.

        Session bookkeeping lives outside the record store, so these records
        are reported as processed rather than deleted.
        """

        filters = {
            "activity_type": {"$in": [ActivityType.LOGIN, ActivityType.LOGOUT]},
            "created_at": {"$lt": self._cutoff(retention_days)},
        }
        outcome = self._outcome(filters, retention_days)
        outcome.affected = self._repository.count(filters).unwrap()
        self._logger.info("Processed %s expired session activities", outcome.affected)
        return outcome

    def anonymize_old_records(self, retention_days: int) -> PolicyOutcome:
        """Narrow network and client identifiers of records older than the window."""

        filters = {
            "created_at": {"$lt": self._cutoff(retention_days)},
            "ip_address": {"$notNull": True},
            "anonymized": False,
        }
        outcome = self._outcome(filters, retention_days)
        anonymized_at = self._clock()

        def anonymize(record: ActivityRecord) -> Result[Any]:
            return self._repository.update(
                record.id,
                {
                    "ip_address": anonymize_ip(record.ip_address),
                    "user_agent": anonymize_user_agent(record.user_agent),
                    "metadata": {"anonymized": True, "anonymized_at": anonymized_at},
                },
            )

        for record in self._iter_candidates(filters):
            self._apply(outcome, record, anonymize)
        self._logger.info(
            "Anonymized %s activities older than %s days", outcome.affected, retention_days
        )
        return outcome

    def remove_duplicates(self) -> PolicyOutcome:
        """Keep only the most recent record per ``(actor, type, minute)``."""

        outcome = PolicyOutcome()
        current_minute: int | None = None
        seen: set[tuple[str | None, str]] = set()

        # Records arrive newest first, so a minute's records are contiguous
        # and ``seen`` only needs to cover the minute being scanned.
        for batch in self._iter_newest_first():
            duplicates: list[int] = []
            for record in batch:
                key = dedupe_key(record)
                if key is None:
                    continue
                actor_ref, type_value, minute = key
                if minute != current_minute:
                    current_minute = minute
                    seen.clear()
                if (actor_ref, type_value) in seen:
                    duplicates.append(record.id)
                else:
                    seen.add((actor_ref, type_value))
            for record_id in duplicates:
                self._apply_by_id(outcome, record_id, self._repository.delete)
        self._logger.info("Removed %s duplicate activities", outcome.affected)
        return outcome

    def archive_old_records(self, retention_days: int) -> PolicyOutcome:
        """Hand records older than the window to the archive sink, then delete them."""

        filters = self._activity_filters(retention_days)
        outcome = self._outcome(filters, retention_days)
        if self._archive_sink is None:
            self._logger.warning("No archive sink configured; skipping archival")
            return outcome

        self._archive_sink.start_run()
        for batch in self._iter_candidate_batches(filters):
            try:
                self._archive_sink.write(batch)
            except Exception:
                self._logger.exception("Archive sink rejected a batch of %s records", len(batch))
                outcome.errors += len(batch)
                continue
            for record in batch:
                self._apply(outcome, record, lambda item: self._repository.delete(item.id))
        self._logger.info(
            "Archived %s activities older than %s days", outcome.affected, retention_days
        )
        return outcome

    def generate_monthly_report(self, reference: datetime | None = None) -> MonthlyReport:
        """Summarize the calendar month before ``reference``."""

        start, end = previous_month_bounds(reference or self._clock(), self._tz)
        report = MonthlyReport(
            start_date=start,
            end_date=end,
            activity_summary=self._aggregation.aggregate_by_type(start, end),
            login_analysis=self._aggregation.login_analysis(start=start, end=end),
            generated_at=self._clock(),
        )
        self._logger.info(
            "Monthly activity report generated for %s to %s: %s activities across %s types",
            f"{start.astimezone(self._tz):%Y-%m-%d}",
            f"{end.astimezone(self._tz):%Y-%m-%d}",
            report.activity_summary.total_activities,
            report.activity_summary.activity_types,
        )
        return report

    # Helpers ------------------------------------------------------------

    def _cutoff(self, retention_days: int) -> datetime:
        return self._clock() - timedelta(days=retention_days)

    def _activity_filters(self, retention_days: int) -> dict[str, Any]:
        return {"created_at": {"$lt": self._cutoff(retention_days)}}

    def _failed_filters(self, retention_days: int) -> dict[str, Any]:
        return {"success": False, "created_at": {"$lt": self._cutoff(retention_days)}}

    @staticmethod
    def _outcome(filters: Mapping[str, Any], retention_days: int) -> PolicyOutcome:
        created_at = filters.get("created_at") or {}
        return PolicyOutcome(retention_days=retention_days, cutoff=created_at.get("$lt"))

    def _count_candidates(self, filters: Mapping[str, Any], retention_days: int) -> PolicyOutcome:
        outcome = self._outcome(filters, retention_days)
        outcome.dry_run = True
        outcome.affected = self._repository.count(filters).unwrap()
        return outcome

    def _iter_candidate_batches(self, filters: Mapping[str, Any]) -> Iterator[list[ActivityRecord]]:
        """Walk matching records by ascending id.

        Paging on ``id`` keeps the walk stable while records are deleted and
        guarantees records that failed to process are not revisited.
        """

        last_id = 0
        while True:
            batch = self._repository.find_many(
                {**filters, "id": {"$gt": last_id}},
                sort=(("id", "asc"),),
                page_size=self._batch_size,
            ).unwrap()
            if not batch:
                return
            yield batch
            if len(batch) < self._batch_size:
                return
            last_id = batch[-1].id

    def _iter_newest_first(
        self, filters: Mapping[str, Any] | None = None
    ) -> Iterator[list[ActivityRecord]]:
        """Walk matching records newest first behind a ``(created_at, id)`` cursor."""

        cursor: tuple[datetime, int] | None = None
        while True:
            batch = self._repository.find_before(
                filters, before=cursor, page_size=self._batch_size
            ).unwrap()
            if not batch:
                return
            yield batch
            if len(batch) < self._batch_size:
                return
            last = batch[-1]
            cursor = (last.created_at, last.id)

    def _iter_candidates(self, filters: Mapping[str, Any]) -> Iterator[ActivityRecord]:
        for batch in self._iter_candidate_batches(filters):
            yield from batch

    def _apply(
        self,
        outcome: PolicyOutcome,
        record: ActivityRecord,
        operation: Callable[[ActivityRecord], Result[Any] | None],
    ) -> None:
        """Run ``operation`` on one record, counting rather than raising failures."""

        try:
            result = operation(record)
        except Exception:
            self._logger.debug("Retention operation failed for record %s", record.id, exc_info=True)
            outcome.errors += 1
            return
        if result is None:
            return
        if not result.ok:
            self._logger.debug("Retention operation failed for record %s: %s", record.id, result.error)
            outcome.errors += 1
            return
        if result.value is not False:
            outcome.affected += 1

    def _apply_by_id(
        self,
        outcome: PolicyOutcome,
        record_id: int,
        operation: Callable[[int], Result[Any]],
    ) -> None:
        try:
            result = operation(record_id)
        except Exception:
            self._logger.debug("Retention operation failed for record %s", record_id, exc_info=True)
            outcome.errors += 1
            return
        if not result.ok:
            self._logger.debug("Retention operation failed for record %s: %s", record_id, result.error)
            outcome.errors += 1
        elif result.value is not False:
            outcome.affected += 1

    def _run_step(self, label: str, step: Callable[[], PolicyOutcome]) -> PolicyOutcome:
        try:
            return step()
        except Exception:
            self._logger.exception("Retention step '%s' aborted", label)
            return PolicyOutcome(errors=1, aborted=True)

    def _finish(self, result: RetentionRunResult, *, automated: bool) -> RetentionRunResult:
        result.finished_at = self._clock()
        payload = result.to_dict()
        self._logger.info("Data retention run %s finished: %s", result.policy, payload)
        if self._audit_repository is not None:
            try:
                stored = self._audit_repository.create(
                    RetentionAuditEntry(
                        id=None,
                        policy=result.policy,
                        results=payload,
                        dry_run=result.dry_run,
                        automated=automated,
                        created_at=result.finished_at,
                    )
                )
            except Exception:
                self._logger.exception("Could not store retention audit entry for %s", result.policy)
            else:
                if not stored.ok:
                    self._logger.error(
                        "Could not store retention audit entry for %s: %s",
                        result.policy,
                        stored.error,
                    )
        return result


__all__ = [
    "DAILY_CLEANUP",
    "DEDUPE_WINDOW_SECONDS",
    "MANUAL_CLEANUP",
    "MONTHLY_ARCHIVAL",
    "WEEKLY_CLEANUP",
    "CleanupType",
    "DataRetentionService",
    "MonthlyReport",
    "PolicyOutcome",
    "RetentionRunResult",
    "RetentionWindows",
    "dedupe_key",
    "previous_month_bounds",
]

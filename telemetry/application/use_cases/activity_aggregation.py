"""Use cases for summarizing activity records by period, type, actor and logins."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Any

from telemetry.domain.entities import ActivityRecord, ActivityType
from telemetry.infrastructure.repositories import ActivityRecordRepository
from telemetry.utils import ensure_utc, parse_timestamp, utcnow

RECENT_ACTIVITY_LIMIT = 10


class AggregationPeriod(str, Enum):
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


@dataclass
class PeriodBucket:
    """Counts for one hour/day/week/month bucket."""

    count: int = 0
    success_count: int = 0
    failure_count: int = 0
    unique_user_count: int = 0
    success_rate: str = "0%"
    activity_types: dict[str, int] = field(default_factory=dict)


@dataclass
class PeriodSummary:
    period: AggregationPeriod
    start_date: datetime
    end_date: datetime
    total_activities: int
    skipped_records: int
    aggregated_data: dict[str, PeriodBucket]
    generated_at: datetime


@dataclass
class TypeBucket:
    count: int = 0
    success_count: int = 0
    failure_count: int = 0
    unique_user_count: int = 0
    success_rate: str = "0%"
    first_seen: datetime | None = None
    last_seen: datetime | None = None


@dataclass
class TypeSummary:
    start_date: datetime
    end_date: datetime
    total_activities: int
    activity_types: int
    aggregated_data: dict[str, TypeBucket]
    generated_at: datetime


@dataclass
class TypeCounts:
    count: int = 0
    success_count: int = 0
    failure_count: int = 0
    success_rate: str = "0%"


@dataclass
class SessionInfo:
    total_sessions: int = 0
    average_session_duration: int = 0
    total_session_time: int = 0


@dataclass
class RecentActivity:
    type: str
    timestamp: datetime | None
    success: bool
    session_id: str


@dataclass
class UserSummary:
    actor_ref: str
    period: str
    start_date: datetime
    end_date: datetime
    total_activities: int
    activity_types: dict[str, TypeCounts]
    session_info: SessionInfo
    recent_activities: list[RecentActivity]


@dataclass
class SecurityInsights:
    multiple_failed_attempts: bool
    unusual_ip_activity: bool
    peak_login_hour: int
    avg_logins_per_user: str


@dataclass
class LoginAnalysis:
    period: str
    start_date: datetime
    end_date: datetime
    total_attempts: int
    successful_logins: int
    failed_logins: int
    unique_user_count: int
    unique_ip_count: int
    success_rate: str
    device_types: dict[str, int]
    browsers: dict[str, int]
    locations: dict[str, int]
    hourly_distribution: list[int]
    daily_distribution: dict[str, int]
    security_insights: SecurityInsights


def format_success_rate(success_count: int, total: int) -> str:
    """Return ``success/total`` as a percentage string, ``"0%"`` when empty."""

    if total <= 0:
        return "0%"
    return f"{success_count / total * 100:.2f}%"


def _activity_type_value(record: ActivityRecord) -> str:
    value = record.activity_type
    return value.value if isinstance(value, Enum) else str(value)


def bucket_key(
    created_at: Any, period: AggregationPeriod | str, tz: tzinfo = timezone.utc
) -> str | None:
    """Return the bucket key of ``created_at`` or ``None`` if it is unusable.

    Keys: ``YYYY-MM-DD HH:00`` (hour), ``YYYY-MM-DD`` (day),
    ``YYYY-W{week of month}`` of the Sunday starting the week (week) and
    ``YYYY-MM`` (month).
    """

    moment = parse_timestamp(created_at)
    if moment is None:
        return None
    local = moment.astimezone(tz)
    period = AggregationPeriod(period)
    if period is AggregationPeriod.HOUR:
        return local.strftime("%Y-%m-%d %H:00")
    if period is AggregationPeriod.DAY:
        return local.strftime("%Y-%m-%d")
    if period is AggregationPeriod.WEEK:
        days_since_sunday = (local.weekday() + 1) % 7
        week_start = local.date() - timedelta(days=days_since_sunday)
        return f"{week_start.year}-W{(week_start.day + 6) // 7}"
    return local.strftime("%Y-%m")


def default_window_start(
    period: AggregationPeriod | str, end: datetime, tz: tzinfo = timezone.utc
) -> datetime:
    """Start of the default reporting window that ends at ``end``."""

    period = AggregationPeriod(period)
    if period is AggregationPeriod.HOUR:
        return end - timedelta(hours=24)
    if period is AggregationPeriod.DAY:
        return end - timedelta(days=30)
    if period is AggregationPeriod.WEEK:
        return end - timedelta(weeks=12)
    local = end.astimezone(tz)
    month_index = local.year * 12 + (local.month - 1) - 12
    start = datetime(month_index // 12, month_index % 12 + 1, 1, tzinfo=tz)
    return start.astimezone(timezone.utc)


class _PeriodAccumulator:
    def __init__(self) -> None:
        self.count = 0
        self.success_count = 0
        self.failure_count = 0
        self.actors: set[str] = set()
        self.types: Counter[str] = Counter()

    def add(self, record: ActivityRecord) -> None:
        self.count += 1
        if record.success:
            self.success_count += 1
        else:
            self.failure_count += 1
        if record.actor_ref:
            self.actors.add(record.actor_ref)
        self.types[_activity_type_value(record)] += 1

    def finish(self) -> PeriodBucket:
        return PeriodBucket(
            count=self.count,
            success_count=self.success_count,
            failure_count=self.failure_count,
            unique_user_count=len(self.actors),
            success_rate=format_success_rate(self.success_count, self.count),
            activity_types=dict(self.types),
        )


class _TypeAccumulator:
    def __init__(self) -> None:
        self.count = 0
        self.success_count = 0
        self.failure_count = 0
        self.actors: set[str] = set()
        self.first_seen: datetime | None = None
        self.last_seen: datetime | None = None

    def add(self, record: ActivityRecord) -> None:
        self.count += 1
        if record.success:
            self.success_count += 1
        else:
            self.failure_count += 1
        if record.actor_ref:
            self.actors.add(record.actor_ref)
        moment = parse_timestamp(record.created_at)
        if moment is None:
            return
        if self.first_seen is None or moment < self.first_seen:
            self.first_seen = moment
        if self.last_seen is None or moment > self.last_seen:
            self.last_seen = moment

    def finish(self) -> TypeBucket:
        return TypeBucket(
            count=self.count,
            success_count=self.success_count,
            failure_count=self.failure_count,
            unique_user_count=len(self.actors),
            success_rate=format_success_rate(self.success_count, self.count),
            first_seen=self.first_seen,
            last_seen=self.last_seen,
        )


def group_by_period(
    records: Iterable[ActivityRecord],
    period: AggregationPeriod | str,
    tz: tzinfo = timezone.utc,
) -> tuple[dict[str, PeriodBucket], int, int]:
    """Bucket ``records`` by period.

    Returns ``(buckets, total_records, skipped_records)`` where skipped
    records are those whose ``created_at`` could not be interpreted.
    """

    period = AggregationPeriod(period)
    accumulators: dict[str, _PeriodAccumulator] = {}
    total = 0
    skipped = 0
    for record in records:
        total += 1
        key = bucket_key(record.created_at, period, tz)
        if key is None:
            skipped += 1
            continue
        accumulators.setdefault(key, _PeriodAccumulator()).add(record)
    return {key: acc.finish() for key, acc in accumulators.items()}, total, skipped


def group_by_type(records: Iterable[ActivityRecord]) -> tuple[dict[str, TypeBucket], int]:
    accumulators: dict[str, _TypeAccumulator] = {}
    total = 0
    for record in records:
        total += 1
        accumulators.setdefault(_activity_type_value(record), _TypeAccumulator()).add(record)
    return {key: acc.finish() for key, acc in accumulators.items()}, total


def summarize_logins(
    records: Iterable[ActivityRecord], tz: tzinfo = timezone.utc
) -> dict[str, Any]:
    """Accumulate login statistics; identity sets are reduced to cardinalities."""

    successful = failed = total = 0
    actors: set[str] = set()
    addresses: set[str] = set()
    device_types: Counter[str] = Counter()
    browsers: Counter[str] = Counter()
    locations: Counter[str] = Counter()
    hourly = [0] * 24
    daily: Counter[str] = Counter()

    for record in records:
        total += 1
        if record.success:
            successful += 1
        else:
            failed += 1
        if record.actor_ref:
            actors.add(record.actor_ref)
        if record.ip_address:
            addresses.add(record.ip_address)
        if record.device_info is not None:
            device_types["Mobile" if record.device_info.mobile else "Desktop"] += 1
            if record.device_info.browser:
                browsers[record.device_info.browser] += 1
        if record.location:
            locations[record.location] += 1
        moment = parse_timestamp(record.created_at)
        if moment is not None:
            local = moment.astimezone(tz)
            hourly[local.hour] += 1
            daily[local.strftime("%Y-%m-%d")] += 1

    unique_users = len(actors)
    unique_ips = len(addresses)
    return {
        "total_attempts": total,
        "successful_logins": successful,
        "failed_logins": failed,
        "unique_user_count": unique_users,
        "unique_ip_count": unique_ips,
        "success_rate": format_success_rate(successful, total),
        "device_types": dict(device_types),
        "browsers": dict(browsers),
        "locations": dict(locations),
        "hourly_distribution": hourly,
        "daily_distribution": dict(sorted(daily.items())),
        "security_insights": SecurityInsights(
            multiple_failed_attempts=failed > unique_users * 2,
            unusual_ip_activity=unique_ips > unique_users * 1.5,
            peak_login_hour=hourly.index(max(hourly)),
            avg_logins_per_user=(
                f"{total / unique_users:.2f}" if unique_users > 0 else "0"
            ),
        ),
    }


class ActivityAggregationService:
    """Read-only, paginated reporting over the activity record store.

    Store failures surface as :class:`~telemetry.domain.result.ActivityStoreError`
    and invalid arguments as :class:`ValueError`; callers are reporting
    flows that handle them explicitly.
    """

    def __init__(
        self,
        repository: ActivityRecordRepository,
        *,
        tz: tzinfo = timezone.utc,
        page_size: int = 500,
        clock: Callable[[], datetime] = utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        self._repository = repository
        self._tz = tz
        self._page_size = page_size
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

    def aggregate_by_period(
        self,
        period: AggregationPeriod | str = AggregationPeriod.DAY,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> PeriodSummary:
        period = self._parse_period(period)
        end_date = ensure_utc(end) or self._clock()
        start_date = ensure_utc(start) or default_window_start(period, end_date, self._tz)
        self._validate_window(start_date, end_date)

        buckets, total, skipped = group_by_period(
            self._iter_records(start_date, end_date), period, self._tz
        )
        if skipped:
            self._logger.warning(
                "Skipped %s activity records with unusable timestamps", skipped
            )
        return PeriodSummary(
            period=period,
            start_date=start_date,
            end_date=end_date,
            total_activities=total,
            skipped_records=skipped,
            aggregated_data=dict(sorted(buckets.items())),
            generated_at=self._clock(),
        )

    def aggregate_by_type(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> TypeSummary:
        end_date = ensure_utc(end) or self._clock()
        start_date = ensure_utc(start) or end_date - timedelta(days=30)
        self._validate_window(start_date, end_date)

        buckets, total = group_by_type(self._iter_records(start_date, end_date))
        return TypeSummary(
            start_date=start_date,
            end_date=end_date,
            total_activities=total,
            activity_types=len(buckets),
            aggregated_data=buckets,
            generated_at=self._clock(),
        )

    def user_summary(self, actor_ref: str, window_days: int = 30) -> UserSummary:
        """Summarize what ``actor_ref`` did during the last ``window_days`` days."""

        if window_days <= 0:
            raise ValueError("window_days must be positive")
        end_date = self._clock()
        start_date = end_date - timedelta(days=window_days)

        type_counts: dict[str, TypeCounts] = {}
        sessions: set[str] = set()
        durations_total = 0
        durations_seen = 0
        recent: list[RecentActivity] = []
        total = 0

        for record in self._iter_records(start_date, end_date, actor_ref=actor_ref):
            total += 1
            counts = type_counts.setdefault(_activity_type_value(record), TypeCounts())
            counts.count += 1
            if record.success:
                counts.success_count += 1
            else:
                counts.failure_count += 1
            if record.session_id:
                sessions.add(record.session_id)
            if record.session_duration and record.session_duration > 0:
                durations_total += record.session_duration
                durations_seen += 1
            if len(recent) < RECENT_ACTIVITY_LIMIT:
                recent.append(
                    RecentActivity(
                        type=_activity_type_value(record),
                        timestamp=record.created_at,
                        success=record.success,
                        session_id=record.session_id,
                    )
                )

        for counts in type_counts.values():
            counts.success_rate = format_success_rate(counts.success_count, counts.count)

        return UserSummary(
            actor_ref=actor_ref,
            period=f"{window_days} days",
            start_date=start_date,
            end_date=end_date,
            total_activities=total,
            activity_types=type_counts,
            session_info=SessionInfo(
                total_sessions=len(sessions),
                average_session_duration=(
                    round(durations_total / durations_seen) if durations_seen else 0
                ),
                total_session_time=durations_total,
            ),
            recent_activities=recent,
        )

    def login_analysis(
        self,
        window_days: int = 30,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> LoginAnalysis:
        """Analyse login attempts in the last ``window_days`` days or ``[start, end]``."""

        if window_days <= 0:
            raise ValueError("window_days must be positive")
        end_date = ensure_utc(end) or self._clock()
        start_date = ensure_utc(start) or end_date - timedelta(days=window_days)
        self._validate_window(start_date, end_date)
        if start is None and end is None:
            label = f"{window_days} days"
        else:
            label = f"{start_date:%Y-%m-%d} to {end_date:%Y-%m-%d}"

        stats = summarize_logins(
            self._iter_records(start_date, end_date, activity_type=ActivityType.LOGIN),
            self._tz,
        )
        return LoginAnalysis(period=label, start_date=start_date, end_date=end_date, **stats)

    def _iter_records(
        self,
        start: datetime,
        end: datetime,
        *,
        actor_ref: str | None = None,
        activity_type: ActivityType | None = None,
    ) -> Iterator[ActivityRecord]:
        filters: dict[str, Any] = {"created_at": {"$gte": start, "$lte": end}}
        if actor_ref is not None:
            filters["actor_ref"] = actor_ref
        if activity_type is not None:
            filters["activity_type"] = activity_type
        for page in self._repository.iter_pages(
            filters, sort=(("created_at", "desc"),), page_size=self._page_size
        ):
            yield from page

    @staticmethod
    def _parse_period(period: AggregationPeriod | str) -> AggregationPeriod:
        try:
            return AggregationPeriod(period)
        except ValueError as exc:
            raise ValueError(
                f"Unsupported period '{period}'; expected hour, day, week or month"
            ) from exc

    @staticmethod
    def _validate_window(start: datetime, end: datetime) -> None:
        if start > end:
            raise ValueError("start must not be after end")


__all__ = [
    "ActivityAggregationService",
    "AggregationPeriod",
    "LoginAnalysis",
    "PeriodBucket",
    "PeriodSummary",
    "RecentActivity",
    "SecurityInsights",
    "SessionInfo",
    "TypeBucket",
    "TypeCounts",
    "TypeSummary",
    "UserSummary",
    "bucket_key",
    "default_window_start",
    "format_success_rate",
    "group_by_period",
    "group_by_type",
    "summarize_logins",
]

"""Schemas for the activity analytics endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from telemetry.application.use_cases.activity_aggregation import AggregationPeriod


class _ReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class PeriodBucketRead(_ReadModel):
    count: int
    success_count: int
    failure_count: int
    unique_user_count: int
    success_rate: str
    activity_types: dict[str, int]


class PeriodSummaryRead(_ReadModel):
    period: AggregationPeriod
    start_date: datetime
    end_date: datetime
    total_activities: int
    skipped_records: int
    aggregated_data: dict[str, PeriodBucketRead]
    generated_at: datetime


class TypeBucketRead(_ReadModel):
    count: int
    success_count: int
    failure_count: int
    unique_user_count: int
    success_rate: str
    first_seen: datetime | None
    last_seen: datetime | None


class TypeSummaryRead(_ReadModel):
    start_date: datetime
    end_date: datetime
    total_activities: int
    activity_types: int
    aggregated_data: dict[str, TypeBucketRead]
    generated_at: datetime


class TypeCountsRead(_ReadModel):
    count: int
    success_count: int
    failure_count: int
    success_rate: str


class SessionInfoRead(_ReadModel):
    total_sessions: int
    average_session_duration: int
    total_session_time: int


class RecentActivityRead(_ReadModel):
    type: str
    timestamp: datetime | None
    success: bool
    session_id: str


class UserSummaryRead(_ReadModel):
    actor_ref: str
    period: str
    start_date: datetime
    end_date: datetime
    total_activities: int
    activity_types: dict[str, TypeCountsRead]
    session_info: SessionInfoRead
    recent_activities: list[RecentActivityRead]


class SecurityInsightsRead(_ReadModel):
    multiple_failed_attempts: bool
    unusual_ip_activity: bool
    peak_login_hour: int
    avg_logins_per_user: str


class LoginAnalysisRead(_ReadModel):
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
    security_insights: SecurityInsightsRead


__all__ = [
    "LoginAnalysisRead",
    "PeriodBucketRead",
    "PeriodSummaryRead",
    "RecentActivityRead",
    "SecurityInsightsRead",
    "SessionInfoRead",
    "TypeBucketRead",
    "TypeCountsRead",
    "TypeSummaryRead",
    "UserSummaryRead",
]

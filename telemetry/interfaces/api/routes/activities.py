"""Routes for browsing stored activity records."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from telemetry.application.use_cases import ActivityAggregationService
from telemetry.domain.entities import ActivityType
from telemetry.infrastructure.repositories import ActivityRecordRepository
from telemetry.infrastructure.security import Actor
from telemetry.interfaces.api.dependencies import (
    get_activity_repository,
    get_aggregation_service,
    require_admin,
)
from telemetry.interfaces.api.routes_helpers import translate_service_errors
from telemetry.interfaces.api.schemas import (
    ActivityRecordPage,
    ActivityRecordRead,
    UserSummaryRead,
)

router = APIRouter(prefix="/api/user-activities", tags=["user_activities"])


@router.get("", response_model=ActivityRecordPage)
def list_activities(
    activity_type: ActivityType | None = None,
    actor_ref: str | None = None,
    success: bool | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    repository: ActivityRecordRepository = Depends(get_activity_repository),
    _: Actor = Depends(require_admin),
) -> ActivityRecordPage:
    """Return activity records, newest first."""

    filters: dict[str, Any] = {}
    if activity_type is not None:
        filters["activity_type"] = activity_type
    if actor_ref is not None:
        filters["actor_ref"] = actor_ref
    if success is not None:
        filters["success"] = success

    with translate_service_errors():
        records = repository.find_many(filters, page=page, page_size=page_size).unwrap()
        total = repository.count(filters).unwrap()
    return ActivityRecordPage(
        items=[ActivityRecordRead.model_validate(record) for record in records],
        page=page,
        page_size=page_size,
        total=total,
    )


@router.get("/users/{actor_ref}/summary", response_model=UserSummaryRead)
def read_user_summary(
    actor_ref: str,
    days: int = Query(30, ge=1, le=3650),
    service: ActivityAggregationService = Depends(get_aggregation_service),
    _: Actor = Depends(require_admin),
) -> UserSummaryRead:
    """Summarize what ``actor_ref`` did during the last ``days`` days."""

    with translate_service_errors():
        summary = service.user_summary(actor_ref, window_days=days)
    return UserSummaryRead.model_validate(summary)


__all__ = ["router"]

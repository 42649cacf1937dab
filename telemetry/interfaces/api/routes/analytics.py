"""Aggregated reporting over activity records."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from telemetry.application.use_cases import ActivityAggregationService, AggregationPeriod
from telemetry.infrastructure.security import Actor
from telemetry.interfaces.api.dependencies import get_aggregation_service, require_admin
from telemetry.interfaces.api.routes_helpers import translate_service_errors
from telemetry.interfaces.api.schemas import (
    LoginAnalysisRead,
    PeriodSummaryRead,
    TypeSummaryRead,
)

router = APIRouter(prefix="/api/user-activities/analytics", tags=["analytics"])


@router.get("/periods", response_model=PeriodSummaryRead)
def read_period_summary(
    period: AggregationPeriod = AggregationPeriod.DAY,
    start: datetime | None = None,
    end: datetime | None = None,
    service: ActivityAggregationService = Depends(get_aggregation_service),
    _: Actor = Depends(require_admin),
) -> PeriodSummaryRead:
    with translate_service_errors():
        summary = service.aggregate_by_period(period, start, end)
    return PeriodSummaryRead.model_validate(summary)


@router.get("/types", response_model=TypeSummaryRead)
def read_type_summary(
    start: datetime | None = None,
    end: datetime | None = None,
    service: ActivityAggregationService = Depends(get_aggregation_service),
    _: Actor = Depends(require_admin),
) -> TypeSummaryRead:
    with translate_service_errors():
        summary = service.aggregate_by_type(start, end)
    return TypeSummaryRead.model_validate(summary)


@router.get("/logins", response_model=LoginAnalysisRead)
def read_login_analysis(
    days: int = Query(30, ge=1, le=3650, description="Size of the analysed window in days"),
    service: ActivityAggregationService = Depends(get_aggregation_service),
    _: Actor = Depends(require_admin),
) -> LoginAnalysisRead:
    """Return login statistics and security heuristics for the last ``days`` days."""

    with translate_service_errors():
        analysis = service.login_analysis(days)
    return LoginAnalysisRead.model_validate(analysis)


__all__ = ["router"]

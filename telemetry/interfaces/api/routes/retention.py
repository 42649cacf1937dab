"""Routes for triggering and inspecting retention policies."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from telemetry.application.use_cases import DataRetentionService, RetentionScheduler
from telemetry.infrastructure.repositories import RetentionAuditRepository
from telemetry.infrastructure.security import Actor
from telemetry.interfaces.api.dependencies import (
    get_audit_repository,
    get_retention_service,
    get_scheduler,
    require_admin,
)
from telemetry.interfaces.api.routes_helpers import translate_service_errors
from telemetry.interfaces.api.schemas import (
    ManualCleanupRequest,
    RetentionAuditRead,
    ScheduledTaskRead,
)

router = APIRouter(prefix="/api/user-activities/retention", tags=["retention"])


@router.post("/cleanup")
def run_manual_cleanup(
    payload: ManualCleanupRequest,
    service: DataRetentionService = Depends(get_retention_service),
    _: Actor = Depends(require_admin),
) -> dict[str, Any]:
    """Run the activity cleanup now, optionally as a dry run."""

    with translate_service_errors():
        result = service.run_manual_cleanup(
            retention_days=payload.retention_days,
            cleanup_type=payload.cleanup_type,
            dry_run=payload.dry_run,
        )
    return result.to_dict()


@router.get("/audit", response_model=list[RetentionAuditRead])
def list_retention_audit(
    policy: str | None = None,
    limit: int = Query(50, ge=1, le=500),
    repository: RetentionAuditRepository = Depends(get_audit_repository),
    _: Actor = Depends(require_admin),
) -> list[RetentionAuditRead]:
    with translate_service_errors():
        entries = repository.list(policy=policy, limit=limit).unwrap()
    return [RetentionAuditRead.model_validate(entry) for entry in entries]


@router.get("/tasks", response_model=list[ScheduledTaskRead])
def list_scheduled_tasks(
    scheduler: RetentionScheduler = Depends(get_scheduler),
    _: Actor = Depends(require_admin),
) -> list[ScheduledTaskRead]:
    return [ScheduledTaskRead.model_validate(task) for task in scheduler.tasks]


__all__ = ["router"]

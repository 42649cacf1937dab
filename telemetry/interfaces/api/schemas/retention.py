"""Schemas for retention endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from telemetry.application.use_cases.data_retention import CleanupType


class ManualCleanupRequest(BaseModel):
    retention_days: int = Field(90, gt=0, description="Age in days past which records are removed")
    cleanup_type: CleanupType = Field(CleanupType.ALL, description="Which records to clean up")
    dry_run: bool = Field(False, description="Only report how many records would be affected")


class RetentionAuditRead(BaseModel):
    id: int
    policy: str
    results: dict[str, Any]
    dry_run: bool
    automated: bool
    created_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class ScheduledTaskRead(BaseModel):
    name: str
    running: bool
    last_run: datetime | None
    next_run: datetime | None

    model_config = ConfigDict(from_attributes=True)


__all__ = ["ManualCleanupRequest", "RetentionAuditRead", "ScheduledTaskRead"]

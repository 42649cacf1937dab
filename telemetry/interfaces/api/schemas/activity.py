"""Pydantic schemas for activity record endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from telemetry.domain.entities import ActivityType


class DeviceInfoRead(BaseModel):
    browser: str | None = None
    os: str | None = None
    device: str | None = None
    mobile: bool = False

    model_config = ConfigDict(from_attributes=True)


class ActivityRecordRead(BaseModel):
    """Representation of a stored activity record returned by the API."""

    id: int
    actor_ref: str | None
    activity_type: ActivityType
    activity_data: dict[str, Any] = Field(default_factory=dict)
    session_id: str
    success: bool
    created_at: datetime | None
    ip_address: str | None = None
    user_agent: str | None = None
    location: str | None = None
    device_info: DeviceInfoRead | None = None
    session_duration: int | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)


class ActivityRecordPage(BaseModel):
    items: list[ActivityRecordRead]
    page: int
    page_size: int
    total: int


__all__ = ["ActivityRecordPage", "ActivityRecordRead", "DeviceInfoRead"]

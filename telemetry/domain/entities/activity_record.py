"""Domain entity describing one observed user action."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ActivityType(str, Enum):
    """Kinds of activity the recorder can classify a request as."""

    LOGIN = "login"
    LOGOUT = "logout"
    PROFILE_UPDATE = "profile_update"
    PREFERENCE_CHANGE = "preference_change"
    PAGE_VIEW = "page_view"
    PRODUCT_INTERACTION = "product_interaction"
    ACCOUNT_CREATED = "account_created"
    PASSWORD_CHANGE = "password_change"
    SESSION_EXPIRED = "session_expired"


@dataclass
class DeviceInfo:
    """Structured attributes parsed from a client signature."""

    browser: str | None = None
    os: str | None = None
    device: str | None = None
    mobile: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "DeviceInfo | None":
        if not data:
            return None
        return cls(
            browser=data.get("browser"),
            os=data.get("os"),
            device=data.get("device"),
            mobile=bool(data.get("mobile", False)),
        )


@dataclass
class ActivityRecord:
    """Persisted observation of a user- or system-triggered action.

    ``created_at``, ``activity_type`` and ``activity_data`` never change once
    the record is stored. Only the anonymization policy may rewrite
    ``ip_address``, ``user_agent`` and extend ``metadata``.
    """

    id: int | None
    actor_ref: str | None
    activity_type: ActivityType
    activity_data: dict[str, Any]
    session_id: str
    success: bool
    created_at: datetime | None
    ip_address: str | None = None
    user_agent: str | None = None
    location: str | None = None
    device_info: DeviceInfo | None = None
    session_duration: int | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


__all__ = ["ActivityRecord", "ActivityType", "DeviceInfo"]

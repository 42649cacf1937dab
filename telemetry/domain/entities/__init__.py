"""Domain entities exposed by the application."""

from .activity_record import ActivityRecord, ActivityType, DeviceInfo
from .request_context import RequestContext
from .retention_audit import RetentionAuditEntry

__all__ = [
    "ActivityRecord",
    "ActivityType",
    "DeviceInfo",
    "RequestContext",
    "RetentionAuditEntry",
]

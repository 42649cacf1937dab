"""ORM models used by the application infrastructure."""

from .activity_record import ActivityRecordModel
from .retention_audit import RetentionAuditModel

__all__ = [
    "ActivityRecordModel",
    "RetentionAuditModel",
]

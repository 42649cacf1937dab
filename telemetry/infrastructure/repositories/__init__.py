"""Repository implementations for infrastructure layer."""

from .activity_record_repository import ActivityRecordRepository, InvalidFilterError
from .retention_audit_repository import RetentionAuditRepository

__all__ = [
    "ActivityRecordRepository",
    "InvalidFilterError",
    "RetentionAuditRepository",
]

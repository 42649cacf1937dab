"""SQLAlchemy model for audit records of retention policy runs."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import JSON

from telemetry.infrastructure.database import Base

_audit_json_type = JSONB().with_variant(JSON(), "sqlite")


class RetentionAuditModel(Base):
    """Database representation of retention audit events."""

    __tablename__ = "retention_audit_log"

    id = Column(Integer, primary_key=True, index=True)
    policy = Column(String(63), nullable=False, index=True)
    results = Column(_audit_json_type, nullable=False)
    dry_run = Column(Boolean, nullable=False, default=False)
    automated = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False)


__all__ = ["RetentionAuditModel"]

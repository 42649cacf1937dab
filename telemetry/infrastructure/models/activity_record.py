"""SQLAlchemy model for persisted user activity records."""

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import JSON

from telemetry.infrastructure.database import Base

_activity_json_type = JSONB().with_variant(JSON(), "sqlite")


class ActivityRecordModel(Base):
    """Database representation of an :class:`ActivityRecord`."""

    __tablename__ = "user_activities"
    __table_args__ = (
        Index("ix_user_activities_type_created", "activity_type", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    actor_ref = Column(String(255), nullable=True, index=True)
    activity_type = Column(String(50), nullable=False)
    activity_data = Column(_activity_json_type, nullable=False, default=dict)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)
    device_info = Column(_activity_json_type, nullable=True)
    session_id = Column(String(64), nullable=False, index=True)
    session_duration = Column(Integer, nullable=True)
    success = Column(Boolean, nullable=False, default=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, index=True)
    # ``metadata`` is reserved on declarative classes.
    extra_metadata = Column("metadata", _activity_json_type, nullable=False, default=dict)
    # Mirrors ``metadata.anonymized`` so anonymization can filter in the store.
    anonymized = Column(Boolean, nullable=False, default=False, index=True)


__all__ = ["ActivityRecordModel"]

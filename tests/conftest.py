"""Shared fixtures: every test gets its own SQLite database under ``tmp_path``."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from telemetry.config import Settings
from telemetry.domain.entities import ActivityRecord, ActivityType
from telemetry.infrastructure.database import (
    build_engine,
    build_session_factory,
    initialize_database,
)
from telemetry.infrastructure.repositories import (
    ActivityRecordRepository,
    RetentionAuditRepository,
)
from telemetry.infrastructure.security import create_access_token

SECRET_KEY = "test-secret-key"
DEFAULT_CREATED_AT = datetime(2023, 1, 15, 10, 0, tzinfo=timezone.utc)
_UNSET: Any = object()


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'telemetry.db'}",
        secret_key=SECRET_KEY,
        archive_directory=str(tmp_path / "archive"),
        scheduler_enabled=False,
        location_table={"203.0.113.0/24": "Madrid, ES"},
    )


@pytest.fixture
def engine(settings: Settings):
    engine = build_engine(settings)
    initialize_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def repository(session_factory) -> ActivityRecordRepository:
    return ActivityRecordRepository(session_factory)


@pytest.fixture
def audit_repository(session_factory) -> RetentionAuditRepository:
    return RetentionAuditRepository(session_factory)


def make_record(
    *,
    created_at: datetime | None = _UNSET,
    activity_type: ActivityType = ActivityType.LOGIN,
    actor_ref: str | None = "user-1",
    success: bool = True,
    **overrides: Any,
) -> ActivityRecord:
    values: dict[str, Any] = {
        "id": None,
        "actor_ref": actor_ref,
        "activity_type": activity_type,
        "activity_data": {"url": "/api/auth/local", "method": "POST"},
        "session_id": "session-1",
        "success": success,
        "created_at": DEFAULT_CREATED_AT if created_at is _UNSET else created_at,
        "ip_address": "192.168.1.100",
        "user_agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0.6099.109",
    }
    values.update(overrides)
    return ActivityRecord(**values)


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def admin_headers() -> dict[str, str]:
    token = create_access_token({"sub": "admin-1", "role": "admin"}, SECRET_KEY)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer_headers() -> dict[str, str]:
    token = create_access_token({"sub": "customer-9", "role": "customer"}, SECRET_KEY)
    return {"Authorization": f"Bearer {token}"}

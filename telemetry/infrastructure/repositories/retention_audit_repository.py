"""Persistence layer for retention audit records."""

from __future__ import annotations

from collections.abc import Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from telemetry.domain.entities import RetentionAuditEntry
from telemetry.domain.result import Result, StoreErrorKind
from telemetry.infrastructure.models import RetentionAuditModel
from telemetry.utils import from_storage_datetime, to_storage_datetime, utcnow


class RetentionAuditRepository:
    """Provide create/list helpers for :class:`RetentionAuditEntry` entries."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def create(self, entry: RetentionAuditEntry) -> Result[RetentionAuditEntry]:
        try:
            with self._session_factory() as session:
                model = RetentionAuditModel(
                    policy=entry.policy,
                    results=entry.results,
                    dry_run=entry.dry_run,
                    automated=entry.automated,
                    created_at=to_storage_datetime(entry.created_at or utcnow()),
                )
                session.add(model)
                session.commit()
                session.refresh(model)
                return Result.success(self._to_entity(model))
        except SQLAlchemyError as exc:
            return Result.failure(StoreErrorKind.UNAVAILABLE, str(exc))

    def list(
        self, *, policy: str | None = None, limit: int = 50
    ) -> Result[list[RetentionAuditEntry]]:
        """Return the most recent audit entries, optionally for one policy."""

        statement = select(RetentionAuditModel)
        if policy is not None:
            statement = statement.where(RetentionAuditModel.policy == policy)
        statement = statement.order_by(
            RetentionAuditModel.created_at.desc(), RetentionAuditModel.id.desc()
        ).limit(limit)
        try:
            with self._session_factory() as session:
                models = session.scalars(statement).all()
                return Result.success([self._to_entity(model) for model in models])
        except SQLAlchemyError as exc:
            return Result.failure(StoreErrorKind.UNAVAILABLE, str(exc))

    @staticmethod
    def _to_entity(model: RetentionAuditModel) -> RetentionAuditEntry:
        return RetentionAuditEntry(
            id=model.id,
            policy=model.policy,
            results=dict(model.results or {}),
            dry_run=bool(model.dry_run),
            automated=bool(model.automated),
            created_at=from_storage_datetime(model.created_at),
        )


__all__ = ["RetentionAuditRepository"]

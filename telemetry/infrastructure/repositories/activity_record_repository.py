"""Persistence layer for activity records."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping, Sequence
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from telemetry.domain.entities import ActivityRecord, ActivityType, DeviceInfo
from telemetry.domain.result import Result, StoreErrorKind
from telemetry.infrastructure.models import ActivityRecordModel
from telemetry.utils import from_storage_datetime, to_storage_datetime, utcnow
from telemetry.utils.serialization import to_jsonable

logger = logging.getLogger(__name__)

Filters = Mapping[str, Any]
SortSpec = Sequence[tuple[str, str]]

DEFAULT_SORT: tuple[tuple[str, str], ...] = (("created_at", "desc"),)
ANONYMIZABLE_FIELDS = frozenset({"ip_address", "user_agent", "metadata"})

_FILTERABLE_COLUMNS = {
    "id": ActivityRecordModel.id,
    "actor_ref": ActivityRecordModel.actor_ref,
    "activity_type": ActivityRecordModel.activity_type,
    "ip_address": ActivityRecordModel.ip_address,
    "user_agent": ActivityRecordModel.user_agent,
    "location": ActivityRecordModel.location,
    "session_id": ActivityRecordModel.session_id,
    "session_duration": ActivityRecordModel.session_duration,
    "success": ActivityRecordModel.success,
    "anonymized": ActivityRecordModel.anonymized,
    "error_message": ActivityRecordModel.error_message,
    "created_at": ActivityRecordModel.created_at,
}


class InvalidFilterError(ValueError):
    """Raised while translating a filter the store does not understand."""


def _normalize_operand(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return to_storage_datetime(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_normalize_operand(item) for item in value]
    return value


def _build_condition(column: Any, operator: str, operand: Any) -> Any:
    operand = _normalize_operand(operand)
    if operator == "$eq":
        return column.is_(None) if operand is None else column == operand
    if operator == "$ne":
        return column.isnot(None) if operand is None else column != operand
    if operator == "$in":
        if not isinstance(operand, list):
            raise InvalidFilterError("$in expects a sequence of values")
        return column.in_(operand)
    if operator == "$lt":
        return column < operand
    if operator == "$lte":
        return column <= operand
    if operator == "$gt":
        return column > operand
    if operator == "$gte":
        return column >= operand
    if operator == "$notNull":
        return column.isnot(None) if operand else column.is_(None)
    raise InvalidFilterError(f"Unsupported filter operator '{operator}'")


def build_conditions(filters: Filters | None) -> list[Any]:
    """Translate a store filter mapping into SQLAlchemy expressions."""

    conditions: list[Any] = []
    for field_name, predicate in (filters or {}).items():
        column = _FILTERABLE_COLUMNS.get(field_name)
        if column is None:
            raise InvalidFilterError(f"Unknown filter field '{field_name}'")
        if isinstance(predicate, Mapping):
            for operator, operand in predicate.items():
                conditions.append(_build_condition(column, operator, operand))
        else:
            conditions.append(_build_condition(column, "$eq", predicate))
    return conditions


def _build_order_by(sort: SortSpec | None) -> list[Any]:
    clauses: list[Any] = []
    descending_tiebreak = True
    for field_name, direction in sort or DEFAULT_SORT:
        column = _FILTERABLE_COLUMNS.get(field_name)
        if column is None:
            raise InvalidFilterError(f"Unknown sort field '{field_name}'")
        normalized = direction.lower()
        if normalized not in {"asc", "desc"}:
            raise InvalidFilterError(f"Unknown sort direction '{direction}'")
        clauses.append(column.desc() if normalized == "desc" else column.asc())
        descending_tiebreak = normalized == "desc"
    if not any(name == "id" for name, _ in sort or DEFAULT_SORT):
        id_column = ActivityRecordModel.id
        clauses.append(id_column.desc() if descending_tiebreak else id_column.asc())
    return clauses


class ActivityRecordRepository:
    """Record store for :class:`ActivityRecord` entries.

    Every operation opens its own short-lived session and reports failures
    through :class:`Result` instead of raising.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def create(self, record: ActivityRecord) -> Result[ActivityRecord]:
        try:
            with self._session_factory() as session:
                model = ActivityRecordModel()
                self._apply_entity_to_model(model, record)
                session.add(model)
                session.commit()
                session.refresh(model)
                return Result.success(self._to_entity(model))
        except SQLAlchemyError as exc:
            logger.debug("Activity record insert failed: %s", exc)
            return Result.failure(StoreErrorKind.UNAVAILABLE, str(exc))

    def get(self, record_id: int) -> Result[ActivityRecord | None]:
        try:
            with self._session_factory() as session:
                model = session.get(ActivityRecordModel, record_id)
                return Result.success(None if model is None else self._to_entity(model))
        except SQLAlchemyError as exc:
            return Result.failure(StoreErrorKind.UNAVAILABLE, str(exc))

    def find_many(
        self,
        filters: Filters | None = None,
        *,
        sort: SortSpec | None = None,
        page: int = 1,
        page_size: int = 100,
    ) -> Result[list[ActivityRecord]]:
        """Return one page of records matching ``filters``."""

        if page < 1 or page_size < 1:
            return Result.failure(
                StoreErrorKind.INVALID_FILTER, "page and page_size must be positive"
            )
        try:
            statement = (
                select(ActivityRecordModel)
                .where(*build_conditions(filters))
                .order_by(*_build_order_by(sort))
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            with self._session_factory() as session:
                models = session.scalars(statement).all()
                return Result.success([self._to_entity(model) for model in models])
        except InvalidFilterError as exc:
            return Result.failure(StoreErrorKind.INVALID_FILTER, str(exc))
        except SQLAlchemyError as exc:
            logger.debug("Activity record query failed: %s", exc)
            return Result.failure(StoreErrorKind.UNAVAILABLE, str(exc))

    def iter_pages(
        self,
        filters: Filters | None = None,
        *,
        sort: SortSpec | None = None,
        page_size: int = 500,
    ) -> Iterator[list[ActivityRecord]]:
        """Yield consecutive pages until the matching records are exhausted.

        Raises :class:`~telemetry.domain.result.ActivityStoreError` when a page
        cannot be read.
        """

        page = 1
        while True:
            records = self.find_many(
                filters, sort=sort, page=page, page_size=page_size
            ).unwrap()
            if not records:
                return
            yield records
            if len(records) < page_size:
                return
            page += 1

    def find_before(
        self,
        filters: Filters | None = None,
        *,
        before: tuple[datetime, int] | None = None,
        page_size: int = 500,
    ) -> Result[list[ActivityRecord]]:
        """Return the newest records strictly older than the ``(created_at, id)`` cursor.

        Records created after the walk started sort ahead of the cursor, so
        concurrent inserts never shift a later page.
        """

        if page_size < 1:
            return Result.failure(StoreErrorKind.INVALID_FILTER, "page_size must be positive")
        try:
            conditions = build_conditions(filters)
            if before is not None:
                created_at, record_id = before
                stored_at = to_storage_datetime(created_at)
                conditions.append(
                    or_(
                        ActivityRecordModel.created_at < stored_at,
                        and_(
                            ActivityRecordModel.created_at == stored_at,
                            ActivityRecordModel.id < record_id,
                        ),
                    )
                )
            statement = (
                select(ActivityRecordModel)
                .where(*conditions)
                .order_by(ActivityRecordModel.created_at.desc(), ActivityRecordModel.id.desc())
                .limit(page_size)
            )
            with self._session_factory() as session:
                models = session.scalars(statement).all()
                return Result.success([self._to_entity(model) for model in models])
        except InvalidFilterError as exc:
            return Result.failure(StoreErrorKind.INVALID_FILTER, str(exc))
        except SQLAlchemyError as exc:
            logger.debug("Activity record query failed: %s", exc)
            return Result.failure(StoreErrorKind.UNAVAILABLE, str(exc))

    def update(self, record_id: int, fields: Mapping[str, Any]) -> Result[ActivityRecord]:
        """Narrow the anonymizable fields of a record.

        ``metadata`` is merged into the stored metadata rather than replacing it.
        """

        disallowed = set(fields) - ANONYMIZABLE_FIELDS
        if disallowed:
            return Result.failure(
                StoreErrorKind.INVALID_UPDATE,
                "Only ip_address, user_agent and metadata may be updated; got "
                + ", ".join(sorted(disallowed)),
            )
        try:
            with self._session_factory() as session:
                model = session.get(ActivityRecordModel, record_id)
                if model is None:
                    return Result.failure(
                        StoreErrorKind.NOT_FOUND, f"Activity record {record_id} not found"
                    )
                if "ip_address" in fields:
                    model.ip_address = fields["ip_address"]
                if "user_agent" in fields:
                    model.user_agent = fields["user_agent"]
                if "metadata" in fields:
                    model.extra_metadata = {
                        **(model.extra_metadata or {}),
                        **to_jsonable(dict(fields["metadata"] or {})),
                    }
                    model.anonymized = bool(model.extra_metadata.get("anonymized"))
                session.commit()
                session.refresh(model)
                return Result.success(self._to_entity(model))
        except SQLAlchemyError as exc:
            return Result.failure(StoreErrorKind.UNAVAILABLE, str(exc))

    def delete(self, record_id: int) -> Result[bool]:
        """Delete a record by id.

        The value is ``True`` when a record was removed and ``False`` when it
        no longer existed.
        """

        try:
            with self._session_factory() as session:
                model = session.get(ActivityRecordModel, record_id)
                if model is None:
                    return Result.success(False)
                session.delete(model)
                session.commit()
                return Result.success(True)
        except SQLAlchemyError as exc:
            return Result.failure(StoreErrorKind.UNAVAILABLE, str(exc))

    def count(self, filters: Filters | None = None) -> Result[int]:
        try:
            statement = (
                select(func.count(ActivityRecordModel.id))
                .where(*build_conditions(filters))
            )
            with self._session_factory() as session:
                return Result.success(int(session.scalar(statement) or 0))
        except InvalidFilterError as exc:
            return Result.failure(StoreErrorKind.INVALID_FILTER, str(exc))
        except SQLAlchemyError as exc:
            return Result.failure(StoreErrorKind.UNAVAILABLE, str(exc))

    @staticmethod
    def _to_entity(model: ActivityRecordModel) -> ActivityRecord:
        return ActivityRecord(
            id=model.id,
            actor_ref=model.actor_ref,
            activity_type=ActivityType(model.activity_type),
            activity_data=dict(model.activity_data or {}),
            session_id=model.session_id,
            success=bool(model.success),
            created_at=from_storage_datetime(model.created_at),
            ip_address=model.ip_address,
            user_agent=model.user_agent,
            location=model.location,
            device_info=DeviceInfo.from_dict(model.device_info),
            session_duration=model.session_duration,
            error_message=model.error_message,
            metadata=dict(model.extra_metadata or {}),
        )

    @staticmethod
    def _apply_entity_to_model(model: ActivityRecordModel, record: ActivityRecord) -> None:
        model.actor_ref = record.actor_ref
        model.activity_type = ActivityType(record.activity_type).value
        model.activity_data = to_jsonable(dict(record.activity_data))
        model.ip_address = record.ip_address[:45] if record.ip_address else None
        model.user_agent = record.user_agent
        model.location = record.location
        model.device_info = record.device_info.to_dict() if record.device_info else None
        model.session_id = record.session_id
        model.session_duration = record.session_duration
        model.success = record.success
        model.error_message = record.error_message
        model.created_at = to_storage_datetime(record.created_at or utcnow())
        model.extra_metadata = to_jsonable(dict(record.metadata))
        model.anonymized = bool(model.extra_metadata.get("anonymized"))


__all__ = [
    "ANONYMIZABLE_FIELDS",
    "ActivityRecordRepository",
    "InvalidFilterError",
    "build_conditions",
]

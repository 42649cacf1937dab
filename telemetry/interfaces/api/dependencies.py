"""FastAPI dependency utilities."""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from telemetry.application.use_cases import (
    ActivityAggregationService,
    DataRetentionService,
    RetentionScheduler,
)
from telemetry.infrastructure.repositories import (
    ActivityRecordRepository,
    RetentionAuditRepository,
)
from telemetry.infrastructure.security import Actor, decode_access_token

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_actor(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Actor:
    """Return the actor identified by the bearer token."""

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = decode_access_token(
            credentials.credentials, request.app.state.settings.secret_key
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    subject = payload.get("sub")
    if subject is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    role = payload.get("role")
    return Actor(ref=str(subject), role=str(role) if role is not None else None)


def require_admin(current_actor: Actor = Depends(get_current_actor)) -> Actor:
    """Ensure the authenticated actor has administrator privileges."""

    if not current_actor.is_admin():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized",
        )
    return current_actor


def get_activity_repository(request: Request) -> ActivityRecordRepository:
    return request.app.state.activity_repository


def get_audit_repository(request: Request) -> RetentionAuditRepository:
    return request.app.state.audit_repository


def get_aggregation_service(request: Request) -> ActivityAggregationService:
    return request.app.state.aggregation_service


def get_retention_service(request: Request) -> DataRetentionService:
    return request.app.state.retention_service


def get_scheduler(request: Request) -> RetentionScheduler:
    return request.app.state.scheduler


__all__ = [
    "bearer_scheme",
    "get_activity_repository",
    "get_aggregation_service",
    "get_audit_repository",
    "get_current_actor",
    "get_retention_service",
    "get_scheduler",
    "require_admin",
]

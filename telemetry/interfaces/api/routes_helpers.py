"""Helper utilities shared across API route handlers."""

from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException, status

from telemetry.domain.result import ActivityStoreError, StoreErrorKind


@contextmanager
def translate_service_errors() -> Iterator[None]:
    """Map use-case failures to HTTP errors.

    Invalid arguments become ``400``; an unreachable record store becomes
    ``503``.
    """

    try:
        yield
    except ActivityStoreError as exc:
        if exc.kind in (StoreErrorKind.INVALID_FILTER, StoreErrorKind.INVALID_UPDATE):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        if exc.kind is StoreErrorKind.NOT_FOUND:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Activity store unavailable",
        ) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


__all__ = ["translate_service_errors"]

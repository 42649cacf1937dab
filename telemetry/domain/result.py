"""Explicit success/failure values returned by record store operations."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class StoreErrorKind(str, Enum):
    """Classes of record store failure."""

    UNAVAILABLE = "unavailable"
    NOT_FOUND = "not_found"
    INVALID_FILTER = "invalid_filter"
    INVALID_UPDATE = "invalid_update"


@dataclass(frozen=True)
class StoreError:
    kind: StoreErrorKind
    message: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class ActivityStoreError(RuntimeError):
    """Raised when a failed :class:`Result` is unwrapped."""

    def __init__(self, error: StoreError) -> None:
        super().__init__(str(error))
        self.error = error

    @property
    def kind(self) -> StoreErrorKind:
        return self.error.kind


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a store operation: either ``value`` or ``error`` is set."""

    value: T | None = None
    error: StoreError | None = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: StoreErrorKind, message: str) -> "Result[T]":
        return cls(error=StoreError(kind=kind, message=message))

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or raise :class:`ActivityStoreError`."""

        if self.error is not None:
            raise ActivityStoreError(self.error)
        return self.value  # type: ignore[return-value]


__all__ = [
    "ActivityStoreError",
    "Result",
    "StoreError",
    "StoreErrorKind",
]

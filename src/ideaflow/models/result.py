"""Discriminated results returned by every public service operation."""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ErrorKind(StrEnum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    ALREADY_REVIEWED = "ALREADY_REVIEWED"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    DB_ERROR = "DB_ERROR"
    AI_ERROR = "AI_ERROR"
    TIMEOUT = "TIMEOUT"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ServiceError(BaseModel):
    kind: ErrorKind
    message: str


class ServiceResult(BaseModel, Generic[T]):
    """Success-with-data XOR failure-with-kind.

    ``data`` may legitimately be None on success (e.g. no saved state, no
    latest version), so callers branch on ``ok`` rather than on ``data``.
    """

    data: T | None = None
    error: ServiceError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> ErrorKind | None:
        return self.error.kind if self.error else None

    @classmethod
    def success(cls, data: Any = None) -> ServiceResult:
        return cls(data=data)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> ServiceResult:
        return cls(error=ServiceError(kind=kind, message=message))

    def unwrap(self) -> T:
        """Return data, raising if this is a failure. Intended for tests and scripts."""
        if self.error is not None:
            raise RuntimeError(f"{self.error.kind}: {self.error.message}")
        return self.data  # type: ignore[return-value]

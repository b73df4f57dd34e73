"""
Structured outcomes returned by the engine facade.
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from transit_ticketing.core.exceptions import ErrorCategory, TicketingError

T = TypeVar("T")


@dataclass(frozen=True)
class ErrorInfo:
    category: ErrorCategory
    message: str
    status_code: int
    retryable: bool = False

    @classmethod
    def from_exception(cls, exc: TicketingError) -> "ErrorInfo":
        return cls(
            category=exc.category,
            message=exc.message,
            status_code=exc.status_code,
            retryable=exc.retryable,
        )


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[ErrorInfo] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "OperationResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ErrorInfo) -> "OperationResult[T]":
        return cls(error=error)

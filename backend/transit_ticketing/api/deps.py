"""
Request dependencies and result unwrapping for route handlers.
"""

from typing import TypeVar

from fastapi import HTTPException, Request

from transit_ticketing.services.engine import TicketingEngine
from transit_ticketing.services.results import OperationResult

T = TypeVar("T")


def get_engine(request: Request) -> TicketingEngine:
    """Engine built during application startup."""
    return request.app.state.engine


def unwrap(result: OperationResult[T]) -> T:
    """Return the value of a successful result or raise the matching HTTP error."""
    if result.ok:
        return result.value
    error = result.error
    headers = {"Retry-After": "1"} if error.retryable else None
    raise HTTPException(status_code=error.status_code, detail=error.message, headers=headers)

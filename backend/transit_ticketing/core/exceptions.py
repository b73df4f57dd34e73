"""
Error taxonomy for the ticketing engine.

Every failure the engine reports belongs to one of four response categories.
Store-specific exceptions (SQLAlchemy, redis) never cross the service
boundary; the store guards in ``infrastructure.guards`` translate them.
"""

from enum import Enum


class ErrorCategory(str, Enum):
    BAD_INPUT = "bad_input"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    TRANSIENT_FAILURE = "transient_failure"


class TicketingError(Exception):
    """Base class for all errors surfaced by the engine."""

    category: ErrorCategory = ErrorCategory.TRANSIENT_FAILURE
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(TicketingError):
    """Malformed business code, contact address or other input field."""

    category = ErrorCategory.BAD_INPUT
    status_code = 400


class ConflictError(TicketingError):
    """A unique field (business code or contact) is already taken."""

    category = ErrorCategory.CONFLICT
    status_code = 409


class NotFoundError(TicketingError):
    """
    User or ticket absent.

    For tickets this covers both "never existed" and "expired": once the
    TTL elapses the record is gone and the two cases cannot be told apart.
    """

    category = ErrorCategory.NOT_FOUND
    status_code = 404


class DependencyError(TicketingError):
    """A store was unreachable or a call exceeded its timeout."""

    status_code = 503
    retryable = True

    def __init__(self, message: str, store: str, operation: str, **context):
        super().__init__(message, store=store, operation=operation, **context)
        self.store = store
        self.operation = operation


class PartialFailureError(TicketingError):
    """
    The ephemeral write succeeded but the durable write did not.

    Raised after compensation has been attempted; the ticket must be
    treated as not issued.
    """

    status_code = 500
    retryable = True

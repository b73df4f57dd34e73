"""
Engine facade: the surface the HTTP layer (or any other caller) consumes.

Each operation opens its own database session, runs one service call and
returns an OperationResult. Engine errors become ErrorInfo; nothing raised
inside the engine escapes to the caller.
"""

from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar, Union

import redis.asyncio as redis
from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from transit_ticketing.core.config import get_settings
from transit_ticketing.core.exceptions import (
    DependencyError,
    ErrorCategory,
    TicketingError,
    ValidationError,
)
from transit_ticketing.core.logging import get_logger
from transit_ticketing.infrastructure.guards import durable_call, ephemeral_call
from transit_ticketing.schemas.ticket import (
    TicketCreate,
    TicketIssueResponse,
    TicketResponse,
    UserTicketsResponse,
    UserTicketStatsResponse,
)
from transit_ticketing.schemas.user import UserCreate, UserResponse, UserUpdate
from transit_ticketing.schemas.validators import validate_contact, validate_tax_code
from transit_ticketing.services import ticket_service, user_service
from transit_ticketing.services.cache_service import UserCache
from transit_ticketing.services.population_monitor import CachePopulationMonitor
from transit_ticketing.services.results import ErrorInfo, OperationResult

logger = get_logger(__name__)

S = TypeVar("S", bound=BaseModel)
T = TypeVar("T")

INTERNAL_ERROR = ErrorInfo(
    category=ErrorCategory.TRANSIENT_FAILURE,
    message="Internal error",
    status_code=500,
    retryable=False,
)


def _coerce(schema: type[S], fields: Union[S, Mapping[str, Any]]) -> S:
    if isinstance(fields, schema):
        return fields
    try:
        return schema.model_validate(fields)
    except SchemaValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(f"Invalid input: {problems}") from e


class TicketingEngine:
    """Dual-store consistency engine for users and tickets."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis_client: redis.Redis,
        *,
        ticket_validity_seconds: Optional[int] = None,
        max_cached_users: Optional[int] = None,
    ):
        settings = get_settings()
        self._session_factory = session_factory
        self._redis = redis_client
        self.ticket_validity_seconds = (
            ticket_validity_seconds
            if ticket_validity_seconds is not None
            else settings.TICKET_VALIDITY_SECONDS
        )
        self.monitor = CachePopulationMonitor(
            redis_client,
            max_cached_users if max_cached_users is not None else settings.MAX_CACHED_USERS,
            scan_count=settings.PURGE_SCAN_COUNT,
        )
        self.user_cache = UserCache(redis_client, self.monitor)

    async def _run(
        self, operation: str, call: Callable[[AsyncSession], Awaitable[T]]
    ) -> OperationResult[T]:
        try:
            async with self._session_factory() as db:
                value = await call(db)
        except TicketingError as e:
            logger.info(
                "operation_failed",
                operation=operation,
                category=e.category.value,
                reason=e.message,
            )
            return OperationResult.failure(ErrorInfo.from_exception(e))
        except Exception:
            logger.exception("operation_crashed", operation=operation)
            return OperationResult.failure(INTERNAL_ERROR)
        return OperationResult.success(value)

    # Users

    async def create_user(
        self, fields: Union[UserCreate, Mapping[str, Any]]
    ) -> OperationResult[UserResponse]:
        return await self._run(
            "create_user",
            lambda db: user_service.create_user(db, self.user_cache, _coerce(UserCreate, fields)),
        )

    async def get_user(self, tax_code: str) -> OperationResult[UserResponse]:
        return await self._run(
            "get_user",
            lambda db: user_service.get_user(db, self.user_cache, validate_tax_code(tax_code)),
        )

    async def find_user_by_contact(self, contact: str) -> OperationResult[UserResponse]:
        return await self._run(
            "find_user_by_contact",
            lambda db: user_service.find_user_by_contact(
                db, self.user_cache, validate_contact(contact)
            ),
        )

    async def update_user(
        self, tax_code: str, fields: Union[UserUpdate, Mapping[str, Any]]
    ) -> OperationResult[UserResponse]:
        return await self._run(
            "update_user",
            lambda db: user_service.update_user(
                db, self.user_cache, validate_tax_code(tax_code), _coerce(UserUpdate, fields)
            ),
        )

    async def delete_user(self, tax_code: str) -> OperationResult[UserResponse]:
        return await self._run(
            "delete_user",
            lambda db: user_service.delete_user(db, self.user_cache, validate_tax_code(tax_code)),
        )

    # Tickets

    async def issue_ticket(
        self, fields: Union[TicketCreate, Mapping[str, Any]]
    ) -> OperationResult[TicketIssueResponse]:
        return await self._run(
            "issue_ticket",
            lambda db: ticket_service.issue_ticket(
                db,
                self._redis,
                self.user_cache,
                _coerce(TicketCreate, fields),
                self.ticket_validity_seconds,
            ),
        )

    async def get_ticket(self, ticket_id: str) -> OperationResult[TicketResponse]:
        return await self._run(
            "get_ticket",
            lambda db: ticket_service.get_ticket(self._redis, ticket_id),
        )

    async def get_user_tickets(self, tax_code: str) -> OperationResult[UserTicketsResponse]:
        return await self._run(
            "get_user_tickets",
            lambda db: ticket_service.get_user_tickets(
                db, self._redis, self.user_cache, validate_tax_code(tax_code)
            ),
        )

    async def get_user_ticket_stats(
        self, tax_code: str
    ) -> OperationResult[UserTicketStatsResponse]:
        return await self._run(
            "get_user_ticket_stats",
            lambda db: ticket_service.get_user_ticket_stats(
                db, self._redis, self.user_cache, validate_tax_code(tax_code)
            ),
        )

    # Operations

    async def health(self) -> dict:
        """Ping both stores and report the cache population."""
        stores = {}
        cache = {"max_cached_users": self.monitor.max_cached_users}

        try:
            async with self._session_factory() as db:
                async with durable_call("health"):
                    await db.execute(text("SELECT 1"))
            stores["durable"] = "ok"
        except DependencyError:
            stores["durable"] = "unavailable"

        try:
            async with ephemeral_call("health"):
                await self._redis.ping()
            cache["tracked_users"] = await self.monitor.tracked_count()
            stores["ephemeral"] = "ok"
        except DependencyError:
            stores["ephemeral"] = "unavailable"

        healthy = all(state == "ok" for state in stores.values())
        return {"status": "healthy" if healthy else "degraded", "stores": stores, "cache": cache}

"""
Store call guards.

Every call into either store runs under a bounded timeout and has its
driver exceptions translated into the engine's error taxonomy. Timeouts are
surfaced as retryable DependencyErrors; nothing is retried here, since a
retried ticket write could issue the same entitlement twice.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from redis.exceptions import RedisError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from transit_ticketing.core.config import get_settings
from transit_ticketing.core.exceptions import ConflictError, DependencyError
from transit_ticketing.core.logging import get_logger
from transit_ticketing.core.metrics import record_store_error

logger = get_logger(__name__)

DURABLE = "durable"
EPHEMERAL = "ephemeral"


@asynccontextmanager
async def durable_call(operation: str) -> AsyncIterator[None]:
    """Guard a block of durable-store calls."""
    try:
        async with asyncio.timeout(get_settings().STORE_TIMEOUT_SECONDS):
            yield
    except IntegrityError as e:
        record_store_error(DURABLE, "integrity")
        logger.warning("durable_integrity_violation", operation=operation, error=str(e.orig))
        raise ConflictError("A user with this tax code or contact already exists") from e
    except TimeoutError as e:
        record_store_error(DURABLE, "timeout")
        logger.error("durable_store_timeout", operation=operation)
        raise DependencyError(
            "Record store timed out", store=DURABLE, operation=operation
        ) from e
    except (SQLAlchemyError, OSError) as e:
        record_store_error(DURABLE, "error")
        logger.error("durable_store_error", operation=operation, error=str(e))
        raise DependencyError(
            "Record store unavailable", store=DURABLE, operation=operation
        ) from e


@asynccontextmanager
async def ephemeral_call(operation: str) -> AsyncIterator[None]:
    """Guard a block of Redis calls."""
    try:
        async with asyncio.timeout(get_settings().STORE_TIMEOUT_SECONDS):
            yield
    except TimeoutError as e:
        record_store_error(EPHEMERAL, "timeout")
        logger.error("ephemeral_store_timeout", operation=operation)
        raise DependencyError(
            "Cache store timed out", store=EPHEMERAL, operation=operation
        ) from e
    except RedisError as e:
        record_store_error(EPHEMERAL, "error")
        logger.error("ephemeral_store_error", operation=operation, error=str(e))
        raise DependencyError(
            "Cache store unavailable", store=EPHEMERAL, operation=operation
        ) from e

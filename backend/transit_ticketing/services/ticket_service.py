"""
Ticket issuance and ticket reads.

VALIDITY THROUGH EXPIRY
=======================

A ticket is a Redis hash "ticket:{id}" written with TTL = validity window.
There is no status transition to "expired": when the TTL elapses Redis drops
the key, and a read that finds nothing reports NotFound. Expired and
never-issued are the same answer.

Each user also has a membership set "active_tickets:{tax_code}" holding the
ids of tickets issued to them. The set carries one shared TTL, reset to the
full validity window on every insert. Consequences, kept on purpose:
  - a set refreshed by a newer ticket still lists older ids whose ticket
    keys have already expired
  - ids are not re-checked against their ticket keys when listed

ISSUANCE: two steps, no coordinator
===================================

  1. Resolve the user (cache, else database). Unknown users get NotFound.
  2. One MULTI/EXEC pipeline: ticket hash + EXPIRE, SADD to the membership
     set + EXPIRE. All or nothing at Redis. Failure here → DependencyError,
     and the database is never touched.
  3. Atomic `total_tickets + 1` in the database.
  4. If step 3 fails: delete the ticket hash and SREM its id (best-effort),
     then raise PartialFailureError. The ticket counts as not issued.
  5. On success, refresh the cached counter if the projection is cached.

Nothing is retried internally; a retry after an ambiguous failure could
issue a second entitlement.
"""

import time
import uuid
from datetime import datetime, timedelta, timezone

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession

from transit_ticketing.core.exceptions import DependencyError, NotFoundError, PartialFailureError
from transit_ticketing.core.logging import get_logger
from transit_ticketing.core.metrics import record_issuance, ticket_issuance_latency
from transit_ticketing.infrastructure.guards import ephemeral_call
from transit_ticketing.infrastructure.keys import active_tickets_key, ticket_key
from transit_ticketing.schemas.ticket import (
    Ticket,
    TicketCreate,
    TicketIssueResponse,
    TicketResponse,
    UserTicketsResponse,
    UserTicketStatsResponse,
)
from transit_ticketing.services import user_service
from transit_ticketing.services.cache_service import UserCache
from transit_ticketing.services.saga import CompensationLog

logger = get_logger(__name__)


async def _delete_ticket(redis_client: redis.Redis, key: str) -> None:
    async with ephemeral_call("compensate_delete_ticket"):
        await redis_client.delete(key)


async def _remove_membership(redis_client: redis.Redis, members_key: str, ticket_id: str) -> None:
    async with ephemeral_call("compensate_remove_membership"):
        await redis_client.srem(members_key, ticket_id)


async def issue_ticket(
    db: AsyncSession,
    redis_client: redis.Redis,
    cache: UserCache,
    ticket_data: TicketCreate,
    validity_seconds: int,
) -> TicketIssueResponse:
    """Issue a ticket valid for `validity_seconds` and count it against the user."""
    started = time.perf_counter()

    try:
        user = await user_service.get_user(db, cache, ticket_data.tax_code)
    except NotFoundError:
        record_issuance("not_found")
        raise

    created_at = datetime.now(timezone.utc)
    ticket = Ticket(
        ticket_id=str(uuid.uuid4()),
        user_id=user.tax_code,
        route_id=ticket_data.route_id,
        trip_id=ticket_data.trip_id,
        name=user.name,
        created_at=created_at,
        expired_at=created_at + timedelta(seconds=validity_seconds),
    )
    key = ticket_key(ticket.ticket_id)
    members_key = active_tickets_key(user.tax_code)

    try:
        async with ephemeral_call("issue_ticket"):
            pipe = redis_client.pipeline(transaction=True)
            pipe.hset(key, mapping=ticket.model_dump(mode="json"))
            pipe.expire(key, validity_seconds)
            pipe.sadd(members_key, ticket.ticket_id)
            pipe.expire(members_key, validity_seconds)
            await pipe.execute()
    except DependencyError:
        record_issuance("dependency_error")
        raise

    compensations = CompensationLog("ticket_issuance", ticket_id=ticket.ticket_id, tax_code=user.tax_code)
    compensations.add("delete_ticket", lambda: _delete_ticket(redis_client, key))
    compensations.add(
        "remove_membership", lambda: _remove_membership(redis_client, members_key, ticket.ticket_id)
    )

    try:
        total = await user_service.record_ticket_purchase(db, user.tax_code, created_at)
    except Exception as e:
        logger.error(
            "ticket_durable_write_failed",
            ticket_id=ticket.ticket_id,
            tax_code=user.tax_code,
            error=getattr(e, "message", str(e)),
        )
        await compensations.compensate()
        if isinstance(e, NotFoundError):
            record_issuance("not_found")
            raise
        record_issuance("partial_failure")
        raise PartialFailureError(
            "Ticket could not be issued, please retry", ticket_id=ticket.ticket_id
        ) from e

    await cache.sync_ticket_count(user.tax_code, total, created_at)

    ticket_issuance_latency.observe(time.perf_counter() - started)
    record_issuance("issued")
    logger.info(
        "ticket_issued",
        ticket_id=ticket.ticket_id,
        tax_code=user.tax_code,
        route_id=ticket.route_id,
        trip_id=ticket.trip_id,
        total_tickets=total,
    )
    return TicketIssueResponse(ticket=ticket, expires_in=validity_seconds)


async def get_ticket(redis_client: redis.Redis, ticket_id: str) -> TicketResponse:
    """Read a live ticket. Expired and unknown ids both raise NotFoundError."""
    key = ticket_key(ticket_id)
    async with ephemeral_call("get_ticket"):
        pipe = redis_client.pipeline(transaction=False)
        pipe.hgetall(key)
        pipe.ttl(key)
        data, ttl = await pipe.execute()

    if not data:
        raise NotFoundError("Ticket not found or expired", ticket_id=ticket_id)

    return TicketResponse.model_validate({**data, "time_remaining": max(ttl, 0)})


async def get_user_tickets(
    db: AsyncSession, redis_client: redis.Redis, cache: UserCache, tax_code: str
) -> UserTicketsResponse:
    """List the ids in the user's membership set next to the durable purchase total."""
    user = await user_service.get_user(db, cache, tax_code)

    async with ephemeral_call("get_user_tickets"):
        ticket_ids = await redis_client.smembers(active_tickets_key(user.tax_code))

    total = await user_service.get_ticket_total(db, user.tax_code)
    return UserTicketsResponse(
        active_ticket_count=len(ticket_ids),
        active_ticket_ids=sorted(ticket_ids),
        total_purchased=total,
    )


async def get_user_ticket_stats(
    db: AsyncSession, redis_client: redis.Redis, cache: UserCache, tax_code: str
) -> UserTicketStatsResponse:
    """Purchased, active and expired counts for one user."""
    user = await user_service.get_user(db, cache, tax_code)

    async with ephemeral_call("get_user_ticket_stats"):
        active = await redis_client.scard(active_tickets_key(user.tax_code))

    total = await user_service.get_ticket_total(db, user.tax_code)
    return UserTicketStatsResponse(
        tax_code=user.tax_code,
        name=user.name,
        total_purchased=total,
        active_count=active,
        expired_count=max(total - active, 0),
    )

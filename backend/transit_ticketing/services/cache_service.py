"""
Redis cache-aside layer for user records.

CACHING STRATEGY
================

What we cache:
  - A projection of each user as a Redis hash: "user:{tax_code}"
  - A reverse lookup from contact address to tax code: "email:{contact}"
  - The tax code in "cached_users_list", once per newly cached user

Why:
  - Ticket issuance resolves the user on every request; a hash read is far
    cheaper than a database round trip.

Rules:
  - A cache hit is returned as-is, without consulting the database. Updates
    therefore refresh or invalidate the projection themselves.
  - The projection's counter is advisory and never used on a write path;
    the database owns `total_tickets`. Syncs only ever raise it.
  - Every write is best-effort. Redis failures are logged and swallowed so
    the authoritative path is never blocked by the cache.
  - Read failures degrade to a miss, which sends the caller to the database.
  - No TTL on user projections: they live until invalidated or purged by
    the population monitor.
"""

from datetime import datetime
from typing import Optional

import redis.asyncio as redis
from pydantic import ValidationError as SchemaValidationError

from transit_ticketing.core.exceptions import DependencyError
from transit_ticketing.core.logging import get_logger
from transit_ticketing.core.metrics import record_cache_operation
from transit_ticketing.infrastructure.guards import ephemeral_call
from transit_ticketing.infrastructure.keys import CACHED_USERS_LIST, contact_key, user_key
from transit_ticketing.schemas.user import UserResponse
from transit_ticketing.services.population_monitor import CachePopulationMonitor

logger = get_logger(__name__)


def _serialize(user: UserResponse) -> dict[str, str]:
    data = user.model_dump(mode="json", exclude_none=True)
    return {field: str(value) for field, value in data.items()}


class UserCache:
    """Cache-aside store for user projections and contact lookups."""

    def __init__(self, redis_client: redis.Redis, monitor: CachePopulationMonitor):
        self._redis = redis_client
        self.monitor = monitor

    async def get(self, tax_code: str) -> Optional[UserResponse]:
        """Return the cached projection, or None on miss or Redis failure."""
        key = user_key(tax_code)
        try:
            async with ephemeral_call("cache_get"):
                data = await self._redis.hgetall(key)
        except DependencyError:
            record_cache_operation("get", "error")
            return None

        if not data:
            record_cache_operation("get", "miss")
            logger.debug("cache_miss", key=key)
            return None

        try:
            user = UserResponse.model_validate(data)
        except SchemaValidationError:
            # A hash missing identity fields is not a usable projection.
            record_cache_operation("get", "miss")
            logger.warning("cache_entry_incomplete", key=key, fields=sorted(data))
            await self._discard(key)
            return None

        record_cache_operation("get", "hit")
        logger.debug("cache_hit", key=key)
        return user

    async def lookup_tax_code(self, contact: str) -> Optional[str]:
        """Resolve a contact address to a tax code through the secondary lookup."""
        try:
            async with ephemeral_call("cache_lookup"):
                tax_code = await self._redis.get(contact_key(contact))
        except DependencyError:
            record_cache_operation("lookup", "error")
            return None
        record_cache_operation("lookup", "hit" if tax_code else "miss")
        return tax_code

    async def store(self, user: UserResponse) -> None:
        """
        Write (or replace) the projection and its contact lookup.

        Runs the population monitor first; the tax code is appended to the
        tracking list only when no projection existed before this write.
        """
        key = user_key(user.tax_code)
        try:
            await self.monitor.check_and_admit()
            async with ephemeral_call("cache_store"):
                existed = await self._redis.exists(key)
                pipe = self._redis.pipeline(transaction=True)
                pipe.delete(key)
                pipe.hset(key, mapping=_serialize(user))
                pipe.set(contact_key(user.contact), user.tax_code)
                if not existed:
                    pipe.rpush(CACHED_USERS_LIST, user.tax_code)
                await pipe.execute()
        except DependencyError as e:
            record_cache_operation("set", "error")
            logger.warning("cache_set_failed", key=key, error=e.message)
            return
        record_cache_operation("set", "ok")
        logger.debug("cache_set", key=key, tracked=not existed)

    async def sync_ticket_count(
        self, tax_code: str, total_tickets: int, last_ticket_at: datetime
    ) -> None:
        """
        Raise a cached counter to the durable total, if the projection is cached.

        The cached counter is advisory and only moves forward: two issuances
        can finish their syncs in the opposite order from their increments,
        and the later total must win. WATCH aborts the write if the
        projection changes or is purged underneath it.
        """
        key = user_key(tax_code)

        async def raise_counter(pipe) -> None:
            cached = await pipe.hget(key, "total_tickets")
            if cached is None:
                return
            if cached.isdigit() and int(cached) >= total_tickets:
                return
            pipe.multi()
            pipe.hset(
                key,
                mapping={
                    "total_tickets": str(total_tickets),
                    "last_ticket_at": last_ticket_at.isoformat(),
                },
            )

        try:
            async with ephemeral_call("cache_sync_count"):
                await self._redis.transaction(raise_counter, key)
        except DependencyError as e:
            record_cache_operation("sync_count", "error")
            logger.warning("cache_sync_count_failed", key=key, error=e.message)

    async def remove_contact(self, contact: str) -> None:
        try:
            async with ephemeral_call("cache_remove_contact"):
                await self._redis.delete(contact_key(contact))
        except DependencyError as e:
            record_cache_operation("remove_contact", "error")
            logger.warning("cache_remove_contact_failed", error=e.message)

    async def invalidate(self, tax_code: str, contact: Optional[str] = None) -> None:
        """Drop the projection, its contact lookup and its tracking-list entry."""
        try:
            async with ephemeral_call("cache_invalidate"):
                pipe = self._redis.pipeline(transaction=True)
                pipe.delete(user_key(tax_code))
                if contact:
                    pipe.delete(contact_key(contact))
                pipe.lrem(CACHED_USERS_LIST, 0, tax_code)
                await pipe.execute()
        except DependencyError as e:
            record_cache_operation("invalidate", "error")
            logger.warning("cache_invalidate_failed", tax_code=tax_code, error=e.message)
            return
        logger.debug("cache_invalidated", tax_code=tax_code)

    async def _discard(self, key: str) -> None:
        try:
            async with ephemeral_call("cache_discard"):
                await self._redis.delete(key)
        except DependencyError:
            record_cache_operation("discard", "error")

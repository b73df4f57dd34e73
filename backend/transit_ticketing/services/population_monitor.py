"""
Cache population monitor.

EVICTION POLICY: full flush at a threshold
==========================================

The number of users resident in Redis is tracked by a list
(`cached_users_list`) that grows by one entry each time a new user
projection is written. Before any write-through caching operation the
monitor reads the list length; once it reaches `max_cached_users` every
`user:*` and `email:*` key is deleted and the list is cleared.

This is not LRU. After a purge the whole user cache is cold
and every read falls back to the durable store, which repopulates it. A
cache miss is therefore always "go ask the database", never data loss.

Ticket records (`ticket:*`) and membership sets (`active_tickets:*`) are
outside the purged namespaces; they expire on their own TTL only.

Races: admission check, purge and the caller's subsequent write are not one
atomic unit. Two callers can interleave so that the list ends up longer than
the true number of cached users, which only makes the next purge come a
little early. Reads never trust the list.
"""

import redis.asyncio as redis

from transit_ticketing.core.logging import get_logger
from transit_ticketing.core.metrics import cache_purges, cached_users
from transit_ticketing.infrastructure.guards import ephemeral_call
from transit_ticketing.infrastructure.keys import (
    CACHED_USERS_LIST,
    CONTACT_KEY_PATTERN,
    USER_KEY_PATTERN,
)

logger = get_logger(__name__)


class CachePopulationMonitor:
    def __init__(self, redis_client: redis.Redis, max_cached_users: int, scan_count: int = 100):
        self._redis = redis_client
        self.max_cached_users = max_cached_users
        self._scan_count = scan_count

    async def tracked_count(self) -> int:
        """Current length of the tracking list."""
        async with ephemeral_call("tracked_count"):
            return await self._redis.llen(CACHED_USERS_LIST)

    async def check_and_admit(self) -> bool:
        """
        Purge the user cache if the tracking list has reached the threshold.

        Returns True when a purge ran. Must be awaited before writing a new
        user projection.
        """
        count = await self.tracked_count()
        cached_users.set(count)
        if count < self.max_cached_users:
            return False

        logger.info("cache_threshold_reached", tracked=count, threshold=self.max_cached_users)
        await self.purge_all()
        return True

    async def purge_all(self) -> int:
        """
        Delete every user projection and contact lookup, and clear the tracking list.

        Returns the number of keys deleted (excluding the tracking list).
        """
        async with ephemeral_call("purge_all"):
            keys = []
            for pattern in (USER_KEY_PATTERN, CONTACT_KEY_PATTERN):
                async for key in self._redis.scan_iter(match=pattern, count=self._scan_count):
                    keys.append(key)

            pipe = self._redis.pipeline(transaction=True)
            if keys:
                pipe.delete(*keys)
            pipe.delete(CACHED_USERS_LIST)
            await pipe.execute()

        cache_purges.inc()
        cached_users.set(0)
        logger.info("cache_purged", keys_deleted=len(keys))
        return len(keys)

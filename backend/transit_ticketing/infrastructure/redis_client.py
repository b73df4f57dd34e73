"""
Redis client for the ephemeral store.
Separated from business logic for clean architecture.
"""

from typing import Optional

import redis.asyncio as redis

from transit_ticketing.core.config import get_settings


class RedisClient:
    """Process-wide Redis client with connection pooling."""

    _instance: Optional[redis.Redis] = None

    @classmethod
    def get_client(cls) -> redis.Redis:
        """Get or create Redis client instance."""
        if cls._instance is None:
            settings = get_settings()
            # No retry_on_timeout: a retried pipeline could issue a ticket twice.
            cls._instance = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=settings.STORE_TIMEOUT_SECONDS,
                socket_timeout=settings.STORE_TIMEOUT_SECONDS,
                health_check_interval=30,
            )
        return cls._instance

    @classmethod
    async def close(cls):
        """Close Redis connection."""
        if cls._instance:
            await cls._instance.aclose()
            cls._instance = None

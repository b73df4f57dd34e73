"""
Infrastructure layer - external system integrations.
Keeps business logic clean from implementation details.
"""

from .guards import durable_call, ephemeral_call
from .redis_client import RedisClient

__all__ = ['RedisClient', 'durable_call', 'ephemeral_call']

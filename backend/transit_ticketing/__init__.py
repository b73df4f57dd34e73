"""Transit ticketing: user registry and TTL-bound tickets over a durable store and Redis."""

__version__ = "1.0.0"

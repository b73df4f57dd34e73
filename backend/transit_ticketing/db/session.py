"""
Async engine and session factory for the durable store.

The engine is built lazily so importing the application never opens a
connection or requires a driver for a URL that is not used.
"""

from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from transit_ticketing.core.config import get_settings


def build_engine(url: str) -> AsyncEngine:
    settings = get_settings()
    options = {"echo": settings.DEBUG, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_recycle=settings.DB_POOL_RECYCLE,
        )
    return create_async_engine(url, **options)


@lru_cache()
def get_engine() -> AsyncEngine:
    return build_engine(get_settings().DATABASE_URL)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Services commit explicitly; the ticket saga needs to know whether the
    # durable write landed before it decides to compensate.
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


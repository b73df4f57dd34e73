"""
Pytest fixtures for the durable store, the Redis store, the engine and the HTTP client.

The durable store is an in-memory SQLite database and Redis is a fakeredis
server with real TTL behaviour. Both are created fresh for every test.
"""

from typing import AsyncGenerator

import fakeredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import event, func, select
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from transit_ticketing.api.deps import get_engine
from transit_ticketing.db.base import Base
from transit_ticketing.db.session import build_session_factory
from transit_ticketing.main import app
from transit_ticketing.models.user import User
from transit_ticketing.services.engine import TicketingEngine

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

VALIDITY_SECONDS = 70 * 60
MAX_CACHED_USERS = 1000

TAX_CODE = "ABCDEFGHIJKLMN"
CONTACT = "a@x.com"


class QueryCounter:
    """Counts SQL statements sent to the durable store."""

    def __init__(self):
        self.count = 0

    def __call__(self, conn, cursor, statement, parameters, context, executemany):
        self.count += 1

    def reset(self):
        self.count = 0


class FailingPipeline:
    """Stands in for a Redis pipeline whose EXEC never reaches the server."""

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            return self
        return queue

    async def execute(self):
        raise RedisConnectionError("Connection refused")


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        # Every session shares this one connection; a rollback on check-in
        # would discard another session's uncommitted write.
        pool_reset_on_return=None,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine):
    return build_session_factory(db_engine)


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[fakeredis.FakeAsyncRedis, None]:
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def ticketing(session_factory, redis_client) -> TicketingEngine:
    return TicketingEngine(
        session_factory,
        redis_client,
        ticket_validity_seconds=VALIDITY_SECONDS,
        max_cached_users=MAX_CACHED_USERS,
    )


@pytest.fixture
def make_engine(session_factory, redis_client):
    """Build an engine over the same stores with different limits."""

    def factory(validity_seconds: int = VALIDITY_SECONDS, max_cached_users: int = MAX_CACHED_USERS):
        return TicketingEngine(
            session_factory,
            redis_client,
            ticket_validity_seconds=validity_seconds,
            max_cached_users=max_cached_users,
        )

    return factory


@pytest.fixture
def durable_queries(db_engine: AsyncEngine):
    counter = QueryCounter()
    event.listen(db_engine.sync_engine, "before_cursor_execute", counter)
    yield counter
    event.remove(db_engine.sync_engine, "before_cursor_execute", counter)


@pytest.fixture
def broken_pipeline(redis_client, monkeypatch):
    """Make every transactional Redis batch fail."""
    monkeypatch.setattr(redis_client, "pipeline", lambda *args, **kwargs: FailingPipeline())


@pytest_asyncio.fixture
async def client(ticketing: TicketingEngine) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client that serves requests through the test engine."""
    app.dependency_overrides[get_engine] = lambda: ticketing

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def test_user(ticketing: TicketingEngine):
    """A registered (and cached) user."""
    result = await ticketing.create_user(
        {"tax_code": TAX_CODE, "name": "Test Rider", "contact": CONTACT}
    )
    assert result.ok, result.error
    return result.value


async def count_users(session_factory) -> int:
    async with session_factory() as db:
        return (await db.execute(select(func.count()).select_from(User))).scalar_one()


async def durable_total_tickets(session_factory, tax_code: str) -> int:
    async with session_factory() as db:
        return (
            await db.execute(select(User.total_tickets).where(User.tax_code == tax_code))
        ).scalar_one()

"""
Tests for ticket issuance across both stores, expiry-driven validity and
membership reads.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import delete

from conftest import TAX_CODE, VALIDITY_SECONDS, durable_total_tickets
from transit_ticketing.core.exceptions import DependencyError, ErrorCategory
from transit_ticketing.infrastructure.keys import active_tickets_key, ticket_key, user_key
from transit_ticketing.models.user import User
from transit_ticketing.services import user_service

TICKET_REQUEST = {"tax_code": TAX_CODE, "route_id": "R1", "trip_id": "T1"}


async def _ticket_keys(redis_client) -> list[str]:
    return [key async for key in redis_client.scan_iter(match="ticket:*")]


@pytest.mark.asyncio
async def test_issue_ticket(ticketing, redis_client, session_factory, test_user):
    """Issued ticket is active, valid for 70 minutes and counted durably."""
    result = await ticketing.issue_ticket(TICKET_REQUEST)

    assert result.ok, result.error
    ticket = result.value.ticket
    assert result.value.expires_in == VALIDITY_SECONDS
    assert ticket.status == "active"
    assert ticket.user_id == TAX_CODE
    assert ticket.route_id == "R1"
    assert ticket.trip_id == "T1"
    assert ticket.name == "Test Rider"
    assert ticket.expired_at - ticket.created_at == timedelta(minutes=70)

    assert await durable_total_tickets(session_factory, TAX_CODE) == 1
    ttl = await redis_client.ttl(ticket_key(ticket.ticket_id))
    assert VALIDITY_SECONDS - 5 <= ttl <= VALIDITY_SECONDS

    tickets = await ticketing.get_user_tickets(TAX_CODE)
    assert tickets.value.active_ticket_count == 1
    assert tickets.value.active_ticket_ids == [ticket.ticket_id]
    assert tickets.value.total_purchased == 1


@pytest.mark.asyncio
async def test_get_ticket(ticketing, test_user):
    issued = (await ticketing.issue_ticket(TICKET_REQUEST)).value.ticket

    result = await ticketing.get_ticket(issued.ticket_id)

    assert result.ok
    assert result.value.ticket_id == issued.ticket_id
    assert result.value.created_at == issued.created_at
    assert result.value.expired_at == issued.expired_at
    assert 0 < result.value.time_remaining <= VALIDITY_SECONDS


@pytest.mark.asyncio
async def test_get_unknown_ticket(ticketing):
    result = await ticketing.get_ticket("no-such-ticket")
    assert result.error.category == ErrorCategory.NOT_FOUND
    assert result.error.message == "Ticket not found or expired"


@pytest.mark.asyncio
async def test_issue_ticket_unknown_user(ticketing, redis_client):
    result = await ticketing.issue_ticket({**TICKET_REQUEST, "tax_code": "ZZZZZZZZZZZZZZ"})

    assert result.error.category == ErrorCategory.NOT_FOUND
    assert await _ticket_keys(redis_client) == []


@pytest.mark.asyncio
async def test_issue_ticket_rejects_malformed_request(ticketing, test_user):
    result = await ticketing.issue_ticket({"tax_code": TAX_CODE, "route_id": "", "trip_id": "T1"})
    assert result.error.category == ErrorCategory.BAD_INPUT


@pytest.mark.asyncio
async def test_three_rapid_tickets(ticketing, session_factory, test_user):
    for _ in range(3):
        assert (await ticketing.issue_ticket(TICKET_REQUEST)).ok

    tickets = (await ticketing.get_user_tickets(TAX_CODE)).value
    assert tickets.total_purchased == 3
    assert tickets.active_ticket_count <= 3
    assert len(set(tickets.active_ticket_ids)) == tickets.active_ticket_count
    assert await durable_total_tickets(session_factory, TAX_CODE) == 3


@pytest.mark.asyncio
async def test_cached_counter_follows_durable_counter(ticketing, redis_client, test_user):
    await ticketing.issue_ticket(TICKET_REQUEST)
    await ticketing.issue_ticket(TICKET_REQUEST)

    assert await redis_client.hget(user_key(TAX_CODE), "total_tickets") == "2"
    assert (await ticketing.get_user(TAX_CODE)).value.total_tickets == 2


@pytest.mark.asyncio
async def test_concurrent_issuance_for_same_user(ticketing, redis_client, session_factory, test_user):
    """Parallel issuances each count once, durably and in the membership set."""
    count = 10

    results = await asyncio.gather(*(ticketing.issue_ticket(TICKET_REQUEST) for _ in range(count)))

    assert all(result.ok for result in results)
    ticket_ids = {result.value.ticket.ticket_id for result in results}
    assert len(ticket_ids) == count
    assert await durable_total_tickets(session_factory, TAX_CODE) == count
    assert await redis_client.smembers(active_tickets_key(TAX_CODE)) == ticket_ids
    assert await redis_client.hget(user_key(TAX_CODE), "total_tickets") == str(count)


@pytest.mark.asyncio
async def test_cached_counter_never_moves_backwards(ticketing, redis_client, test_user):
    """A sync that finishes late with an older total leaves the newer one in place."""
    now = datetime.now(timezone.utc)

    await ticketing.user_cache.sync_ticket_count(TAX_CODE, 6, now)
    await ticketing.user_cache.sync_ticket_count(TAX_CODE, 5, now - timedelta(seconds=1))

    assert await redis_client.hget(user_key(TAX_CODE), "total_tickets") == "6"
    assert await redis_client.hget(user_key(TAX_CODE), "last_ticket_at") == now.isoformat()
    assert (await ticketing.get_user(TAX_CODE)).value.total_tickets == 6


@pytest.mark.asyncio
async def test_counter_sync_skips_uncached_user(ticketing, redis_client, test_user):
    await ticketing.monitor.purge_all()

    await ticketing.user_cache.sync_ticket_count(TAX_CODE, 3, datetime.now(timezone.utc))

    assert not await redis_client.exists(user_key(TAX_CODE))


@pytest.mark.asyncio
async def test_issue_ticket_after_purge_resolves_from_durable(ticketing, session_factory, test_user):
    await ticketing.monitor.purge_all()

    result = await ticketing.issue_ticket(TICKET_REQUEST)

    assert result.ok
    assert await durable_total_tickets(session_factory, TAX_CODE) == 1


@pytest.mark.asyncio
async def test_ticket_expires(make_engine, test_user):
    """After the validity window the ticket is simply gone."""
    engine = make_engine(validity_seconds=1)
    ticket = (await engine.issue_ticket(TICKET_REQUEST)).value.ticket

    assert (await engine.get_ticket(ticket.ticket_id)).ok
    await asyncio.sleep(1.5)

    result = await engine.get_ticket(ticket.ticket_id)
    assert result.error.category == ErrorCategory.NOT_FOUND

    tickets = (await engine.get_user_tickets(TAX_CODE)).value
    assert tickets.active_ticket_count == 0
    assert tickets.total_purchased == 1

    stats = (await engine.get_user_ticket_stats(TAX_CODE)).value
    assert (stats.total_purchased, stats.active_count, stats.expired_count) == (1, 0, 1)


@pytest.mark.asyncio
async def test_membership_outlives_earlier_ticket(make_engine, test_user):
    """
    The membership set's TTL is reset by each new ticket, so an id whose
    ticket already expired is still listed while a newer ticket is live.
    """
    engine = make_engine(validity_seconds=2)
    first = (await engine.issue_ticket(TICKET_REQUEST)).value.ticket
    await asyncio.sleep(1.2)
    second = (await engine.issue_ticket(TICKET_REQUEST)).value.ticket
    await asyncio.sleep(1.2)

    assert (await engine.get_ticket(first.ticket_id)).error.category == ErrorCategory.NOT_FOUND
    assert (await engine.get_ticket(second.ticket_id)).ok

    tickets = (await engine.get_user_tickets(TAX_CODE)).value
    assert sorted(tickets.active_ticket_ids) == sorted([first.ticket_id, second.ticket_id])
    assert tickets.total_purchased == 2


@pytest.mark.asyncio
async def test_user_ticket_stats(ticketing, test_user):
    for _ in range(2):
        await ticketing.issue_ticket(TICKET_REQUEST)

    stats = (await ticketing.get_user_ticket_stats(TAX_CODE)).value

    assert stats.tax_code == TAX_CODE
    assert stats.name == "Test Rider"
    assert (stats.total_purchased, stats.active_count, stats.expired_count) == (2, 2, 0)


@pytest.mark.asyncio
async def test_durable_failure_is_compensated(
    ticketing, redis_client, session_factory, test_user, monkeypatch
):
    """Ticket written to Redis is rolled back when the counter cannot be persisted."""

    async def unavailable(*args, **kwargs):
        raise DependencyError("Record store unavailable", store="durable", operation="test")

    monkeypatch.setattr(user_service, "record_ticket_purchase", unavailable)

    result = await ticketing.issue_ticket(TICKET_REQUEST)

    assert not result.ok
    assert result.error.category == ErrorCategory.TRANSIENT_FAILURE
    assert result.error.status_code == 500
    assert result.error.retryable
    assert await _ticket_keys(redis_client) == []
    assert await redis_client.smembers(active_tickets_key(TAX_CODE)) == set()
    assert await durable_total_tickets(session_factory, TAX_CODE) == 0


@pytest.mark.asyncio
async def test_failed_compensation_leaves_ttl_bound_orphan(
    ticketing, redis_client, test_user, monkeypatch
):
    async def unavailable(*args, **kwargs):
        raise DependencyError("Record store unavailable", store="durable", operation="test")

    async def refuse_delete(*args, **kwargs):
        raise RedisConnectionError("Connection refused")

    monkeypatch.setattr(user_service, "record_ticket_purchase", unavailable)
    monkeypatch.setattr(redis_client, "delete", refuse_delete)

    result = await ticketing.issue_ticket(TICKET_REQUEST)

    assert result.error.category == ErrorCategory.TRANSIENT_FAILURE
    orphans = await _ticket_keys(redis_client)
    assert len(orphans) == 1
    assert 0 < await redis_client.ttl(orphans[0]) <= VALIDITY_SECONDS
    # The membership entry was still removed
    assert await redis_client.smembers(active_tickets_key(TAX_CODE)) == set()


@pytest.mark.asyncio
async def test_redis_failure_leaves_durable_store_untouched(
    ticketing, session_factory, test_user, broken_pipeline
):
    result = await ticketing.issue_ticket(TICKET_REQUEST)

    assert result.error.category == ErrorCategory.TRANSIENT_FAILURE
    assert result.error.status_code == 503
    assert result.error.retryable
    assert await durable_total_tickets(session_factory, TAX_CODE) == 0


@pytest.mark.asyncio
async def test_user_deleted_mid_issuance(ticketing, redis_client, session_factory, test_user):
    """A counter update that finds no row rolls the Redis writes back."""
    await ticketing.monitor.purge_all()
    await ticketing.get_user(TAX_CODE)  # cached again
    async with session_factory() as db:
        await db.execute(delete(User).where(User.tax_code == TAX_CODE))
        await db.commit()

    result = await ticketing.issue_ticket(TICKET_REQUEST)

    assert result.error.category == ErrorCategory.NOT_FOUND
    assert await _ticket_keys(redis_client) == []


@pytest.mark.asyncio
async def test_deleting_user_keeps_tickets(ticketing, redis_client, test_user):
    ticket = (await ticketing.issue_ticket(TICKET_REQUEST)).value.ticket

    await ticketing.delete_user(TAX_CODE)

    assert (await ticketing.get_ticket(ticket.ticket_id)).ok
    assert await redis_client.smembers(active_tickets_key(TAX_CODE)) == {ticket.ticket_id}
    assert (await ticketing.get_user_tickets(TAX_CODE)).error.category == ErrorCategory.NOT_FOUND

"""
User registry over the durable store, with the Redis projection kept in step.

Mutations always go to the database first; the cache is refreshed or
invalidated afterwards and a cache failure never undoes a committed change.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from transit_ticketing.core.exceptions import ConflictError, NotFoundError
from transit_ticketing.core.logging import get_logger
from transit_ticketing.db.base import utcnow
from transit_ticketing.infrastructure.guards import durable_call
from transit_ticketing.models.user import User
from transit_ticketing.schemas.user import UserCreate, UserResponse, UserUpdate
from transit_ticketing.services.cache_service import UserCache

logger = get_logger(__name__)


async def _find_by_tax_code(db: AsyncSession, tax_code: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.tax_code == tax_code))
    return result.scalar_one_or_none()


async def _find_by_contact(db: AsyncSession, contact: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.contact == contact))
    return result.scalar_one_or_none()


async def create_user(db: AsyncSession, cache: UserCache, user_data: UserCreate) -> UserResponse:
    """
    Register a new user with a zero ticket counter.
    Raises ConflictError if the tax code or contact is already registered.
    """
    async with durable_call("create_user"):
        if await _find_by_tax_code(db, user_data.tax_code):
            logger.warning("registration_failed", reason="tax_code_exists", tax_code=user_data.tax_code)
            raise ConflictError("User with this tax code already exists")

        if await _find_by_contact(db, user_data.contact):
            logger.warning("registration_failed", reason="contact_exists", tax_code=user_data.tax_code)
            raise ConflictError("Contact already registered")

        user = User(
            tax_code=user_data.tax_code,
            name=user_data.name,
            contact=user_data.contact,
            total_tickets=0,
        )
        db.add(user)
        await db.flush()
        await db.commit()

    record = UserResponse.model_validate(user)
    logger.info("user_registered", tax_code=record.tax_code)

    await cache.store(record)
    return record


async def get_user(db: AsyncSession, cache: UserCache, tax_code: str) -> UserResponse:
    """
    Cache-aside read. A hit is returned without touching the database; a miss
    reads the database and repopulates the cache.
    """
    cached = await cache.get(tax_code)
    if cached is not None:
        return cached

    async with durable_call("get_user"):
        user = await _find_by_tax_code(db, tax_code)

    if not user:
        raise NotFoundError("User not found", tax_code=tax_code)

    record = UserResponse.model_validate(user)
    await cache.store(record)
    return record


async def find_user_by_contact(db: AsyncSession, cache: UserCache, contact: str) -> UserResponse:
    """Resolve a user by contact address, using the cached reverse lookup when present."""
    tax_code = await cache.lookup_tax_code(contact)
    if tax_code:
        try:
            record = await get_user(db, cache, tax_code)
        except NotFoundError:
            record = None
        if record is not None and record.contact == contact:
            return record
        logger.info("contact_lookup_stale", tax_code=tax_code)
        await cache.remove_contact(contact)

    async with durable_call("find_user_by_contact"):
        user = await _find_by_contact(db, contact)

    if not user:
        raise NotFoundError("User not found")

    record = UserResponse.model_validate(user)
    await cache.store(record)
    return record


async def update_user(
    db: AsyncSession, cache: UserCache, tax_code: str, changes: UserUpdate
) -> UserResponse:
    """
    Apply the changed fields to the durable record, then refresh the projection.
    Raises ConflictError if the new contact belongs to a different user.
    """
    async with durable_call("update_user"):
        user = await _find_by_tax_code(db, tax_code)
        if not user:
            raise NotFoundError("User not found", tax_code=tax_code)

        old_contact = user.contact
        delta = {
            field: value
            for field, value in changes.model_dump(exclude_unset=True).items()
            if value is not None and getattr(user, field) != value
        }

        if "contact" in delta:
            owner = await _find_by_contact(db, delta["contact"])
            if owner is not None and owner.tax_code != tax_code:
                logger.warning("update_failed", reason="contact_exists", tax_code=tax_code)
                raise ConflictError("Contact already registered")

        if delta:
            for field, value in delta.items():
                setattr(user, field, value)
            user.updated_at = utcnow()
            await db.commit()

        # Pick up concurrent counter increments before projecting
        await db.refresh(user)

    record = UserResponse.model_validate(user)
    if delta:
        logger.info("user_updated", tax_code=tax_code, fields=sorted(delta))

    if "contact" in delta:
        await cache.remove_contact(old_contact)
    await cache.store(record)
    return record


async def delete_user(db: AsyncSession, cache: UserCache, tax_code: str) -> UserResponse:
    """
    Remove the durable record and its cache entries.
    Tickets and membership sets are left to expire on their own.
    """
    async with durable_call("delete_user"):
        user = await _find_by_tax_code(db, tax_code)
        if not user:
            raise NotFoundError("User not found", tax_code=tax_code)

        record = UserResponse.model_validate(user)
        await db.delete(user)
        await db.commit()

    logger.info("user_deleted", tax_code=tax_code)
    await cache.invalidate(tax_code, record.contact)
    return record


async def record_ticket_purchase(db: AsyncSession, tax_code: str, purchased_at: datetime) -> int:
    """
    Atomically increment the durable ticket counter and return the new total.
    Raises NotFoundError if the user row no longer exists.
    """
    async with durable_call("record_ticket_purchase"):
        result = await db.execute(
            update(User)
            .where(User.tax_code == tax_code)
            .values(total_tickets=User.total_tickets + 1, last_ticket_at=purchased_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            raise NotFoundError("User not found", tax_code=tax_code)

        total = (
            await db.execute(select(User.total_tickets).where(User.tax_code == tax_code))
        ).scalar_one()
        await db.commit()

    return total


async def get_ticket_total(db: AsyncSession, tax_code: str) -> int:
    """Authoritative purchase count, read straight from the database."""
    async with durable_call("get_ticket_total"):
        total = (
            await db.execute(select(User.total_tickets).where(User.tax_code == tax_code))
        ).scalar_one_or_none()

    if total is None:
        raise NotFoundError("User not found", tax_code=tax_code)
    return total

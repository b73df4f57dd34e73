"""
User registry endpoints.
"""

from fastapi import APIRouter, Depends, Query, status

from transit_ticketing.api.deps import get_engine, unwrap
from transit_ticketing.schemas.ticket import UserTicketsResponse, UserTicketStatsResponse
from transit_ticketing.schemas.user import UserCreate, UserResponse, UserUpdate
from transit_ticketing.services.engine import TicketingEngine

router = APIRouter(prefix="/users", tags=["Users"])


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(user_data: UserCreate, engine: TicketingEngine = Depends(get_engine)):
    """Register a user. Tax code and contact must both be unused."""
    return unwrap(await engine.create_user(user_data))


@router.get("/lookup", response_model=UserResponse)
async def find_user_by_contact(
    contact: str = Query(..., max_length=255),
    engine: TicketingEngine = Depends(get_engine),
):
    """Find a user by contact address."""
    return unwrap(await engine.find_user_by_contact(contact))


@router.get("/{tax_code}", response_model=UserResponse)
async def get_user(tax_code: str, engine: TicketingEngine = Depends(get_engine)):
    """Get a user, served from the cache when present."""
    return unwrap(await engine.get_user(tax_code))


@router.patch("/{tax_code}", response_model=UserResponse)
async def update_user(
    tax_code: str,
    changes: UserUpdate,
    engine: TicketingEngine = Depends(get_engine),
):
    """Change a user's name and/or contact."""
    return unwrap(await engine.update_user(tax_code, changes))


@router.delete("/{tax_code}", response_model=UserResponse)
async def delete_user(tax_code: str, engine: TicketingEngine = Depends(get_engine)):
    """Delete a user. Their tickets are left to expire."""
    return unwrap(await engine.delete_user(tax_code))


@router.get("/{tax_code}/tickets", response_model=UserTicketsResponse)
async def get_user_tickets(tax_code: str, engine: TicketingEngine = Depends(get_engine)):
    return unwrap(await engine.get_user_tickets(tax_code))


@router.get("/{tax_code}/ticket-stats", response_model=UserTicketStatsResponse)
async def get_user_ticket_stats(tax_code: str, engine: TicketingEngine = Depends(get_engine)):
    return unwrap(await engine.get_user_ticket_stats(tax_code))

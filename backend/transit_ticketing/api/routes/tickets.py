"""
Ticket endpoints. Tickets live only in Redis and disappear when their TTL elapses.
"""

from fastapi import APIRouter, Depends, status

from transit_ticketing.api.deps import get_engine, unwrap
from transit_ticketing.schemas.ticket import TicketCreate, TicketIssueResponse, TicketResponse
from transit_ticketing.services.engine import TicketingEngine

router = APIRouter(prefix="/tickets", tags=["Tickets"])


@router.post("/", response_model=TicketIssueResponse, status_code=status.HTTP_201_CREATED)
async def issue_ticket(ticket_data: TicketCreate, engine: TicketingEngine = Depends(get_engine)):
    """
    Issue a ticket for a registered user.

    A 5xx response means the ticket was not issued and the request may be
    retried. The engine never retries on its own.
    """
    return unwrap(await engine.issue_ticket(ticket_data))


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: str, engine: TicketingEngine = Depends(get_engine)):
    """Get a live ticket. Expired tickets return 404, same as unknown ids."""
    return unwrap(await engine.get_ticket(ticket_id))

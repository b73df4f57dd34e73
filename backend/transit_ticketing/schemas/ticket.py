"""
Pydantic schemas for tickets.

A ticket exists only in Redis. There is no "expired" status: once the key's
TTL elapses the ticket simply cannot be read any more.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from transit_ticketing.schemas.validators import TAX_CODE_PATTERN

TICKET_STATUS_ACTIVE = "active"


class TicketCreate(BaseModel):
    tax_code: str = Field(..., pattern=TAX_CODE_PATTERN)
    route_id: str = Field(..., min_length=1, max_length=64)
    trip_id: str = Field(..., min_length=1, max_length=128)


class Ticket(BaseModel):
    ticket_id: str
    user_id: str
    route_id: str
    trip_id: str
    name: str
    status: str = TICKET_STATUS_ACTIVE
    created_at: datetime
    expired_at: datetime


class TicketResponse(Ticket):
    time_remaining: int


class TicketIssueResponse(BaseModel):
    ticket: Ticket
    expires_in: int


class UserTicketsResponse(BaseModel):
    active_ticket_count: int
    active_ticket_ids: list[str]
    total_purchased: int


class UserTicketStatsResponse(BaseModel):
    tax_code: str
    name: str
    total_purchased: int
    active_count: int
    expired_count: int

from transit_ticketing.schemas.user import UserCreate, UserUpdate, UserResponse
from transit_ticketing.schemas.ticket import (
    Ticket,
    TicketCreate,
    TicketIssueResponse,
    TicketResponse,
    UserTicketsResponse,
    UserTicketStatsResponse,
)

__all__ = [
    "UserCreate", "UserUpdate", "UserResponse",
    "Ticket", "TicketCreate", "TicketIssueResponse", "TicketResponse",
    "UserTicketsResponse", "UserTicketStatsResponse",
]

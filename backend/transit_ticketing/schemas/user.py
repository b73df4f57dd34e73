"""
Pydantic schemas for user-related request/response validation.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from transit_ticketing.schemas.validators import CONTACT_PATTERN, TAX_CODE_PATTERN


class UserCreate(BaseModel):
    tax_code: str = Field(..., pattern=TAX_CODE_PATTERN)
    name: str = Field(..., min_length=1, max_length=255)
    contact: str = Field(..., max_length=255, pattern=CONTACT_PATTERN)


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    contact: Optional[str] = Field(None, max_length=255, pattern=CONTACT_PATTERN)

    # total_tickets and tax_code are not client-writable
    model_config = {"extra": "forbid"}


class UserResponse(BaseModel):
    tax_code: str
    name: str
    contact: str
    total_tickets: int = 0
    created_at: datetime
    updated_at: Optional[datetime] = None
    last_ticket_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

"""
Pydantic schemas for waitlist management.
"""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import Field

from ..models.waitlist import WaitlistEntry, WaitlistStatus
from .common import APIModel


class WaitlistJoin(APIModel):
    """Schema for joining a waitlist."""
    event_id: UUID = Field(..., description="ID of the sold-out event")
    ticket_type: Optional[str] = Field(None, description="Ticket type name; General for flat capacity events")
    quantity: int = Field(1, ge=1, description="Number of tickets wanted")


class WaitlistEntryResponse(APIModel):
    """Schema for waitlist entry responses."""
    id: UUID
    user_id: UUID
    event_id: UUID
    ticket_type: str
    quantity: int
    status: WaitlistStatus
    notified_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
    current_position: Optional[int] = Field(None, description="Place in the queue while waiting")

    @classmethod
    def from_entry(cls, entry: WaitlistEntry, position: Optional[int]) -> "WaitlistEntryResponse":
        response = cls.model_validate(entry)
        response.current_position = position
        return response


class EventWaitlistResponse(APIModel):
    """Event waitlist grouped by ticket type."""
    event_id: UUID
    ticket_types: Dict[str, List[WaitlistEntryResponse]]


class WaitlistAnalyticsResponse(APIModel):
    """Schema for waitlist statistics."""
    event_id: UUID
    total: int
    waiting: int
    notified: int
    converted: int
    expired: int
    conversion_rate: float = Field(..., description="Converted as a percentage of entries ever notified")


class WaitlistPromotionResponse(APIModel):
    """Result of a manual promotion."""
    promoted: bool
    entry: Optional[WaitlistEntryResponse] = None


class WaitlistSweepResponse(APIModel):
    """Result of an expiry sweep."""
    expired_count: int
    expired_ids: List[UUID]

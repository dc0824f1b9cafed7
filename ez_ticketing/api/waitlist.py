"""
FastAPI routes for waitlist management.
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.user import User
from ..models.waitlist import WaitlistStatus
from ..schemas.common import MessageResponse
from ..schemas.waitlist import (
    EventWaitlistResponse,
    WaitlistAnalyticsResponse,
    WaitlistEntryResponse,
    WaitlistJoin,
    WaitlistPromotionResponse,
    WaitlistSweepResponse,
)
from ..services.waitlist_service import WaitlistNotifier, WaitlistService
from ..utils.dependencies import get_current_admin_user, get_current_user, get_waitlist_notifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/waitlist", tags=["waitlist"])


@router.post("/join", response_model=WaitlistEntryResponse, status_code=status.HTTP_201_CREATED)
async def join_waitlist(
    waitlist_data: WaitlistJoin,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: WaitlistNotifier = Depends(get_waitlist_notifier)
):
    """
    Join the waitlist for a sold-out event.

    - **eventId**: ID of the event
    - **ticketType**: Ticket type name (General for events without ticket types)
    - **quantity**: Number of tickets wanted
    """
    waitlist_service = WaitlistService(db, notifier=notifier)
    entry = await waitlist_service.join(
        user_id=current_user.id,
        event_id=waitlist_data.event_id,
        ticket_type=waitlist_data.ticket_type,
        quantity=waitlist_data.quantity
    )
    position = await waitlist_service.position(entry)
    return WaitlistEntryResponse.from_entry(entry, position)


@router.get("/my-waitlist", response_model=List[WaitlistEntryResponse])
async def get_my_waitlist_entries(
    status_filter: Optional[List[WaitlistStatus]] = Query(None, alias="status", description="Filter by status"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: WaitlistNotifier = Depends(get_waitlist_notifier)
):
    """Get the current user's waitlist entries with their queue positions."""
    waitlist_service = WaitlistService(db, notifier=notifier)
    entries = await waitlist_service.get_user_entries(current_user.id, statuses=status_filter)
    return [WaitlistEntryResponse.from_entry(entry, position) for entry, position in entries]


@router.delete("/{entry_id}", response_model=MessageResponse)
async def leave_waitlist(
    entry_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Leave the waitlist. Nobody is promoted in your place."""
    await WaitlistService(db).leave(entry_id, current_user.id)
    return MessageResponse(message="Successfully left waitlist")


@router.get("/event/{event_id}", response_model=EventWaitlistResponse)
async def get_event_waitlist(
    event_id: UUID,
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
):
    """Get an event's waitlist grouped by ticket type (admin only)."""
    grouped = await WaitlistService(db).get_event_waitlist(event_id)
    return EventWaitlistResponse(
        event_id=event_id,
        ticket_types={
            name: [WaitlistEntryResponse.from_entry(entry, position) for entry, position in entries]
            for name, entries in grouped.items()
        }
    )


@router.get("/event/{event_id}/analytics", response_model=WaitlistAnalyticsResponse)
async def get_waitlist_analytics(
    event_id: UUID,
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
):
    """Get waitlist status counts and conversion rate (admin only)."""
    analytics = await WaitlistService(db).get_analytics(event_id)
    return WaitlistAnalyticsResponse(event_id=event_id, **analytics)


@router.post("/event/{event_id}/notify", response_model=WaitlistPromotionResponse)
async def notify_waitlist(
    event_id: UUID,
    quantity: int = Query(..., ge=1, description="Number of units to offer"),
    ticket_type: Optional[str] = Query(None, alias="ticketType", description="Ticket type name"),
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    notifier: WaitlistNotifier = Depends(get_waitlist_notifier)
):
    """Promote the oldest waiting entry that fits ``quantity`` (admin only)."""
    entry = await WaitlistService(db, notifier=notifier).notify_next(event_id, ticket_type, quantity)
    logger.info(f"Admin {admin_user.id} triggered waitlist promotion for event {event_id}")
    return WaitlistPromotionResponse(
        promoted=entry is not None,
        entry=WaitlistEntryResponse.from_entry(entry, None) if entry else None
    )


@router.post("/cleanup", response_model=WaitlistSweepResponse)
async def cleanup_waitlist(
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    notifier: WaitlistNotifier = Depends(get_waitlist_notifier)
):
    """Expire lapsed notifications and promote the next entries (admin only)."""
    expired = await WaitlistService(db, notifier=notifier).sweep_expired()
    return WaitlistSweepResponse(
        expired_count=len(expired),
        expired_ids=[entry.id for entry in expired]
    )

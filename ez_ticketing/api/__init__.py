"""API endpoints for the EZ Ticketing service."""

from fastapi import APIRouter
from .bookings import router as bookings_router
from .waitlist import router as waitlist_router
from .notifications import router as notifications_router

# Create main API router
api_router = APIRouter(prefix="/api/v1")

api_router.include_router(bookings_router)
api_router.include_router(waitlist_router)
api_router.include_router(notifications_router)

__all__ = ["api_router"]

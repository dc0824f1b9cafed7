"""Business logic services for EZ Ticketing."""

from .capacity_ledger import CapacityLedger
from .booking_service import BookingService
from .waitlist_service import WaitlistService
from .notification_service import NotificationService

__all__ = ["CapacityLedger", "BookingService", "WaitlistService", "NotificationService"]

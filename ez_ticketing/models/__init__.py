"""
Database models for the EZ Ticketing service.
"""

from .base import Base
from .user import User, UserRole, ADMIN_ROLES, STAFF_ROLES
from .event import Event, TicketType, DEFAULT_TICKET_TYPE
from .reservation import Reservation
from .booking import Booking, BookingStatus
from .waitlist import WaitlistEntry, WaitlistStatus, ACTIVE_WAITLIST_STATUSES
from .notification import (
    MessageType,
    Notification,
    NotificationStatus,
    NotificationTemplate,
    RecipientType,
)

__all__ = [
    "Base",
    "User",
    "UserRole",
    "ADMIN_ROLES",
    "STAFF_ROLES",
    "Event",
    "TicketType",
    "DEFAULT_TICKET_TYPE",
    "Reservation",
    "Booking",
    "BookingStatus",
    "WaitlistEntry",
    "WaitlistStatus",
    "ACTIVE_WAITLIST_STATUSES",
    "MessageType",
    "Notification",
    "NotificationStatus",
    "NotificationTemplate",
    "RecipientType",
]

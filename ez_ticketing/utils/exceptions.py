"""
Custom exceptions for the EZ Ticketing service.
"""

from typing import Any, Dict, Optional, List
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for the service."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Allocation errors
    INSUFFICIENT_CAPACITY = "INSUFFICIENT_CAPACITY"
    SEAT_CONFLICT = "SEAT_CONFLICT"
    PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"

    # Waitlist errors
    ALREADY_ON_WAITLIST = "ALREADY_ON_WAITLIST"
    INVALID_WAITLIST_STATE = "INVALID_WAITLIST_STATE"

    # Notification errors
    DUPLICATE_RECENT = "DUPLICATE_RECENT"

    # External service errors
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    EMAIL_SERVICE_ERROR = "EMAIL_SERVICE_ERROR"


class TicketingError(Exception):
    """Base exception class for the ticketing service."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.suggestions = suggestions or []
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
        }

        if self.details:
            result["details"] = self.details

        if self.suggestions:
            result["suggestions"] = self.suggestions

        return result


class ValidationError(TicketingError):
    """Exception raised for malformed requests."""

    def __init__(self, message: str, field_errors: Optional[Dict[str, List[str]]] = None, **kwargs):
        kwargs.setdefault("details", {"field_errors": field_errors} if field_errors else None)
        super().__init__(
            message,
            error_code=ErrorCode.VALIDATION_ERROR,
            **kwargs
        )
        self.field_errors = field_errors or {}


class NotFoundError(TicketingError):
    """Base exception for resource not found errors."""

    def __init__(self, message: str, resource_type: Optional[str] = None, resource_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id} if resource_type else None,
            **kwargs
        )


class EventNotFoundError(NotFoundError):
    """Exception raised when an event is not found."""

    def __init__(self, event_id: str, **kwargs):
        super().__init__(
            f"Event {event_id} not found",
            resource_type="event",
            resource_id=str(event_id),
            suggestions=["Check the event ID", "Browse available events"],
            **kwargs
        )


class TicketTypeNotFoundError(NotFoundError):
    """Exception raised when a ticket type does not belong to the event."""

    def __init__(self, ticket_type: str, event_id: str, **kwargs):
        super().__init__(
            f"Ticket type {ticket_type} not found for event {event_id}",
            resource_type="ticket_type",
            resource_id=str(ticket_type),
            **kwargs
        )


class BookingNotFoundError(NotFoundError):
    """Exception raised when a booking is not found."""

    def __init__(self, booking_id: str, **kwargs):
        super().__init__(
            f"Booking {booking_id} not found",
            resource_type="booking",
            resource_id=str(booking_id),
            suggestions=["Check the booking ID", "View your booking history"],
            **kwargs
        )


class WaitlistEntryNotFoundError(NotFoundError):
    """Exception raised when a waitlist entry is not found."""

    def __init__(self, entry_id: str, **kwargs):
        super().__init__(
            f"Waitlist entry {entry_id} not found",
            resource_type="waitlist_entry",
            resource_id=str(entry_id),
            **kwargs
        )


class AuthenticationError(TicketingError):
    """Exception raised for authentication failures."""

    def __init__(self, message: str = "Could not validate credentials", **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.UNAUTHORIZED,
            suggestions=["Check your credentials", "Login again"],
            **kwargs
        )


class AuthorizationError(TicketingError):
    """Exception raised for authorization failures."""

    def __init__(self, message: str = "Access denied", required_permission: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.FORBIDDEN,
            details={"required_permission": required_permission} if required_permission else None,
            suggestions=["Contact an administrator for access"],
            **kwargs
        )


class BusinessLogicError(TicketingError):
    """Base exception for business rule violations."""
    pass


class InsufficientCapacityError(BusinessLogicError):
    """Exception raised when the requested quantity exceeds available units."""

    def __init__(self, requested: int, available: int, event_id: Optional[str] = None, **kwargs):
        super().__init__(
            f"Not enough tickets available: requested {requested}, available {available}",
            error_code=ErrorCode.INSUFFICIENT_CAPACITY,
            details={
                "requested": requested,
                "available": available,
                "event_id": str(event_id) if event_id else None,
            },
            suggestions=["Try booking fewer tickets", "Join the waitlist"],
            **kwargs
        )
        self.requested = requested
        self.available = available


class SeatConflictError(BusinessLogicError):
    """Exception raised when a requested seat is already booked."""

    def __init__(self, seat: int, **kwargs):
        super().__init__(
            f"Seat {seat} is already booked",
            error_code=ErrorCode.SEAT_CONFLICT,
            details={"seat": seat},
            suggestions=["Choose a different seat", "Refresh seat availability"],
            **kwargs
        )
        self.seat = seat


class PersistenceFailureError(TicketingError):
    """Exception raised when a booking could not be stored.

    Raised only after the capacity taken for the booking has been given back.
    """

    def __init__(self, message: str = "The booking could not be saved", **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.PERSISTENCE_FAILURE,
            suggestions=["Please submit the booking again"],
            **kwargs
        )


class AlreadyOnWaitlistError(BusinessLogicError):
    """Exception raised when a user already holds an active entry."""

    def __init__(self, event_id: str, ticket_type: str, **kwargs):
        super().__init__(
            f"You are already on the waitlist for {ticket_type} tickets",
            error_code=ErrorCode.ALREADY_ON_WAITLIST,
            details={"event_id": str(event_id), "ticket_type": ticket_type},
            **kwargs
        )


class InvalidWaitlistStateError(BusinessLogicError):
    """Exception raised when a waitlist entry cannot make the requested transition."""

    def __init__(self, entry_id: str, current_state: str, message: Optional[str] = None, **kwargs):
        super().__init__(
            message or f"Waitlist entry {entry_id} is {current_state}",
            error_code=ErrorCode.INVALID_WAITLIST_STATE,
            details={"entry_id": str(entry_id), "current_state": current_state},
            **kwargs
        )


class DuplicateRecentError(BusinessLogicError):
    """Exception raised when the same broadcast was sent within the dedup window."""

    def __init__(self, dedup_key: str, window_minutes: int, **kwargs):
        super().__init__(
            "This notification was already sent recently.",
            error_code=ErrorCode.DUPLICATE_RECENT,
            details={"dedup_key": dedup_key, "window_minutes": window_minutes},
            **kwargs
        )


class ExternalServiceError(TicketingError):
    """Exception raised for external service failures."""

    def __init__(self, service_name: str, message: str, status_code: Optional[int] = None, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.EXTERNAL_SERVICE_ERROR)
        kwargs.setdefault("details", {"service_name": service_name, "status_code": status_code})
        super().__init__(
            f"{service_name} service error: {message}",
            suggestions=["Try again later", "Contact support if problem persists"],
            **kwargs
        )


class EmailServiceError(ExternalServiceError):
    """Exception raised for email transport failures."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            "email",
            message,
            error_code=ErrorCode.EMAIL_SERVICE_ERROR,
            **kwargs
        )

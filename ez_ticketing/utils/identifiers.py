"""Human-facing identifiers for bookings and tickets."""

import secrets
import string
from datetime import datetime
from typing import List, Optional

from .timeutils import utcnow

_ALPHABET = string.digits + string.ascii_uppercase


def random_code(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def generate_booking_reference(now: Optional[datetime] = None) -> str:
    """Booking reference like ``BK-20240115-7QK2Z``."""
    now = now or utcnow()
    return f"BK-{now:%Y%m%d}-{random_code(5)}"


def generate_ticket_ids(count: int, length: int = 8) -> List[str]:
    """One distinct ticket id per unit."""
    ticket_ids: List[str] = []
    while len(ticket_ids) < count:
        candidate = random_code(length)
        if candidate not in ticket_ids:
            ticket_ids.append(candidate)
    return ticket_ids

"""
Seat map resolution.

Seats are not stored. They are positions 1..capacity laid out row-major in
rows of a fixed width, so every caller that knows the capacity derives the
same layout.
"""

from typing import Iterable, List, Optional, Sequence

from ..utils.exceptions import SeatConflictError, ValidationError

DEFAULT_COLUMNS = 10

def layout(capacity: int, columns: int = DEFAULT_COLUMNS) -> List[List[int]]:
    """
    Build the seat grid for a venue.

    Args:
        capacity: Number of seats
        columns: Seats per row

    Returns:
        Rows of seat numbers, left to right and top to bottom; the last row
        may be shorter than ``columns``.
    """
    if columns < 1:
        raise ValueError("columns must be positive")
    if capacity <= 0:
        return []
    return [
        list(range(start, min(start + columns, capacity + 1)))
        for start in range(1, capacity + 1, columns)
    ]


def validate_seats(
    requested_seats: Sequence[int],
    booked_seats: Iterable[int],
    quantity: int,
    capacity: Optional[int],
) -> None:
    """
    Check a seat selection against the seats already taken.

    Args:
        requested_seats: Seat numbers chosen by the caller, in request order
        booked_seats: Seats held by non-cancelled bookings for the event
        quantity: Number of tickets being booked
        capacity: Seat capacity of the event

    Raises:
        ValidationError: If the count does not match ``quantity``, a seat is
            repeated or a seat is outside ``[1, capacity]``
        SeatConflictError: On the first requested seat that is already booked
    """
    if capacity is None:
        raise ValidationError("Seat selection is not available for this event")

    if len(requested_seats) != quantity:
        raise ValidationError(
            f"Selected {len(requested_seats)} seats for {quantity} tickets",
            field_errors={"seats": ["number of seats must equal quantity"]}
        )

    if len(set(requested_seats)) != len(requested_seats):
        raise ValidationError(
            "The same seat was selected more than once",
            field_errors={"seats": ["seats must be unique"]}
        )

    out_of_range = [seat for seat in requested_seats if seat < 1 or seat > capacity]
    if out_of_range:
        raise ValidationError(
            f"Seat {out_of_range[0]} does not exist",
            field_errors={"seats": [f"seat numbers must be between 1 and {capacity}"]}
        )

    taken = set(booked_seats)
    for seat in requested_seats:
        if seat in taken:
            raise SeatConflictError(seat)

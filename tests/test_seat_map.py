import pytest

from ez_ticketing.services.seat_map import layout, validate_seats
from ez_ticketing.utils.exceptions import SeatConflictError, ValidationError


def test_layout_for_23_seats_has_partial_last_row():
    assert layout(23, 10) == [
        list(range(1, 11)),
        list(range(11, 21)),
        [21, 22, 23],
    ]


def test_layout_is_deterministic():
    assert layout(57) == layout(57)
    assert len(layout(57)) == 6
    assert layout(30, 10)[-1] == list(range(21, 31))


def test_layout_of_empty_venue():
    assert layout(0) == []


def test_validate_seats_accepts_free_seats():
    validate_seats([3, 4], booked_seats={1, 2}, quantity=2, capacity=10)


def test_validate_seats_reports_first_conflicting_seat():
    with pytest.raises(SeatConflictError) as exc_info:
        validate_seats([5, 7, 8], booked_seats=[8, 7], quantity=3, capacity=10)
    assert exc_info.value.seat == 7
    assert exc_info.value.details == {"seat": 7}


@pytest.mark.parametrize("seats,quantity", [([1, 2], 3), ([1], 2), ([], 1)])
def test_validate_seats_requires_one_seat_per_ticket(seats, quantity):
    with pytest.raises(ValidationError):
        validate_seats(seats, booked_seats=[], quantity=quantity, capacity=10)


@pytest.mark.parametrize("seat", [0, 11, -3])
def test_validate_seats_rejects_seats_outside_venue(seat):
    with pytest.raises(ValidationError):
        validate_seats([seat], booked_seats=[], quantity=1, capacity=10)


def test_validate_seats_rejects_duplicates():
    with pytest.raises(ValidationError):
        validate_seats([4, 4], booked_seats=[], quantity=2, capacity=10)


def test_validate_seats_rejects_unlimited_events():
    with pytest.raises(ValidationError):
        validate_seats([1], booked_seats=[], quantity=1, capacity=None)

"""Booking status state machine.

``late`` is normally a view: an ``active`` booking whose end date has passed
is presented as late without anything rewriting the stored status. A booking
may still be moved to a persisted ``late`` state explicitly.
"""
from datetime import datetime
from typing import Dict, FrozenSet

from .errors import InvalidTransition
from .models import Booking, BookingStatus

ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.RESERVED: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.PICKUP, BookingStatus.ACTIVE, BookingStatus.CANCELLED}),
    BookingStatus.PICKUP: frozenset({BookingStatus.ACTIVE}),
    BookingStatus.ACTIVE: frozenset({BookingStatus.RETURNED, BookingStatus.LATE}),
    BookingStatus.LATE: frozenset({BookingStatus.RETURNED}),
    BookingStatus.RETURNED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)
OVERDUE_CANDIDATES = frozenset({BookingStatus.ACTIVE, BookingStatus.LATE})


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return BookingStatus(target) in ALLOWED_TRANSITIONS[BookingStatus(current)]


def ensure_transition(current: BookingStatus, target: BookingStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(BookingStatus(current).value, BookingStatus(target).value)


def is_overdue(booking: Booking, now: datetime) -> bool:
    return booking.status in OVERDUE_CANDIDATES and booking.end_date <= now


def presented_status(booking: Booking, now: datetime) -> BookingStatus:
    if is_overdue(booking, now):
        return BookingStatus.LATE
    return booking.status

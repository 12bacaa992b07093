"""Booking slot conflict detection.

Ranges are half-open ``[start, end)``: a booking ending at 10:00 does not
conflict with one starting at 10:00. Every non-cancelled booking holds its
slot, including plain reservations. Product quantity is not considered; any
overlapping booking blocks the product.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from .models import Booking, BookingStatus, Product


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and end_a > start_b


def within_product_window(product: Product, start: datetime, end: datetime) -> bool:
    """Whether ``[start, end)`` sits inside the product's optional listing window."""
    if product.available_from is not None and start < product.available_from:
        return False
    if product.available_until is not None and end > product.available_until:
        return False
    return True


def _conflict_query(db: Session, product_id: int, start: datetime, end: datetime, exclude_booking_id: Optional[int]):
    query = db.query(Booking).filter(
        Booking.product_id == product_id,
        Booking.status != BookingStatus.CANCELLED,
        Booking.start_date < end,
        Booking.end_date > start,
    )
    if exclude_booking_id is not None:
        query = query.filter(Booking.id != exclude_booking_id)
    return query


def find_conflicts(
    db: Session,
    product_id: int,
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[int] = None,
) -> List[Booking]:
    return _conflict_query(db, product_id, start, end, exclude_booking_id).order_by(Booking.start_date).all()


def is_available(
    db: Session,
    product_id: int,
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[int] = None,
) -> bool:
    """Return ``False`` when any live booking on the product overlaps ``[start, end)``.

    The caller guarantees the product exists and ``start < end``.
    """
    query = _conflict_query(db, product_id, start, end, exclude_booking_id)
    return not db.query(query.exists()).scalar()

"""Booking workflow built on the availability, pricing and lifecycle rules.

Route handlers call into this module; it owns every write to a booking row
after creation. Availability is checked and the row inserted as two
sequential statements, so two concurrent requests for the same slot can
both pass the check.
"""
from __future__ import annotations

import logging
from datetime import datetime, time
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from .availability import is_available, within_product_window
from .config import Settings, get_settings
from .errors import InvalidRange, NotFound, PricingMismatch, PricingUnavailable, Unavailable
from .events import publish_booking_event
from .lifecycle import OVERDUE_CANDIDATES, ensure_transition, is_overdue, presented_status
from .models import Booking, BookingStatus, BusinessConfig, DurationType, LateFee, Product, ProductPricing, User
from .pricing import (
    PricingConfig,
    PricingResult,
    compute_late_fee,
    compute_pricing,
    days_late,
    merge_clock_time,
    quantize_money,
    to_naive_utc,
)
from .schemas import BookingCreate, BookingRead, QuoteRequest

logger = logging.getLogger(__name__)

LATE_FEE_RATE_KEY = "late_fee_rate"
PRICE_TOLERANCE = Decimal("0.01")


def load_pricing_config(db: Session, settings: Optional[Settings] = None) -> PricingConfig:
    """Settings defaults, with the late fee rate overridden by the business config row."""
    settings = settings or get_settings()
    late_fee_rate = settings.late_fee_rate
    row = db.query(BusinessConfig).filter(BusinessConfig.key == LATE_FEE_RATE_KEY).first()
    if row is not None:
        try:
            late_fee_rate = Decimal(row.value)
        except InvalidOperation:
            logger.warning("Ignoring non-numeric %s value %r", LATE_FEE_RATE_KEY, row.value)
    return PricingConfig(service_fee=settings.service_fee, late_fee_rate=late_fee_rate)


def get_product(db: Session, product_id: int) -> Product:
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFound("Product not found")
    return product


def get_booking(db: Session, booking_id: int) -> Booking:
    booking = db.query(Booking).filter(Booking.id == booking_id).first()
    if not booking:
        raise NotFound("Booking not found")
    return booking


def get_active_pricing(db: Session, product_id: int, duration_type: DurationType) -> ProductPricing:
    pricing = (
        db.query(ProductPricing)
        .filter(
            ProductPricing.product_id == product_id,
            ProductPricing.duration_type == DurationType(duration_type),
            ProductPricing.is_active.is_(True),
        )
        .first()
    )
    if not pricing:
        raise PricingUnavailable(f"Product cannot be booked {DurationType(duration_type).value}")
    return pricing


def resolve_range(
    start_date: datetime,
    end_date: datetime,
    start_time: Optional[time] = None,
    end_time: Optional[time] = None,
) -> Tuple[datetime, datetime]:
    """Merge optional clock times onto the dates, then normalise both ends to naive UTC."""
    start = merge_clock_time(start_date, start_time) if start_time is not None else start_date
    end = merge_clock_time(end_date, end_time) if end_time is not None else end_date
    start, end = to_naive_utc(start), to_naive_utc(end)
    if start >= end:
        raise InvalidRange("End date must be after start date")
    return start, end


def _ensure_bookable(product: Product, quantity: int, start: datetime, end: datetime) -> None:
    if not product.is_active:
        raise Unavailable("Product is not available for booking")
    if product.quantity <= 0:
        raise Unavailable("Product is out of stock")
    if quantity > product.quantity:
        raise Unavailable(f"Only {product.quantity} unit(s) of this product can be rented")
    if not within_product_window(product, start, end):
        raise InvalidRange("Requested dates fall outside the product availability window")


def _ensure_duration_bounds(pricing: ProductPricing, duration: int) -> None:
    unit = pricing.duration_type.value
    if pricing.min_duration and duration < pricing.min_duration:
        raise InvalidRange(f"Minimum {unit} duration is {pricing.min_duration}")
    if pricing.max_duration is not None and duration > pricing.max_duration:
        raise InvalidRange(f"Maximum {unit} duration is {pricing.max_duration}")


def _ensure_client_totals(request: BookingCreate, result: PricingResult) -> None:
    submitted = (
        ("base_price", request.base_price, result.base_price),
        ("discount", request.discount, result.discount),
        ("service_fee", request.service_fee, result.service_fee),
        ("total_amount", request.total_amount, result.total),
    )
    for name, client_value, server_value in submitted:
        if client_value is None:
            continue
        if abs(client_value - server_value) > PRICE_TOLERANCE:
            logger.warning(
                "Rejected booking for product %s: client %s=%s, computed %s",
                request.product_id,
                name,
                client_value,
                server_value,
            )
            raise PricingMismatch(f"Submitted {name} {client_value} does not match {quantize_money(server_value)}")


def quote(db: Session, product: Product, request: QuoteRequest, config: PricingConfig) -> PricingResult:
    start, end = resolve_range(request.start_date, request.end_date, request.start_time, request.end_time)
    pricing = get_active_pricing(db, product.id, request.duration_type)
    result = compute_pricing(pricing, start, end, request.quantity, config=config)
    _ensure_duration_bounds(pricing, result.duration)
    return result


def create_booking(
    db: Session,
    customer: User,
    request: BookingCreate,
    config: Optional[PricingConfig] = None,
) -> Booking:
    product = get_product(db, request.product_id)
    start, end = resolve_range(request.start_date, request.end_date, request.start_time, request.end_time)
    _ensure_bookable(product, request.quantity, start, end)

    config = config or load_pricing_config(db)
    pricing = get_active_pricing(db, product.id, request.duration_type)
    result = compute_pricing(pricing, start, end, request.quantity, config=config)
    _ensure_duration_bounds(pricing, result.duration)
    _ensure_client_totals(request, result)

    if not is_available(db, product.id, start, end):
        raise Unavailable("Product is not available for the selected dates")

    booking = Booking(
        customer_id=customer.id,
        product_id=product.id,
        status=BookingStatus.RESERVED,
        quantity=request.quantity,
        start_date=start,
        end_date=end,
        duration_type=pricing.duration_type,
        base_price=quantize_money(result.base_price),
        discount=quantize_money(result.discount),
        service_fee=quantize_money(result.service_fee),
        late_fee=Decimal("0"),
        total_amount=quantize_money(result.total),
        notes=request.notes,
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    logger.info(
        "Booking %s reserved product %s for user %s (%s to %s, total %s)",
        booking.id,
        product.id,
        customer.id,
        start.isoformat(),
        end.isoformat(),
        booking.total_amount,
    )
    publish_booking_event("booking_created", booking)
    return booking


def current_late_fee(booking: Booking, config: PricingConfig, now: datetime) -> Decimal:
    """Late fee owed right now; fixed once the booking has been returned."""
    if booking.status == BookingStatus.RETURNED:
        return booking.late_fee or Decimal("0")
    if not is_overdue(booking, now):
        return Decimal("0")
    return compute_late_fee(booking.base_price, booking.end_date, now, config.late_fee_rate)


def late_days(booking: Booking, now: datetime) -> int:
    if booking.status == BookingStatus.RETURNED and booking.actual_return_date is not None:
        return days_late(booking.end_date, booking.actual_return_date)
    if not is_overdue(booking, now):
        return 0
    return days_late(booking.end_date, now)


def calculate_late_fees(
    db: Session,
    booking_id: int,
    now: Optional[datetime] = None,
    config: Optional[PricingConfig] = None,
) -> Decimal:
    booking = get_booking(db, booking_id)
    return current_late_fee(booking, config or load_pricing_config(db), now or datetime.utcnow())


def _lock_in_late_fee(db: Session, booking: Booking, now: datetime, config: PricingConfig) -> None:
    booking.actual_return_date = now
    fee = compute_late_fee(booking.base_price, booking.end_date, now, config.late_fee_rate)
    if fee <= 0:
        return
    fee = quantize_money(fee)
    booking.late_fee = fee
    booking.total_amount = booking.total_amount + fee
    db.add(
        LateFee(
            booking_id=booking.id,
            days_late=days_late(booking.end_date, now),
            daily_rate=config.late_fee_rate,
            fee_amount=fee,
        )
    )
    logger.info("Booking %s returned late; locked in late fee %s", booking.id, fee)


def transition_booking(
    db: Session,
    booking: Booking,
    target: BookingStatus,
    now: Optional[datetime] = None,
    payment_reference: Optional[str] = None,
    config: Optional[PricingConfig] = None,
) -> Booking:
    target = BookingStatus(target)
    previous = booking.status
    ensure_transition(previous, target)
    now = now or datetime.utcnow()

    if target == BookingStatus.CONFIRMED and payment_reference:
        booking.payment_reference = payment_reference
    if target == BookingStatus.RETURNED:
        _lock_in_late_fee(db, booking, now, config or load_pricing_config(db))
    booking.status = target

    db.commit()
    db.refresh(booking)
    logger.info("Booking %s moved from %s to %s", booking.id, previous.value, target.value)
    publish_booking_event("booking_status_changed", booking, previous_status=previous.value)
    return booking


def record_payment(db: Session, booking: Booking, payment_reference: str) -> Booking:
    if booking.status == BookingStatus.CANCELLED:
        raise Unavailable("Cannot record a payment for a cancelled booking")
    booking.payment_reference = payment_reference
    db.commit()
    db.refresh(booking)
    logger.info("Recorded payment %s for booking %s", payment_reference, booking.id)
    return booking


def late_bookings(db: Session, now: Optional[datetime] = None) -> List[Booking]:
    now = now or datetime.utcnow()
    return (
        db.query(Booking)
        .filter(Booking.status.in_(list(OVERDUE_CANDIDATES)), Booking.end_date <= now)
        .order_by(Booking.end_date)
        .all()
    )


def booking_view(booking: Booking, config: PricingConfig, now: Optional[datetime] = None) -> BookingRead:
    now = now or datetime.utcnow()
    return BookingRead.model_validate(booking).model_copy(
        update={
            "display_status": presented_status(booking, now),
            "current_late_fee": current_late_fee(booking, config, now),
        }
    )

"""Duration-aware rental pricing and late fee arithmetic.

Every function here is pure: callers pass the pricing row, the resolved range
and the clock. Amounts keep full ``Decimal`` precision so that discount, fee and
total never compound rounding error; ``quantize_money`` rounds to cents only
when a figure is persisted or rendered.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Protocol, Union

from .models import DurationType

Number = Union[Decimal, int, float, str]

_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")
_DAY = timedelta(days=1)

DEFAULT_SERVICE_FEE = Decimal("8.50")
DEFAULT_LATE_FEE_RATE = Decimal("5")

# Monthly is a flat 30 days, not calendar aware.
DURATION_UNITS: dict[DurationType, timedelta] = {
    DurationType.HOURLY: timedelta(hours=1),
    DurationType.DAILY: _DAY,
    DurationType.WEEKLY: timedelta(days=7),
    DurationType.MONTHLY: timedelta(days=30),
}


class PricingRow(Protocol):
    duration_type: DurationType
    base_price: Decimal
    discount_percentage: Optional[Decimal]


@dataclass(frozen=True)
class PricingConfig:
    service_fee: Decimal = DEFAULT_SERVICE_FEE
    late_fee_rate: Decimal = DEFAULT_LATE_FEE_RATE


@dataclass(frozen=True)
class PricingResult:
    duration: int
    base_price: Decimal
    discount: Decimal
    service_fee: Decimal
    total: Decimal


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(value: Number) -> Decimal:
    return to_decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def merge_clock_time(day: datetime, clock: time) -> datetime:
    """Place a wall-clock time onto the calendar day of ``day``, in ``day``'s own offset."""

    return datetime.combine(day.date(), clock, tzinfo=day.tzinfo)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def compute_duration(duration_type: DurationType | str, start: datetime, end: datetime) -> int:
    """Number of billable units between ``start`` and ``end``, rounded up, at least 1."""

    unit = DURATION_UNITS[DurationType(duration_type)]
    units = -((start - end) // unit)
    return max(units, 1)


def compute_pricing(
    pricing_row: PricingRow,
    start: datetime,
    end: datetime,
    quantity: int,
    start_time: Optional[time] = None,
    end_time: Optional[time] = None,
    config: Optional[PricingConfig] = None,
) -> PricingResult:
    """Price a rental of ``quantity`` units under ``pricing_row``.

    Explicit clock times are merged onto the date components first, so a
    same-day hourly rental is billed from wall-clock hours.
    """
    config = config or PricingConfig()
    if start_time is not None:
        start = merge_clock_time(start, start_time)
    if end_time is not None:
        end = merge_clock_time(end, end_time)

    duration = compute_duration(pricing_row.duration_type, start, end)
    base_price = to_decimal(pricing_row.base_price) * duration * quantity
    discount = base_price * to_decimal(pricing_row.discount_percentage or 0) / _HUNDRED
    service_fee = to_decimal(config.service_fee)
    return PricingResult(
        duration=duration,
        base_price=base_price,
        discount=discount,
        service_fee=service_fee,
        total=base_price - discount + service_fee,
    )


def days_late(end_date: datetime, now: datetime) -> int:
    """Whole days elapsed since ``end_date``; 0 on or before it."""

    return max((now - end_date) // _DAY, 0)


def compute_late_fee(base_price: Number, end_date: datetime, now: datetime, rate: Number) -> Decimal:
    late_days = days_late(end_date, now)
    if late_days <= 0:
        return Decimal("0")
    daily_fee = to_decimal(base_price) * to_decimal(rate) / _HUNDRED
    return daily_fee * late_days

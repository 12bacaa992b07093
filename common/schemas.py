"""Pydantic schemas shared across the microservices."""
from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Annotated, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, PlainSerializer, model_validator
from pydantic.alias_generators import to_camel

from .models import BookingStatus, DurationType, RoleEnum
from .pricing import quantize_money, to_naive_utc


def _at_midnight(value: Union[datetime, date]) -> datetime:
    if not isinstance(value, datetime):
        return datetime.combine(value, time.min)
    return value


def _as_naive_utc(value: Union[datetime, date]) -> datetime:
    # Date-only values start at midnight; aware values are stored as naive UTC.
    return to_naive_utc(_at_midnight(value))


RequestDateTime = Annotated[Union[datetime, date], AfterValidator(_as_naive_utc)]
# Keeps the submitted offset so clock times land on the caller's calendar day.
RangeDateTime = Annotated[Union[datetime, date], AfterValidator(_at_midnight)]
Money = Annotated[Decimal, PlainSerializer(lambda value: str(quantize_money(value)), return_type=str, when_used="json")]


def _ensure_window_order(available_from: Optional[datetime], available_until: Optional[datetime]) -> None:
    if available_from is not None and available_until is not None and available_from >= available_until:
        raise ValueError("available_until must be after available_from")


class CamelRequest(BaseModel):
    """Accepts both the camelCase keys sent by the web client and snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserBase(BaseModel):
    name: str = Field(..., max_length=100)
    username: str = Field(..., max_length=50)
    email: EmailStr
    role: RoleEnum = RoleEnum.CUSTOMER


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)


class UserRead(UserBase):
    id: int
    created_at: datetime

    model_config = {"from_attributes": True}


class CategoryCreate(BaseModel):
    name: str = Field(..., max_length=100)
    description: Optional[str] = None


class CategoryRead(CategoryCreate):
    id: int

    model_config = {"from_attributes": True}


class ProductBase(CamelRequest):
    name: str = Field(..., max_length=200)
    description: Optional[str] = None
    category_id: Optional[int] = None
    location: Optional[str] = Field(None, max_length=200)
    quantity: int = Field(1, ge=0)
    is_active: bool = True
    available_from: Optional[RequestDateTime] = None
    available_until: Optional[RequestDateTime] = None

    @model_validator(mode="after")
    def _check_window(self) -> "ProductBase":
        _ensure_window_order(self.available_from, self.available_until)
        return self


class ProductCreate(ProductBase):
    pass


class ProductUpdate(CamelRequest):
    name: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    category_id: Optional[int] = None
    location: Optional[str] = Field(None, max_length=200)
    quantity: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    available_from: Optional[RequestDateTime] = None
    available_until: Optional[RequestDateTime] = None

    @model_validator(mode="after")
    def _check_window(self) -> "ProductUpdate":
        _ensure_window_order(self.available_from, self.available_until)
        return self


class ProductRead(BaseModel):
    id: int
    owner_id: int
    name: str
    description: Optional[str] = None
    category_id: Optional[int] = None
    location: Optional[str] = None
    quantity: int
    is_active: bool
    available_from: Optional[datetime] = None
    available_until: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class PricingCreate(CamelRequest):
    duration_type: DurationType
    base_price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    discount_percentage: Decimal = Field(Decimal("0"), ge=0, le=100)
    min_duration: int = Field(1, ge=1)
    max_duration: Optional[int] = Field(None, ge=1)
    is_active: bool = True

    @model_validator(mode="after")
    def _check_bounds(self) -> "PricingCreate":
        if self.max_duration is not None and self.max_duration < self.min_duration:
            raise ValueError("max_duration must be greater than or equal to min_duration")
        return self


class PricingRead(BaseModel):
    id: int
    product_id: int
    duration_type: DurationType
    base_price: Money
    discount_percentage: Decimal
    min_duration: int
    max_duration: Optional[int] = None
    is_active: bool

    model_config = {"from_attributes": True}


class RangeRequest(CamelRequest):
    start_date: RangeDateTime
    end_date: RangeDateTime
    start_time: Optional[time] = None
    end_time: Optional[time] = None


class AvailabilityRequest(RangeRequest):
    pass


class AvailabilityResponse(BaseModel):
    available: bool


class QuoteRequest(RangeRequest):
    duration_type: DurationType = DurationType.DAILY
    quantity: int = Field(1, ge=1)


class QuoteRead(BaseModel):
    duration: int
    base_price: Money
    discount: Money
    service_fee: Money
    total: Money


class BookingCreate(QuoteRequest):
    product_id: int
    notes: Optional[str] = None
    # Totals computed by the client; checked against the server computation when present.
    base_price: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    service_fee: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None


class BookingRead(BaseModel):
    id: int
    customer_id: int
    product_id: int
    status: BookingStatus
    display_status: Optional[BookingStatus] = None
    quantity: int
    start_date: datetime
    end_date: datetime
    actual_return_date: Optional[datetime] = None
    duration_type: DurationType
    base_price: Money
    discount: Money
    service_fee: Money
    late_fee: Money
    current_late_fee: Money = Decimal("0")
    total_amount: Money
    payment_reference: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TransitionRequest(CamelRequest):
    payment_reference: Optional[str] = Field(None, max_length=255)


class PaymentUpdate(CamelRequest):
    payment_reference: str = Field(..., min_length=1, max_length=255)


class LateFeeRead(BaseModel):
    booking_id: int
    days_late: int
    late_fee: Money


class BusinessConfigRead(BaseModel):
    key: str
    value: str
    data_type: str
    description: Optional[str] = None
    updated_at: datetime

    model_config = {"from_attributes": True}


class BusinessConfigUpdate(CamelRequest):
    value: str = Field(..., min_length=1)
    data_type: str = "string"
    description: Optional[str] = None


class DurationOption(BaseModel):
    duration_type: DurationType
    unit_hours: int


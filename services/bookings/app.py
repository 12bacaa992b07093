from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.orm import Session

from common import booking_service
from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import (
    allow_roles,
    ensure_booking_access,
    ensure_booking_manager,
    get_current_active_user,
    get_pricing_config,
)
from common.errors import register_error_handlers
from common.lifecycle import OVERDUE_CANDIDATES
from common.logging_middleware import add_audit_middleware
from common.models import Booking, BookingStatus, BusinessConfig, RoleEnum, User
from common.pricing import PricingConfig, to_naive_utc
from common.rate_limit import READ_LIMIT, WRITE_LIMIT, apply_rate_limiter, limiter
from common.schemas import (
    BookingCreate,
    BookingRead,
    BusinessConfigRead,
    BusinessConfigUpdate,
    LateFeeRead,
    PaymentUpdate,
    TransitionRequest,
)

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Bookings Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    register_error_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "bookings")
    Instrumentator().instrument(fastapi_app).expose(fastapi_app)
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "bookings"}


def _accessible_booking(db: Session, booking_id: int, current_user: User) -> Booking:
    booking = booking_service.get_booking(db, booking_id)
    ensure_booking_access(booking, current_user)
    return booking


def _managed_booking(db: Session, booking_id: int, current_user: User) -> Booking:
    booking = booking_service.get_booking(db, booking_id)
    ensure_booking_manager(booking, current_user)
    return booking


@app.get("/api/bookings", response_model=List[BookingRead])
@limiter.limit(READ_LIMIT)
def list_my_bookings(
    request: Request,
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    product_id: Optional[int] = None,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    current_user: User = Depends(get_current_active_user),
    config: PricingConfig = Depends(get_pricing_config),
    db: Session = Depends(get_db),
) -> List[BookingRead]:
    now = datetime.utcnow()
    query = db.query(Booking).filter(Booking.customer_id == current_user.id)
    if product_id is not None:
        query = query.filter(Booking.product_id == product_id)
    if start_date is not None:
        query = query.filter(Booking.start_date >= to_naive_utc(start_date))
    if end_date is not None:
        query = query.filter(Booking.end_date <= to_naive_utc(end_date))
    if status_filter == BookingStatus.LATE:
        query = query.filter(Booking.status.in_(list(OVERDUE_CANDIDATES)), Booking.end_date <= now)
    elif status_filter is not None:
        query = query.filter(Booking.status == status_filter)
    bookings = query.order_by(Booking.start_date.desc()).all()
    return [booking_service.booking_view(booking, config, now) for booking in bookings]


@app.post("/api/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
@limiter.limit(WRITE_LIMIT)
def create_booking(
    request: Request,
    booking_in: BookingCreate,
    current_user: User = Depends(get_current_active_user),
    config: PricingConfig = Depends(get_pricing_config),
    db: Session = Depends(get_db),
) -> BookingRead:
    booking = booking_service.create_booking(db, current_user, booking_in, config=config)
    return booking_service.booking_view(booking, config)


@app.get("/api/bookings/{booking_id}", response_model=BookingRead)
@limiter.limit(READ_LIMIT)
def read_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_active_user),
    config: PricingConfig = Depends(get_pricing_config),
    db: Session = Depends(get_db),
) -> BookingRead:
    booking = _accessible_booking(db, booking_id, current_user)
    return booking_service.booking_view(booking, config)


def _transition(
    db: Session,
    booking: Booking,
    target: BookingStatus,
    config: PricingConfig,
    payment_reference: Optional[str] = None,
) -> BookingRead:
    booking = booking_service.transition_booking(
        db, booking, target, payment_reference=payment_reference, config=config
    )
    return booking_service.booking_view(booking, config)


@app.post("/api/bookings/{booking_id}/confirm", response_model=BookingRead)
@limiter.limit(WRITE_LIMIT)
def confirm_booking(
    request: Request,
    booking_id: int,
    transition_in: Optional[TransitionRequest] = None,
    current_user: User = Depends(get_current_active_user),
    config: PricingConfig = Depends(get_pricing_config),
    db: Session = Depends(get_db),
) -> BookingRead:
    payment_reference = transition_in.payment_reference if transition_in else None
    booking = _accessible_booking(db, booking_id, current_user)
    # Without a payment on file the confirmation is the owner's approval.
    if not (payment_reference or booking.payment_reference):
        ensure_booking_manager(booking, current_user)
    return _transition(db, booking, BookingStatus.CONFIRMED, config, payment_reference)


@app.post("/api/bookings/{booking_id}/pickup", response_model=BookingRead)
@limiter.limit(WRITE_LIMIT)
def schedule_pickup(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_active_user),
    config: PricingConfig = Depends(get_pricing_config),
    db: Session = Depends(get_db),
) -> BookingRead:
    return _transition(db, _managed_booking(db, booking_id, current_user), BookingStatus.PICKUP, config)


@app.post("/api/bookings/{booking_id}/activate", response_model=BookingRead)
@limiter.limit(WRITE_LIMIT)
def activate_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_active_user),
    config: PricingConfig = Depends(get_pricing_config),
    db: Session = Depends(get_db),
) -> BookingRead:
    return _transition(db, _managed_booking(db, booking_id, current_user), BookingStatus.ACTIVE, config)


@app.post("/api/bookings/{booking_id}/return", response_model=BookingRead)
@limiter.limit(WRITE_LIMIT)
def return_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_active_user),
    config: PricingConfig = Depends(get_pricing_config),
    db: Session = Depends(get_db),
) -> BookingRead:
    return _transition(db, _managed_booking(db, booking_id, current_user), BookingStatus.RETURNED, config)


@app.post("/api/bookings/{booking_id}/cancel", response_model=BookingRead)
@limiter.limit(WRITE_LIMIT)
def cancel_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_active_user),
    config: PricingConfig = Depends(get_pricing_config),
    db: Session = Depends(get_db),
) -> BookingRead:
    return _transition(db, _accessible_booking(db, booking_id, current_user), BookingStatus.CANCELLED, config)


@app.post("/api/bookings/{booking_id}/mark-late", response_model=BookingRead)
@limiter.limit(WRITE_LIMIT)
def mark_booking_late(
    request: Request,
    booking_id: int,
    current_user: User = Depends(allow_roles(RoleEnum.ADMIN)),
    config: PricingConfig = Depends(get_pricing_config),
    db: Session = Depends(get_db),
) -> BookingRead:
    return _transition(db, _managed_booking(db, booking_id, current_user), BookingStatus.LATE, config)


@app.patch("/api/bookings/{booking_id}/payment", response_model=BookingRead)
@limiter.limit(WRITE_LIMIT)
def record_booking_payment(
    request: Request,
    booking_id: int,
    payment_in: PaymentUpdate,
    current_user: User = Depends(get_current_active_user),
    config: PricingConfig = Depends(get_pricing_config),
    db: Session = Depends(get_db),
) -> BookingRead:
    booking = _accessible_booking(db, booking_id, current_user)
    booking = booking_service.record_payment(db, booking, payment_in.payment_reference)
    return booking_service.booking_view(booking, config)


@app.get("/api/bookings/{booking_id}/late-fee", response_model=LateFeeRead)
@limiter.limit(READ_LIMIT)
def booking_late_fee(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_active_user),
    config: PricingConfig = Depends(get_pricing_config),
    db: Session = Depends(get_db),
) -> LateFeeRead:
    booking = _accessible_booking(db, booking_id, current_user)
    now = datetime.utcnow()
    return LateFeeRead(
        booking_id=booking.id,
        days_late=booking_service.late_days(booking, now),
        late_fee=booking_service.current_late_fee(booking, config, now),
    )


@app.get("/api/admin/late-bookings", response_model=List[BookingRead])
@limiter.limit(READ_LIMIT)
def admin_late_bookings(
    request: Request,
    _: User = Depends(allow_roles(RoleEnum.ADMIN)),
    config: PricingConfig = Depends(get_pricing_config),
    db: Session = Depends(get_db),
) -> List[BookingRead]:
    now = datetime.utcnow()
    return [booking_service.booking_view(booking, config, now) for booking in booking_service.late_bookings(db, now)]


@app.get("/api/config/business", response_model=List[BusinessConfigRead])
@limiter.limit(READ_LIMIT)
def list_business_config(
    request: Request,
    _: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> List[BusinessConfig]:
    return db.query(BusinessConfig).order_by(BusinessConfig.key).all()


@app.put("/api/config/business/{key}", response_model=BusinessConfigRead)
@limiter.limit(WRITE_LIMIT)
def update_business_config(
    request: Request,
    key: str,
    config_in: BusinessConfigUpdate,
    _: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> BusinessConfig:
    if key == booking_service.LATE_FEE_RATE_KEY:
        try:
            rate = Decimal(config_in.value)
        except InvalidOperation:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="late_fee_rate must be a number")
        if not rate.is_finite() or not Decimal("0") <= rate <= Decimal("100"):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="late_fee_rate must be between 0 and 100")

    row = db.query(BusinessConfig).filter(BusinessConfig.key == key).first()
    if row is None:
        row = BusinessConfig(key=key)
        db.add(row)
    row.value = config_in.value
    row.data_type = config_in.data_type
    if config_in.description is not None:
        row.description = config_in.description
    db.commit()
    db.refresh(row)
    return row

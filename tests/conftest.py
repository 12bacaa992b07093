import os
from datetime import datetime
from decimal import Decimal
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("EVENTS_ENABLED", "false")

from common.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from common.auth import get_password_hash  # noqa: E402
from common.database import Base, SessionLocal, engine  # noqa: E402
from common.models import (  # noqa: E402
    Booking,
    BookingStatus,
    DurationType,
    Product,
    ProductPricing,
    RoleEnum,
    User,
)
from services.bookings.app import app as bookings_app  # noqa: E402
from services.products.app import app as products_app  # noqa: E402
from services.products.app import pricing_cache  # noqa: E402
from services.users.app import app as users_app  # noqa: E402

PASSWORD = "Passw0rd!"


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    pricing_cache.clear()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def users_client() -> Generator[TestClient, None, None]:
    with TestClient(users_app) as client:
        yield client


@pytest.fixture()
def products_client() -> Generator[TestClient, None, None]:
    with TestClient(products_app) as client:
        yield client


@pytest.fixture()
def bookings_client() -> Generator[TestClient, None, None]:
    with TestClient(bookings_app) as client:
        yield client


@pytest.fixture()
def make_user(db_session) -> Callable[..., User]:
    def _make_user(username: str, role: RoleEnum = RoleEnum.CUSTOMER) -> User:
        user = User(
            name=username.title(),
            username=username,
            email=f"{username}@example.com",
            role=role,
            hashed_password=get_password_hash(PASSWORD),
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def owner(make_user) -> User:
    return make_user("owner")


@pytest.fixture()
def customer(make_user) -> User:
    return make_user("customer")


@pytest.fixture()
def make_product(db_session, owner) -> Callable[..., Product]:
    def _make_product(name: str = "Camping Tent", **overrides) -> Product:
        product = Product(owner_id=owner.id, name=name, location="Pune", quantity=1, is_active=True)
        for key, value in overrides.items():
            setattr(product, key, value)
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product

    return _make_product


@pytest.fixture()
def product(make_product) -> Product:
    return make_product()


@pytest.fixture()
def add_pricing(db_session) -> Callable[..., ProductPricing]:
    def _add_pricing(
        product: Product,
        duration_type: DurationType = DurationType.DAILY,
        base_price: str = "50.00",
        discount_percentage: str = "0",
        **overrides,
    ) -> ProductPricing:
        pricing = ProductPricing(
            product_id=product.id,
            duration_type=duration_type,
            base_price=Decimal(base_price),
            discount_percentage=Decimal(discount_percentage),
            min_duration=1,
            is_active=True,
        )
        for key, value in overrides.items():
            setattr(pricing, key, value)
        db_session.add(pricing)
        db_session.commit()
        db_session.refresh(pricing)
        return pricing

    return _add_pricing


@pytest.fixture()
def make_booking(db_session, customer) -> Callable[..., Booking]:
    """Insert a booking row directly, bypassing the workflow checks."""

    def _make_booking(
        product: Product,
        start: datetime,
        end: datetime,
        status: BookingStatus = BookingStatus.CONFIRMED,
        base_price: str = "100.00",
    ) -> Booking:
        booking = Booking(
            customer_id=customer.id,
            product_id=product.id,
            status=status,
            quantity=1,
            start_date=start,
            end_date=end,
            duration_type=DurationType.DAILY,
            base_price=Decimal(base_price),
            discount=Decimal("0"),
            service_fee=Decimal("8.50"),
            late_fee=Decimal("0"),
            total_amount=Decimal(base_price) + Decimal("8.50"),
        )
        db_session.add(booking)
        db_session.commit()
        db_session.refresh(booking)
        return booking

    return _make_booking

from contextlib import asynccontextmanager
from typing import List, Optional

from circuitbreaker import circuit
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from common.availability import is_available, within_product_window
from common.booking_service import get_product, quote, resolve_range
from common.cache import PricingCache
from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import allow_roles, get_current_active_user, get_pricing_config
from common.errors import InvalidRange, register_error_handlers
from common.logging_middleware import add_audit_middleware
from common.models import Category, Product, ProductPricing, RoleEnum, User
from common.pricing import DURATION_UNITS, PricingConfig
from common.rate_limit import POLL_LIMIT, READ_LIMIT, WRITE_LIMIT, apply_rate_limiter, limiter
from common.schemas import (
    AvailabilityRequest,
    AvailabilityResponse,
    CategoryCreate,
    CategoryRead,
    DurationOption,
    PricingCreate,
    PricingRead,
    ProductCreate,
    ProductRead,
    ProductUpdate,
    QuoteRead,
    QuoteRequest,
)

settings = get_settings()
pricing_cache: PricingCache[PricingRead] = PricingCache(ttl=settings.pricing_cache_ttl)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Products Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    register_error_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "products")
    return fastapi_app


app = create_app()


def _ensure_owner(product: Product, current_user: User) -> None:
    if current_user.role != RoleEnum.ADMIN and product.owner_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the owner can change this product")


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "products"}


@app.get("/api/categories", response_model=List[CategoryRead])
@limiter.limit(READ_LIMIT)
def list_categories(request: Request, db: Session = Depends(get_db)) -> List[Category]:
    return db.query(Category).order_by(Category.name).all()


@app.post("/api/categories", response_model=CategoryRead, status_code=status.HTTP_201_CREATED)
@limiter.limit(WRITE_LIMIT)
def add_category(
    request: Request,
    category_in: CategoryCreate,
    _: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> Category:
    if db.query(Category).filter(Category.name == category_in.name).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Category already exists")
    category = Category(**category_in.model_dump())
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


@app.post("/api/products", response_model=ProductRead, status_code=status.HTTP_201_CREATED)
@limiter.limit(WRITE_LIMIT)
def add_product(
    request: Request,
    product_in: ProductCreate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> Product:
    if product_in.category_id is not None and not db.get(Category, product_in.category_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown category")
    product = Product(owner_id=current_user.id, **product_in.model_dump())
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


@app.get("/api/products", response_model=List[ProductRead])
@circuit(failure_threshold=5, recovery_timeout=60)
def list_products(
    request: Request,
    category_id: Optional[int] = None,
    location: Optional[str] = None,
    search: Optional[str] = None,
    owner_id: Optional[int] = None,
    db: Session = Depends(get_db),
) -> List[Product]:
    query = db.query(Product).filter(Product.is_active.is_(True))
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    if location:
        query = query.filter(Product.location.ilike(f"%{location}%"))
    if search:
        query = query.filter(Product.name.ilike(f"%{search}%") | Product.description.ilike(f"%{search}%"))
    if owner_id is not None:
        query = query.filter(Product.owner_id == owner_id)
    return query.order_by(Product.created_at.desc()).all()


@app.get("/api/products/{product_id}", response_model=ProductRead)
@limiter.limit(READ_LIMIT)
def read_product(request: Request, product_id: int, db: Session = Depends(get_db)) -> Product:
    return get_product(db, product_id)


@app.put("/api/products/{product_id}", response_model=ProductRead)
@limiter.limit(WRITE_LIMIT)
def update_product(
    request: Request,
    product_id: int,
    product_update: ProductUpdate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> Product:
    product = get_product(db, product_id)
    _ensure_owner(product, current_user)

    for key, value in product_update.model_dump(exclude_unset=True).items():
        setattr(product, key, value)
    if (
        product.available_from is not None
        and product.available_until is not None
        and product.available_from >= product.available_until
    ):
        db.rollback()
        raise InvalidRange("available_until must be after available_from")
    db.commit()
    db.refresh(product)
    return product


@app.get("/api/products/{product_id}/pricing", response_model=List[PricingRead])
@limiter.limit(READ_LIMIT)
def product_pricing(request: Request, product_id: int, db: Session = Depends(get_db)) -> List[PricingRead]:
    cached = pricing_cache.get(product_id)
    if cached is not None:
        return cached
    get_product(db, product_id)
    rows = (
        db.query(ProductPricing)
        .filter(ProductPricing.product_id == product_id, ProductPricing.is_active.is_(True))
        .order_by(ProductPricing.id)
        .all()
    )
    return pricing_cache.store(product_id, [PricingRead.model_validate(row) for row in rows])


@app.post("/api/products/{product_id}/pricing", response_model=PricingRead, status_code=status.HTTP_201_CREATED)
@limiter.limit(WRITE_LIMIT)
def add_product_pricing(
    request: Request,
    product_id: int,
    pricing_in: PricingCreate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> ProductPricing:
    product = get_product(db, product_id)
    _ensure_owner(product, current_user)

    if pricing_in.is_active:
        # At most one active row per duration type; the new row supersedes the old one.
        db.query(ProductPricing).filter(
            ProductPricing.product_id == product_id,
            ProductPricing.duration_type == pricing_in.duration_type,
            ProductPricing.is_active.is_(True),
        ).update({ProductPricing.is_active: False}, synchronize_session=False)

    pricing = ProductPricing(product_id=product_id, **pricing_in.model_dump())
    db.add(pricing)
    db.commit()
    db.refresh(pricing)
    pricing_cache.invalidate(product_id)
    return pricing


@app.post("/api/products/{product_id}/check-availability", response_model=AvailabilityResponse)
@limiter.limit(POLL_LIMIT)
def check_availability(
    request: Request,
    product_id: int,
    availability_in: AvailabilityRequest,
    db: Session = Depends(get_db),
) -> AvailabilityResponse:
    product = get_product(db, product_id)
    start, end = resolve_range(
        availability_in.start_date,
        availability_in.end_date,
        availability_in.start_time,
        availability_in.end_time,
    )
    if not product.is_active or product.quantity <= 0 or not within_product_window(product, start, end):
        return AvailabilityResponse(available=False)
    return AvailabilityResponse(available=is_available(db, product.id, start, end))


@app.post("/api/products/{product_id}/quote", response_model=QuoteRead)
@limiter.limit(POLL_LIMIT)
def quote_product(
    request: Request,
    product_id: int,
    quote_in: QuoteRequest,
    config: PricingConfig = Depends(get_pricing_config),
    db: Session = Depends(get_db),
) -> QuoteRead:
    product = get_product(db, product_id)
    result = quote(db, product, quote_in, config)
    return QuoteRead(
        duration=result.duration,
        base_price=result.base_price,
        discount=result.discount,
        service_fee=result.service_fee,
        total=result.total,
    )


@app.get("/api/config/durations", response_model=List[DurationOption])
def duration_options() -> List[DurationOption]:
    return [
        DurationOption(duration_type=duration_type, unit_hours=int(unit.total_seconds() // 3600))
        for duration_type, unit in DURATION_UNITS.items()
    ]

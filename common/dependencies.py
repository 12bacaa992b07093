"""Reusable FastAPI dependencies for auth and database access."""
from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from .auth import decode_token
from .booking_service import load_pricing_config
from .database import get_db
from .models import Booking, RoleEnum, User
from .pricing import PricingConfig

oauth_scheme = OAuth2PasswordBearer(tokenUrl="/api/users/login")


def get_current_user(token: str = Depends(oauth_scheme), db: Session = Depends(get_db)) -> User:
    payload = decode_token(token)
    username: str | None = payload.get("sub")
    if username is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing subject in token")
    user = db.query(User).filter(User.username == username).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    return current_user


def allow_roles(*roles: RoleEnum) -> Callable[[User], User]:
    def dependency(current_user: User = Depends(get_current_active_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return dependency


def get_pricing_config(db: Session = Depends(get_db)) -> PricingConfig:
    return load_pricing_config(db)


def ensure_booking_access(booking: Booking, user: User) -> None:
    """Customers, the product owner and admins may act on a booking."""

    if user.role == RoleEnum.ADMIN or booking.customer_id == user.id:
        return
    if booking.product is not None and booking.product.owner_id == user.id:
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")


def ensure_booking_manager(booking: Booking, user: User) -> None:
    """Handover steps belong to the product owner and admins."""

    if user.role == RoleEnum.ADMIN:
        return
    if booking.product is not None and booking.product.owner_id == user.id:
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the product owner can do this")

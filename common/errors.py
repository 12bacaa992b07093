"""Domain errors raised by the booking core and their HTTP mapping."""
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class RentalError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFound(RentalError):
    status_code = status.HTTP_404_NOT_FOUND


class PricingUnavailable(NotFound):
    """No active pricing row exists for the requested duration type."""

    status_code = status.HTTP_400_BAD_REQUEST


class InvalidRange(RentalError):
    status_code = status.HTTP_400_BAD_REQUEST


class Unavailable(RentalError):
    status_code = status.HTTP_409_CONFLICT


class InvalidTransition(RentalError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move booking from {current} to {target}")
        self.current = current
        self.target = target


class PricingMismatch(RentalError):
    status_code = status.HTTP_400_BAD_REQUEST


def rental_error_handler(_: Request, exc: RentalError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def register_error_handlers(app: FastAPI) -> None:
    """Render domain errors as ``{"detail": ...}`` responses."""

    app.add_exception_handler(RentalError, rental_error_handler)

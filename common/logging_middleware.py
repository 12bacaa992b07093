"""HTTP audit logging middleware and logger setup shared by services."""
from __future__ import annotations

import logging
from pathlib import Path
from time import time
from typing import Optional

from fastapi import FastAPI, Request

from .config import get_settings

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _log_dir() -> Path:
    path = Path(get_settings().log_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def _file_handler(service_name: str) -> logging.Handler:
    handler = logging.FileHandler(_log_dir() / f"{service_name}.log")
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))
    return handler


def _build_logger(service_name: str) -> logging.Logger:
    logger = logging.getLogger(f"audit.{service_name}")
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    logger.addHandler(_file_handler(service_name))
    return logger


def configure_core_logging(service_name: str) -> None:
    """Route booking core loggers (``common.*``) into the service log file."""

    core_logger = logging.getLogger("common")
    if any(getattr(handler, "_service", None) == service_name for handler in core_logger.handlers):
        return
    handler = _file_handler(service_name)
    handler._service = service_name  # type: ignore[attr-defined]
    core_logger.addHandler(handler)
    core_logger.setLevel(get_settings().log_level.upper())


def add_audit_middleware(app: FastAPI, service_name: str) -> None:
    logger = _build_logger(service_name)
    configure_core_logging(service_name)

    @app.middleware("http")
    async def audit_logger(request: Request, call_next):  # type: ignore[override]
        start = time()
        response = await call_next(request)
        duration_ms = (time() - start) * 1000
        client_ip: Optional[str] = None
        if request.client:
            client_ip = request.client.host
        logger.info(
            "%s %s | status=%s | client=%s | duration=%.2fms",
            request.method,
            request.url.path,
            response.status_code,
            client_ip or "unknown",
            duration_ms,
        )
        return response

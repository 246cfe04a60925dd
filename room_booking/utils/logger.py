"""Logging setup shared by the booking engine and its HTTP surface."""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional

from room_booking.utils.config import get_settings


_LOGGER_INITIALIZED = False

CONTEXT_ATTRIBUTE = "booking_context"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s%(booking_context)s"


class BookingContextFilter(logging.Filter):
    """Default the booking context for records logged without ``extra``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, CONTEXT_ATTRIBUTE):
            setattr(record, CONTEXT_ATTRIBUTE, "")
        return True


def build_handler(stream: Any = None) -> logging.Handler:
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.addFilter(BookingContextFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def configure_logging(level: Optional[str] = None) -> None:
    """Configure process-wide logging once.

    Booking, ledger and storage lines share one pipe-separated format; the
    key=value context passed through ``log_fields`` is appended in brackets.
    """

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    settings = get_settings()
    resolved_level = (level or settings.log_level).upper()

    logging.basicConfig(level=resolved_level, handlers=[build_handler()])
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    """Return a configured logger for the requested module."""
    configure_logging()
    return logging.getLogger(name)


def log_fields(**fields: Any) -> dict[str, str]:
    """Build the ``extra`` mapping for a log call, skipping empty values."""
    rendered = " ".join(
        f"{key}={value}" for key, value in fields.items() if value is not None
    )
    return {CONTEXT_ATTRIBUTE: f" [{rendered}]" if rendered else ""}

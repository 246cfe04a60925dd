"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


_ENV_PREFIX = "ROOM_BOOKING_"


def _env(name: str, default: str) -> str:
    return os.getenv(f"{_ENV_PREFIX}{name}", default)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(f"{_ENV_PREFIX}{name}")
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{_ENV_PREFIX}{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(f"{_ENV_PREFIX}{name}")
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{_ENV_PREFIX}{name} must be a number, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(f"{_ENV_PREFIX}{name}")
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    database_busy_timeout_seconds: float

    booking_min_duration_minutes: int
    booking_max_duration_minutes: int
    booking_cancellation_grace_minutes: int
    booking_billing_increment_minutes: int

    billing_timezone: str
    default_personal_credits: float
    default_organization_monthly_credits: float

    seed_demo_data: bool

    server_host: str
    server_port: int
    server_reload: bool


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; tests override via dataclasses.replace."""
    return Settings(
        app_name=_env("APP_NAME", "Room Booking Engine"),
        app_version=_env("APP_VERSION", "1.0.0"),
        log_level=_env("LOG_LEVEL", "INFO"),
        database_path=Path(_env("DATABASE_PATH", "data/room_booking.db")),
        database_busy_timeout_seconds=_env_float("DATABASE_BUSY_TIMEOUT_SECONDS", 5.0),
        booking_min_duration_minutes=_env_int("MIN_DURATION_MINUTES", 30),
        booking_max_duration_minutes=_env_int("MAX_DURATION_MINUTES", 600),
        booking_cancellation_grace_minutes=_env_int("CANCELLATION_GRACE_MINUTES", 15),
        booking_billing_increment_minutes=_env_int("BILLING_INCREMENT_MINUTES", 30),
        billing_timezone=_env("BILLING_TIMEZONE", "Asia/Karachi"),
        default_personal_credits=_env_float("DEFAULT_PERSONAL_CREDITS", 30.0),
        default_organization_monthly_credits=_env_float(
            "DEFAULT_ORGANIZATION_MONTHLY_CREDITS", 30.0
        ),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", True),
        server_host=_env("HOST", "127.0.0.1"),
        server_port=_env_int("PORT", 8000),
        server_reload=_env_bool("RELOAD", False),
    )

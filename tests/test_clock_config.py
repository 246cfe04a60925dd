from __future__ import annotations

import io
import logging
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest

from room_booking.utils.clock import billing_month_bounds, from_storage, to_local, to_storage
from room_booking.utils.config import get_settings
from room_booking.utils.logger import build_handler, log_fields


@pytest.fixture
def clean_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_storage_format_normalizes_offsets_to_utc() -> None:
    karachi = timezone(timedelta(hours=5))
    local = datetime(2026, 3, 11, 14, 30, tzinfo=karachi)
    stored = to_storage(local)
    assert stored == "2026-03-11T09:30:00.000000+00:00"
    assert from_storage(stored) == local


def test_storage_strings_sort_chronologically() -> None:
    instants = [
        datetime(2026, 3, 11, 9, 0, tzinfo=timezone.utc),
        datetime(2026, 3, 11, 9, 0, 0, 1, tzinfo=timezone.utc),
        datetime(2026, 3, 11, 23, 59, tzinfo=timezone(timedelta(hours=-5))),
        datetime(2026, 12, 1, tzinfo=timezone.utc),
    ]
    assert sorted(instants, key=to_storage) == sorted(instants)


def test_naive_datetimes_are_not_persisted() -> None:
    with pytest.raises(ValueError):
        to_storage(datetime(2026, 3, 11, 9, 0))


def test_to_local_uses_site_timezone() -> None:
    local = to_local(datetime(2026, 3, 11, 20, 0, tzinfo=timezone.utc), "Asia/Karachi")
    assert (local.day, local.hour) == (12, 1)


def test_billing_month_bounds_in_karachi() -> None:
    start, end = billing_month_bounds("Asia/Karachi", month=date(2026, 3, 17))
    assert start == datetime(2026, 2, 28, 19, 0, tzinfo=timezone.utc)
    assert end == datetime(2026, 3, 31, 19, 0, tzinfo=timezone.utc)


def test_billing_month_bounds_roll_over_the_year() -> None:
    start, end = billing_month_bounds("Asia/Karachi", month=date(2026, 12, 5))
    assert start == datetime(2026, 11, 30, 19, 0, tzinfo=timezone.utc)
    assert end == datetime(2026, 12, 31, 19, 0, tzinfo=timezone.utc)


def test_billing_month_follows_local_date_of_now() -> None:
    now = datetime(2026, 3, 31, 20, 0, tzinfo=timezone.utc)
    start, _ = billing_month_bounds("Asia/Karachi", now=now)
    assert start == datetime(2026, 3, 31, 19, 0, tzinfo=timezone.utc)


def test_settings_defaults(clean_settings, monkeypatch) -> None:
    for name in ("DATABASE_PATH", "MIN_DURATION_MINUTES", "SEED_DEMO_DATA", "BILLING_TIMEZONE"):
        monkeypatch.delenv(f"ROOM_BOOKING_{name}", raising=False)
    settings = get_settings()
    assert settings.database_path == Path("data/room_booking.db")
    assert settings.booking_min_duration_minutes == 30
    assert settings.booking_max_duration_minutes == 600
    assert settings.booking_cancellation_grace_minutes == 15
    assert settings.booking_billing_increment_minutes == 30
    assert settings.billing_timezone == "Asia/Karachi"
    assert settings.seed_demo_data is True


def test_settings_read_environment(clean_settings, monkeypatch) -> None:
    monkeypatch.setenv("ROOM_BOOKING_MIN_DURATION_MINUTES", "45")
    monkeypatch.setenv("ROOM_BOOKING_SEED_DEMO_DATA", "false")
    monkeypatch.setenv("ROOM_BOOKING_DEFAULT_PERSONAL_CREDITS", "12.5")
    settings = get_settings()
    assert settings.booking_min_duration_minutes == 45
    assert settings.seed_demo_data is False
    assert settings.default_personal_credits == 12.5


def test_settings_reject_malformed_numbers(clean_settings, monkeypatch) -> None:
    monkeypatch.setenv("ROOM_BOOKING_MAX_DURATION_MINUTES", "ten hours")
    with pytest.raises(ValueError):
        get_settings()


def test_server_binding_comes_from_settings(clean_settings, monkeypatch) -> None:
    for name in ("HOST", "PORT", "RELOAD"):
        monkeypatch.delenv(f"ROOM_BOOKING_{name}", raising=False)
    defaults = get_settings()
    assert (defaults.server_host, defaults.server_port, defaults.server_reload) == (
        "127.0.0.1",
        8000,
        False,
    )

    get_settings.cache_clear()
    monkeypatch.setenv("ROOM_BOOKING_HOST", "0.0.0.0")
    monkeypatch.setenv("ROOM_BOOKING_PORT", "9100")
    monkeypatch.setenv("ROOM_BOOKING_RELOAD", "1")
    settings = get_settings()
    assert (settings.server_host, settings.server_port, settings.server_reload) == (
        "0.0.0.0",
        9100,
        True,
    )


def test_log_fields_skip_missing_values() -> None:
    assert log_fields(booking_id=7, org_id=None, credits=2.0) == {
        "booking_context": " [booking_id=7 credits=2.0]"
    }
    assert log_fields(org_id=None) == {"booking_context": ""}


def test_log_lines_append_booking_context() -> None:
    stream = io.StringIO()
    logger = logging.getLogger("room_booking.tests.context")
    logger.propagate = False
    logger.setLevel(logging.INFO)
    handler = build_handler(stream)
    logger.addHandler(handler)
    try:
        logger.info("Booking created", extra=log_fields(booking_id=7, credits=2.0))
        logger.info("Plain line")
    finally:
        logger.removeHandler(handler)

    first, second = stream.getvalue().splitlines()
    assert first.endswith("| INFO | room_booking.tests.context | Booking created [booking_id=7 credits=2.0]")
    assert second.endswith("| room_booking.tests.context | Plain line")

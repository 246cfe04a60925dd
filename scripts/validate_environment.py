#!/usr/bin/env python3
"""Validate local booking engine environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from room_booking.domain.models import BillingTarget, Requester, Role
from room_booking.repository.data_repository import DataRepository
from room_booking.services.booking_service import BookingLifecycleManager
from room_booking.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="room-booking-env-")

    # CHECK 1: Python version >= 3.11
    if sys.version_info >= (3, 11):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.11",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("pandas", "pandas"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    from importlib.metadata import PackageNotFoundError, version

    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "room_booking_validation.db",
        )
        repository = DataRepository(validation_settings)

        # CHECK 3: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except RuntimeError as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Demo data seeding
        try:
            seeded = repository.seed_demo_data()
            if seeded <= 0 or not repository.list_rooms():
                raise RuntimeError(f"expected demo rooms, seeded {seeded} records")
            ok, line = _print_result("Demo data", True, f": {seeded} records")
        except Exception as exc:
            ok, line = _print_result("Demo data", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Create/cancel smoke run
        try:
            service = BookingLifecycleManager(repository=repository, settings=validation_settings)
            room = repository.list_rooms()[0]
            user_id = repository.create_user(
                email="smoke@validation.example",
                first_name="Smoke",
                last_name="Test",
                role=Role.MEMBER_INDIVIDUAL,
                credits=100.0,
            )
            requester = Requester(user_id=user_id, role=Role.MEMBER_INDIVIDUAL)
            start = (datetime.now(timezone.utc) + timedelta(days=1)).replace(
                minute=0, second=0, microsecond=0
            )
            end = start + timedelta(hours=1)
            preview = service.preview_credits(room.room_id, start, end)
            booking = service.create_booking(
                requester, room.room_id, start, end, BillingTarget.PERSONAL
            )
            if booking.credits_charged != preview:
                raise RuntimeError(
                    f"preview {preview} differs from charge {booking.credits_charged}"
                )
            result = service.cancel_booking(requester, booking.booking_id)
            ok, line = _print_result(
                "Create/cancel smoke run",
                True,
                f": charged={booking.credits_charged:g} refunded={result.refunded_credits:g}",
            )
        except Exception as exc:
            ok, line = _print_result("Create/cancel smoke run", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Room Booking Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())

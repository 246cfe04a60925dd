from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from room_booking.domain.models import Role, Site
from room_booking.repository.data_repository import DataRepository
from room_booking.services.availability_service import AvailabilityChecker
from room_booking.services.billing_service import BillingResolver
from room_booking.services.booking_service import BookingLifecycleManager
from room_booking.services.event_service import BookingEventBroadcaster
from room_booking.services.identity_service import IdentityService
from room_booking.services.ledger_service import CreditLedger
from room_booking.utils.config import get_settings


# 11:00 in Islamabad; every test books slots on the following day.
BASE_NOW = datetime(2026, 3, 10, 6, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, day: int = 11) -> datetime:
    return datetime(2026, 3, day, hour, minute, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


def build_test_settings(tmp_path, filename: str = "room_booking_test.db", **overrides):
    get_settings.cache_clear()
    base = get_settings()
    values = {
        "database_path": tmp_path / filename,
        "seed_demo_data": False,
    }
    values.update(overrides)
    return replace(base, **values)


@pytest.fixture
def settings(tmp_path):
    return build_test_settings(tmp_path)


@pytest.fixture
def repository(settings):
    repo = DataRepository(settings)
    repo.initialize_database()
    return repo


@pytest.fixture
def clock():
    return FakeClock(BASE_NOW)


@pytest.fixture
def events():
    return BookingEventBroadcaster()


@pytest.fixture
def ledger(repository, settings, clock):
    return CreditLedger(repository=repository, settings=settings, clock=clock)


@pytest.fixture
def engine(repository, settings, clock, events, ledger):
    return BookingLifecycleManager(
        repository=repository,
        settings=settings,
        availability=AvailabilityChecker(repository=repository, settings=settings),
        ledger=ledger,
        billing=BillingResolver(),
        events=events,
        clock=clock,
    )


@pytest.fixture
def room_id(repository):
    """Room R: 2 credits per hour, capacity 4."""
    return repository.create_room(
        name="Room R",
        capacity=4,
        credit_cost_per_hour=2.0,
        site=Site.BLUE_AREA,
    )


@pytest.fixture
def make_user(repository):
    counter = {"n": 0}

    def _make_user(
        role: Role = Role.MEMBER_INDIVIDUAL,
        credits: float = 10.0,
        organization_id=None,
        can_charge_room_to_org: bool = False,
    ) -> int:
        counter["n"] += 1
        return repository.create_user(
            email=f"user{counter['n']}@members.example",
            first_name="Test",
            last_name=f"User{counter['n']}",
            role=role,
            organization_id=organization_id,
            credits=credits,
            can_charge_room_to_org=can_charge_room_to_org,
        )

    return _make_user


@pytest.fixture
def requester_for(repository, settings):
    identity = IdentityService(repository=repository, settings=settings)
    return identity.resolve_requester

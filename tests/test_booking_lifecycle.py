from __future__ import annotations

import sqlite3

import pytest

from conftest import at
from room_booking.domain.errors import (
    BillingNotPermitted,
    BookingAlreadyCancelled,
    BookingNotFound,
    CancellationWindowExpired,
    GuestBookingNotPermitted,
    InsufficientCredits,
    InternalBookingError,
    InvalidDuration,
    InvalidInterval,
    NotOwner,
    PastStartTime,
    RoomNotFound,
    RoomUnavailable,
)
from room_booking.domain.models import (
    BillingTarget,
    BookingStatus,
    GuestInfo,
    Role,
    Site,
)


def _used(repository, user_id: int) -> float:
    return repository.get_user(user_id).used_credits


# --- concrete scenarios ---

def test_scenario_a_personal_booking_charges_preview(engine, repository, room_id, make_user, requester_for):
    user_id = make_user(credits=10.0)
    requester = requester_for(user_id)

    preview = engine.preview_credits(room_id, at(9), at(10))
    booking = engine.create_booking(requester, room_id, at(9), at(10), BillingTarget.PERSONAL)

    assert preview == 2.0
    assert booking.credits_charged == preview
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.billed_to == BillingTarget.PERSONAL
    assert booking.site == Site.BLUE_AREA
    assert _used(repository, user_id) == 2.0


def test_scenario_b_overlapping_request_is_rejected(engine, repository, room_id, make_user, requester_for):
    user_id = make_user(credits=10.0)
    requester = requester_for(user_id)
    engine.create_booking(requester, room_id, at(9), at(10))

    with pytest.raises(RoomUnavailable):
        engine.create_booking(requester, room_id, at(9, 30), at(10, 30))

    assert _used(repository, user_id) == 2.0
    assert repository.count_bookings(room_id=room_id) == 1


def test_scenario_c_organization_billing_skips_personal_pool(
    engine, ledger, repository, room_id, make_user, requester_for
):
    org_id = repository.create_organization(
        name="Org O", email="o@org.example", monthly_credit_allocation=30.0
    )
    member_id = make_user(
        role=Role.MEMBER_ORGANIZATION,
        credits=0.0,
        organization_id=org_id,
        can_charge_room_to_org=True,
    )
    requester = requester_for(member_id)

    booking = engine.create_booking(
        requester, room_id, at(9), at(14), BillingTarget.ORGANIZATION
    )

    assert booking.credits_charged == 10.0
    assert booking.billed_to == BillingTarget.ORGANIZATION
    assert booking.org_id == org_id
    assert _used(repository, member_id) == 0.0
    assert ledger.get_available_organization_credits(org_id) == 20.0


def test_scenario_d_cancellation_window(engine, repository, clock, room_id, make_user, requester_for):
    user_id = make_user(credits=10.0)
    requester = requester_for(user_id)
    first = engine.create_booking(requester, room_id, at(9), at(10))
    second = engine.create_booking(requester, room_id, at(11), at(12))
    assert _used(repository, user_id) == 4.0

    clock.set(at(9, 10))
    result = engine.cancel_booking(requester, first.booking_id)
    assert result.booking.status == BookingStatus.CANCELLED
    assert result.booking.cancelled_by == user_id
    assert result.refunded_credits == 2.0
    assert _used(repository, user_id) == 2.0

    clock.set(at(11, 20))
    with pytest.raises(CancellationWindowExpired):
        engine.cancel_booking(requester, second.booking_id)
    assert repository.get_booking(second.booking_id).status == BookingStatus.CONFIRMED
    assert _used(repository, user_id) == 2.0


def test_cancellation_allowed_exactly_at_grace_boundary(engine, clock, room_id, make_user, requester_for):
    requester = requester_for(make_user())
    booking = engine.create_booking(requester, room_id, at(9), at(10))

    clock.set(at(9, 15))
    assert engine.cancel_booking(requester, booking.booking_id).booking.status == BookingStatus.CANCELLED


def test_cancellation_before_start_is_allowed(engine, room_id, make_user, requester_for):
    requester = requester_for(make_user())
    booking = engine.create_booking(requester, room_id, at(9), at(10))
    assert engine.cancel_booking(requester, booking.booking_id).refunded_credits == 2.0


# --- adjacency and rebooking ---

def test_touching_bookings_both_succeed(engine, room_id, make_user, requester_for):
    requester = requester_for(make_user())
    first = engine.create_booking(requester, room_id, at(10), at(11))
    second = engine.create_booking(requester, room_id, at(11), at(12))
    assert first.end_time == second.start_time


def test_cancelled_slot_can_be_rebooked(engine, room_id, make_user, requester_for):
    first_requester = requester_for(make_user())
    second_requester = requester_for(make_user())
    booking = engine.create_booking(first_requester, room_id, at(9), at(10))
    engine.cancel_booking(first_requester, booking.booking_id)

    rebooked = engine.create_booking(second_requester, room_id, at(9), at(10))
    assert rebooked.status == BookingStatus.CONFIRMED


def test_same_slot_in_another_room_is_independent(engine, repository, room_id, make_user, requester_for):
    other_room = repository.create_room(name="Room S", capacity=6, credit_cost_per_hour=1.0)
    requester = requester_for(make_user())
    engine.create_booking(requester, room_id, at(9), at(10))
    booking = engine.create_booking(requester, other_room, at(9), at(10))
    assert booking.credits_charged == 1.0


# --- credits ---

def test_insufficient_credits_leaves_no_trace(engine, repository, room_id, make_user, requester_for):
    user_id = make_user(credits=1.0)
    requester = requester_for(user_id)

    with pytest.raises(InsufficientCredits) as excinfo:
        engine.create_booking(requester, room_id, at(9), at(10))

    assert "2 needed, 1 available" in str(excinfo.value)
    assert _used(repository, user_id) == 0.0
    assert repository.count_bookings() == 0


def test_booking_may_spend_exact_remaining_balance(engine, repository, room_id, make_user, requester_for):
    user_id = make_user(credits=2.0)
    engine.create_booking(requester_for(user_id), room_id, at(9), at(10))
    assert _used(repository, user_id) == 2.0


def test_personal_balance_never_goes_negative(engine, ledger, room_id, make_user, requester_for):
    user_id = make_user(credits=5.0)
    requester = requester_for(user_id)
    engine.create_booking(requester, room_id, at(9), at(11))
    with pytest.raises(InsufficientCredits):
        engine.create_booking(requester, room_id, at(12), at(14))
    assert ledger.get_available_personal_credits(user_id) == 1.0


def test_double_cancel_refunds_once(engine, repository, room_id, make_user, requester_for):
    user_id = make_user(credits=10.0)
    requester = requester_for(user_id)
    engine.create_booking(requester, room_id, at(13), at(14))
    booking = engine.create_booking(requester, room_id, at(9), at(10))
    engine.cancel_booking(requester, booking.booking_id)
    used_after_first_cancel = _used(repository, user_id)

    with pytest.raises(BookingAlreadyCancelled):
        engine.cancel_booking(requester, booking.booking_id)

    assert used_after_first_cancel == 2.0
    assert _used(repository, user_id) == used_after_first_cancel


def test_organization_overdraft_reports_negative_available(
    engine, ledger, repository, room_id, make_user, requester_for
):
    org_id = repository.create_organization(
        name="Small Org", email="small@org.example", monthly_credit_allocation=5.0
    )
    requester = requester_for(
        make_user(
            role=Role.MEMBER_ORGANIZATION,
            organization_id=org_id,
            can_charge_room_to_org=True,
        )
    )

    engine.create_booking(requester, room_id, at(9), at(14), BillingTarget.ORGANIZATION)

    balance = ledger.get_organization_balance(org_id)
    assert balance.used == 10.0
    assert balance.available == -5.0
    assert balance.extra_credits == 5.0


def test_cancelling_organization_booking_restores_org_balance(
    engine, ledger, repository, room_id, make_user, requester_for
):
    org_id = repository.create_organization(name="Org", email="org@org.example")
    user_id = make_user(
        role=Role.MEMBER_ORGANIZATION,
        credits=3.0,
        organization_id=org_id,
        can_charge_room_to_org=True,
    )
    requester = requester_for(user_id)
    booking = engine.create_booking(requester, room_id, at(9), at(11), BillingTarget.ORGANIZATION)
    assert ledger.get_available_organization_credits(org_id) == 26.0

    result = engine.cancel_booking(requester, booking.booking_id)

    assert result.refunded_credits == 4.0
    assert ledger.get_available_organization_credits(org_id) == 30.0
    assert _used(repository, user_id) == 0.0


def test_organization_billing_without_permission(engine, repository, room_id, make_user, requester_for):
    org_id = repository.create_organization(name="Org", email="org@org.example")
    requester = requester_for(make_user(role=Role.MEMBER_ORGANIZATION, organization_id=org_id))
    with pytest.raises(BillingNotPermitted):
        engine.create_booking(requester, room_id, at(9), at(10), BillingTarget.ORGANIZATION)
    assert repository.count_bookings() == 0


def test_occupied_slot_is_reported_before_billing_permission(
    engine, repository, room_id, make_user, requester_for
):
    org_id = repository.create_organization(name="Org", email="org@org.example")
    engine.create_booking(requester_for(make_user()), room_id, at(9), at(10))
    requester = requester_for(make_user(role=Role.MEMBER_ORGANIZATION, organization_id=org_id))
    with pytest.raises(RoomUnavailable):
        engine.create_booking(requester, room_id, at(9, 30), at(10, 30), BillingTarget.ORGANIZATION)
    with pytest.raises(RoomNotFound):
        engine.create_booking(requester, 9999, at(9), at(10), BillingTarget.ORGANIZATION)
    assert repository.count_bookings() == 1


# --- validation ---

def test_past_start_is_rejected(engine, clock, room_id, make_user, requester_for):
    requester = requester_for(make_user())
    clock.set(at(9, 1))
    with pytest.raises(PastStartTime):
        engine.create_booking(requester, room_id, at(9), at(10))


def test_naive_timestamps_are_rejected(engine, room_id, make_user, requester_for):
    requester = requester_for(make_user())
    with pytest.raises(InvalidInterval):
        engine.create_booking(requester, room_id, at(9).replace(tzinfo=None), at(10).replace(tzinfo=None))


def test_inverted_interval_is_rejected(engine, room_id, make_user, requester_for):
    requester = requester_for(make_user())
    with pytest.raises(InvalidInterval):
        engine.create_booking(requester, room_id, at(10), at(9))


def test_member_duration_bounds(engine, room_id, make_user, requester_for):
    requester = requester_for(make_user(credits=100.0))
    with pytest.raises(InvalidDuration):
        engine.create_booking(requester, room_id, at(9), at(9, 15))
    with pytest.raises(InvalidDuration):
        engine.create_booking(requester, room_id, at(8), at(18, 30))


def test_staff_are_exempt_from_duration_bounds(engine, room_id, make_user, requester_for):
    staff = requester_for(make_user(role=Role.SPACE_TEAM, credits=100.0))
    short = engine.create_booking(staff, room_id, at(9), at(9, 15))
    long = engine.create_booking(staff, room_id, at(10), at(22))
    assert short.credits_charged == 1.0
    assert long.credits_charged == 24.0


def test_unknown_room(engine, make_user, requester_for):
    requester = requester_for(make_user())
    with pytest.raises(RoomNotFound):
        engine.create_booking(requester, 9999, at(9), at(10))
    with pytest.raises(RoomNotFound):
        engine.preview_credits(9999, at(9), at(10))


def test_closed_room_is_unavailable(engine, repository, make_user, requester_for):
    closed = repository.create_room(
        name="Closed", capacity=2, credit_cost_per_hour=1.0, is_available=False
    )
    requester = requester_for(make_user())
    with pytest.raises(RoomUnavailable):
        engine.create_booking(requester, closed, at(9), at(10))


def test_room_site_is_recorded_on_booking(engine, repository, make_user, requester_for):
    i10_room = repository.create_room(
        name="Margalla", capacity=8, credit_cost_per_hour=2.0, site=Site.I_10
    )
    booking = engine.create_booking(requester_for(make_user()), i10_room, at(9), at(10))
    assert booking.site == Site.I_10


# --- ownership ---

def test_only_owner_can_cancel(engine, repository, room_id, make_user, requester_for):
    owner_id = make_user()
    owner = requester_for(owner_id)
    intruder = requester_for(make_user(role=Role.SPACE_ADMIN))
    booking = engine.create_booking(owner, room_id, at(9), at(10))

    with pytest.raises(NotOwner):
        engine.cancel_booking(intruder, booking.booking_id)

    assert repository.get_booking(booking.booking_id).status == BookingStatus.CONFIRMED
    assert _used(repository, owner_id) == 2.0


def test_cancel_missing_booking(engine, make_user, requester_for):
    with pytest.raises(BookingNotFound):
        engine.cancel_booking(requester_for(make_user()), 4242)


# --- guests ---

def test_members_cannot_attach_guests(engine, room_id, make_user, requester_for):
    requester = requester_for(make_user())
    with pytest.raises(GuestBookingNotPermitted):
        engine.create_booking(
            requester, room_id, at(9), at(10), guest=GuestInfo(name="Walk In")
        )


def test_staff_guest_booking_stores_guest_columns(engine, repository, room_id, make_user, requester_for):
    staff = requester_for(make_user(role=Role.SPACE_TEAM))
    booking = engine.create_booking(
        staff,
        room_id,
        at(9),
        at(10),
        guest=GuestInfo(name="Jane Doe", email="jane@example.com", phone="0300-1234567"),
    )
    stored = repository.get_booking(booking.booking_id)
    assert stored.guest == GuestInfo(name="Jane Doe", email="jane@example.com", phone="0300-1234567")
    assert stored.notes is None


# --- queries ---

def test_completed_status_is_derived(engine, clock, room_id, make_user, requester_for):
    booking = engine.create_booking(requester_for(make_user()), room_id, at(9), at(10))
    assert booking.effective_status(clock()) == BookingStatus.CONFIRMED
    assert booking.effective_status(at(10, 1)) == BookingStatus.COMPLETED


def test_list_bookings_visibility(engine, repository, room_id, make_user, requester_for):
    org_id = repository.create_organization(name="Org", email="org@org.example")
    member = requester_for(
        make_user(role=Role.MEMBER_ORGANIZATION, organization_id=org_id, can_charge_room_to_org=True)
    )
    admin = requester_for(make_user(role=Role.MEMBER_ORGANIZATION_ADMIN, organization_id=org_id))
    outsider = requester_for(make_user())
    staff = requester_for(make_user(role=Role.SPACE_ADMIN))

    org_booking = engine.create_booking(member, room_id, at(9), at(10), BillingTarget.ORGANIZATION)
    own_booking = engine.create_booking(outsider, room_id, at(11), at(12))

    assert [b.booking_id for b in engine.list_bookings(member)] == [org_booking.booking_id]
    assert [b.booking_id for b in engine.list_bookings(admin, org_id=org_id)] == [org_booking.booking_id]
    assert engine.list_bookings(admin) == []
    assert [b.booking_id for b in engine.list_bookings(outsider, org_id=org_id)] == [own_booking.booking_id]
    assert {b.booking_id for b in engine.list_bookings(staff)} == {
        org_booking.booking_id,
        own_booking.booking_id,
    }


def test_get_booking_missing(engine):
    with pytest.raises(BookingNotFound):
        engine.get_booking(31337)


# --- storage failures ---

def test_failed_insert_rolls_back_personal_debit(
    engine, repository, events, room_id, make_user, requester_for, monkeypatch
):
    user_id = make_user(credits=10.0)
    requester = requester_for(user_id)

    def failing_insert(*args, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(repository, "insert_booking", failing_insert)
    with pytest.raises(InternalBookingError) as excinfo:
        engine.create_booking(requester, room_id, at(9), at(10))
    assert excinfo.value.code == "internal_error"
    assert excinfo.value.user_correctable is False
    assert _used(repository, user_id) == 0.0
    assert repository.count_bookings() == 0
    assert events.get_stats()["published"] == 0


def test_failed_refund_leaves_booking_confirmed(
    engine, repository, events, room_id, make_user, requester_for, monkeypatch
):
    user_id = make_user(credits=10.0)
    requester = requester_for(user_id)
    booking = engine.create_booking(requester, room_id, at(9), at(10))

    def failing_refund(*args, **kwargs):
        raise sqlite3.OperationalError("database disk image is malformed")

    monkeypatch.setattr(repository, "decrement_used_credits", failing_refund)
    with pytest.raises(InternalBookingError):
        engine.cancel_booking(requester, booking.booking_id)
    monkeypatch.undo()

    assert engine.get_booking(booking.booking_id).status == BookingStatus.CONFIRMED
    assert _used(repository, user_id) == 2.0
    assert events.get_stats()["published"] == 1
    assert engine.cancel_booking(requester, booking.booking_id).refunded_credits == 2.0


# --- billing roles ---

def test_organization_charge_never_touches_personal_pool_even_when_empty(
    engine, repository, room_id, make_user, requester_for
):
    org_id = repository.create_organization(name="Org", email="org@org.example")
    user_id = make_user(
        role=Role.MEMBER_ORGANIZATION,
        credits=0.0,
        organization_id=org_id,
        can_charge_room_to_org=True,
    )
    booking = engine.create_booking(
        requester_for(user_id), room_id, at(9), at(10), BillingTarget.ORGANIZATION
    )
    assert booking.billed_to == BillingTarget.ORGANIZATION
    assert _used(repository, user_id) == 0.0
    with pytest.raises(InsufficientCredits):
        engine.create_booking(requester_for(user_id), room_id, at(11), at(12))


def test_cafe_manager_books_as_a_regular_member(engine, room_id, make_user, requester_for):
    requester = requester_for(make_user(role=Role.CAFE_MANAGER, credits=5.0))
    assert requester.is_staff is False
    with pytest.raises(InvalidDuration):
        engine.create_booking(requester, room_id, at(9), at(9, 15))
    with pytest.raises(GuestBookingNotPermitted):
        engine.create_booking(requester, room_id, at(9), at(10), guest=GuestInfo(name="Visitor"))

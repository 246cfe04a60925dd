"""Booking lifecycle: create, cancel and query meeting-room bookings."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Callable, Optional

from room_booking.domain.constraints import (
    BookingPolicy,
    validate_booking_policy,
    validate_interval,
)
from room_booking.domain.errors import (
    BookingAlreadyCancelled,
    BookingEngineError,
    BookingNotFound,
    CancellationWindowExpired,
    GuestBookingNotPermitted,
    InternalBookingError,
    InvalidDuration,
    NotOwner,
    PastStartTime,
    RoomNotFound,
    RoomUnavailable,
)
from room_booking.domain.models import (
    BillingTarget,
    Booking,
    BookingStatus,
    CancellationResult,
    GuestInfo,
    NewBooking,
    Requester,
    Role,
    Room,
    Site,
)
from room_booking.repository.data_repository import DataRepository
from room_booking.services.availability_service import AvailabilityChecker
from room_booking.services.billing_service import BillingResolver, compute_credits
from room_booking.services.event_service import (
    BOOKING_CANCELLED,
    BOOKING_CREATED,
    BookingEventBroadcaster,
    build_booking_event,
)
from room_booking.services.ledger_service import CreditLedger
from room_booking.utils.clock import utc_now
from room_booking.utils.config import Settings, get_settings
from room_booking.utils.logger import get_logger, log_fields


logger = get_logger(__name__)


def policy_from_settings(settings: Settings) -> BookingPolicy:
    return BookingPolicy(
        min_duration_minutes=settings.booking_min_duration_minutes,
        max_duration_minutes=settings.booking_max_duration_minutes,
        cancellation_grace_minutes=settings.booking_cancellation_grace_minutes,
        billing_increment_minutes=settings.booking_billing_increment_minutes,
    )


class BookingLifecycleManager:
    """Owns the booking state machine: confirmed -> cancelled.

    Creation runs the overlap check, the personal debit and the insert inside
    one write transaction; cancellation flips the state and refunds inside
    another. Events go out only after the transaction has committed.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        availability: Optional[AvailabilityChecker] = None,
        ledger: Optional[CreditLedger] = None,
        billing: Optional[BillingResolver] = None,
        events: Optional[BookingEventBroadcaster] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or utc_now
        self._availability = availability or AvailabilityChecker(
            repository=self._repository,
            settings=self._settings,
        )
        self._ledger = ledger or CreditLedger(
            repository=self._repository,
            settings=self._settings,
            clock=self._clock,
        )
        self._billing = billing or BillingResolver()
        self._events = events or BookingEventBroadcaster()
        self._policy = policy_from_settings(self._settings)
        validate_booking_policy(self._policy)

    @property
    def policy(self) -> BookingPolicy:
        return self._policy

    def _get_room(self, room_id: int) -> Room:
        try:
            room = self._repository.get_room(room_id)
        except sqlite3.Error as exc:
            logger.exception("Room lookup failed", extra=log_fields(room_id=room_id))
            raise InternalBookingError("Failed to load room") from exc
        if room is None:
            raise RoomNotFound(f"Room {room_id} does not exist")
        return room

    def _validate_duration(self, requester: Requester, start: datetime, end: datetime) -> None:
        if requester.is_staff:
            return
        duration = end - start
        if duration < self._policy.min_duration:
            raise InvalidDuration(
                f"Bookings must last at least {self._policy.min_duration_minutes} minutes"
            )
        if duration > self._policy.max_duration:
            raise InvalidDuration(
                f"Bookings may last at most {self._policy.max_duration_minutes} minutes"
            )

    def _emit(self, event_type: str, booking: Booking, **extra: object) -> None:
        try:
            self._events.publish(build_booking_event(event_type, booking, **extra))
        except Exception:
            logger.warning(
                "Booking event could not be emitted",
                extra=log_fields(event_type=event_type, booking_id=booking.booking_id),
                exc_info=True,
            )

    def preview_credits(self, room_id: int, start: datetime, end: datetime) -> float:
        """Credits that create_booking would charge for the same parameters."""
        validate_interval(start, end)
        room = self._get_room(room_id)
        return compute_credits(room, start, end, self._policy.billing_increment_minutes)

    def create_booking(
        self,
        requester: Requester,
        room_id: int,
        start: datetime,
        end: datetime,
        billing_target: Optional[BillingTarget] = None,
        notes: Optional[str] = None,
        guest: Optional[GuestInfo] = None,
    ) -> Booking:
        validate_interval(start, end)
        now = self._clock()
        if start < now:
            raise PastStartTime("Cannot book a room for a time in the past")
        self._validate_duration(requester, start, end)
        if guest is not None and not guest.is_empty and not requester.is_staff:
            raise GuestBookingNotPermitted("Only staff can record bookings for guests")

        room = self._get_room(room_id)
        if not room.is_available:
            raise RoomUnavailable(f"Room {room.name} is not open for booking")
        credits = compute_credits(room, start, end, self._policy.billing_increment_minutes)

        try:
            with self._repository.transaction() as conn:
                self._availability.ensure_available(conn, room.room_id, start, end)
                decision = self._billing.resolve(requester, billing_target)
                new_booking = NewBooking(
                    room_id=room.room_id,
                    user_id=requester.user_id,
                    start_time=start,
                    end_time=end,
                    credits_charged=credits,
                    billed_to=decision.target,
                    site=room.site,
                    org_id=decision.organization_id,
                    notes=notes,
                    guest=guest,
                )
                if decision.allows_overdraft:
                    self._ledger.debit_organization(decision.organization_id, credits)
                else:
                    self._ledger.debit_personal(conn, requester.user_id, credits)
                booking = self._repository.insert_booking(conn, new_booking, created_at=now)
        except BookingEngineError:
            raise
        except sqlite3.Error as exc:
            logger.exception(
                "Booking creation failed",
                extra=log_fields(user_id=requester.user_id, room_id=room_id, credits=credits),
            )
            raise InternalBookingError("Failed to create booking") from exc

        logger.info(
            "Booking created",
            extra=log_fields(
                booking_id=booking.booking_id,
                user_id=booking.user_id,
                room_id=booking.room_id,
                billed_to=booking.billed_to.value,
                credits=booking.credits_charged,
            ),
        )
        self._emit(BOOKING_CREATED, booking)
        return booking

    def cancel_booking(self, requester: Requester, booking_id: int) -> CancellationResult:
        now = self._clock()
        try:
            with self._repository.transaction() as conn:
                booking = self._repository.get_booking(booking_id, conn=conn)
                if booking is None:
                    raise BookingNotFound(f"Booking {booking_id} does not exist")
                if booking.user_id != requester.user_id:
                    raise NotOwner("Not authorized to cancel this booking")
                if booking.status == BookingStatus.CANCELLED:
                    raise BookingAlreadyCancelled("Booking is already cancelled")
                if now > booking.start_time + self._policy.cancellation_grace:
                    raise CancellationWindowExpired(
                        "Bookings can only be cancelled until "
                        f"{self._policy.cancellation_grace_minutes} minutes after they start"
                    )
                cancelled = self._repository.mark_booking_cancelled(
                    conn,
                    booking_id,
                    cancelled_by=requester.user_id,
                    updated_at=now,
                )
                refunded = self._ledger.refund(conn, booking)
        except BookingEngineError:
            raise
        except sqlite3.Error as exc:
            logger.exception(
                "Booking cancellation failed",
                extra=log_fields(user_id=requester.user_id, booking_id=booking_id),
            )
            raise InternalBookingError("Failed to cancel booking") from exc

        logger.info(
            "Booking cancelled",
            extra=log_fields(
                booking_id=cancelled.booking_id,
                user_id=requester.user_id,
                refunded=refunded,
                billed_to=cancelled.billed_to.value,
            ),
        )
        self._emit(BOOKING_CANCELLED, cancelled, refundedCredits=refunded)
        return CancellationResult(booking=cancelled, refunded_credits=refunded)

    def get_booking(self, booking_id: int) -> Booking:
        booking = self._repository.get_booking(booking_id)
        if booking is None:
            raise BookingNotFound(f"Booking {booking_id} does not exist")
        return booking

    def list_bookings(
        self,
        requester: Requester,
        org_id: Optional[str] = None,
        site: Optional[Site] = None,
    ) -> list[Booking]:
        """Staff see every booking, organization admins their organization's."""
        if requester.is_staff:
            return self._repository.list_bookings(org_id=org_id, site=site)
        if (
            requester.role == Role.MEMBER_ORGANIZATION_ADMIN
            and org_id is not None
            and org_id == requester.organization_id
        ):
            return self._repository.list_bookings(org_id=org_id, site=site)
        return self._repository.list_bookings(user_id=requester.user_id, site=site)

    def now(self) -> datetime:
        return self._clock()

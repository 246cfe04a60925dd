"""In-process fan-out of booking domain events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Any, Callable

from room_booking.domain.models import Booking
from room_booking.utils.clock import utc_now
from room_booking.utils.logger import get_logger, log_fields


logger = get_logger(__name__)

BOOKING_CREATED = "booking.created"
BOOKING_CANCELLED = "booking.cancelled"


@dataclass(frozen=True)
class BookingEvent:
    event_type: str
    booking_id: int
    user_id: int
    room_id: int
    site: str
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utc_now)


BookingEventListener = Callable[[BookingEvent], None]


def build_booking_event(event_type: str, booking: Booking, **extra: Any) -> BookingEvent:
    payload: dict[str, Any] = {
        "bookingId": booking.booking_id,
        "userId": booking.user_id,
        "roomId": booking.room_id,
        "status": booking.status.value,
        "billedTo": booking.billed_to.value,
        "creditsCharged": booking.credits_charged,
        "start": booking.start_time.isoformat(),
        "end": booking.end_time.isoformat(),
    }
    payload.update(extra)
    return BookingEvent(
        event_type=event_type,
        booking_id=booking.booking_id,
        user_id=booking.user_id,
        room_id=booking.room_id,
        site=booking.site.value,
        payload=payload,
    )


class BookingEventBroadcaster:
    """Hands events to the real-time broadcaster's listeners.

    Delivery is fire-and-forget: a failing listener is logged and skipped,
    and never reaches the booking operation that emitted the event.
    """

    def __init__(self) -> None:
        self._listeners: list[BookingEventListener] = []
        self._lock = Lock()
        self._published = 0
        self._failed_deliveries = 0

    def subscribe(self, listener: BookingEventListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: BookingEvent) -> int:
        with self._lock:
            listeners = list(self._listeners)
            self._published += 1

        delivered = 0
        for listener in listeners:
            try:
                listener(event)
                delivered += 1
            except Exception:
                with self._lock:
                    self._failed_deliveries += 1
                logger.warning(
                    "Booking event delivery failed",
                    extra=log_fields(event_type=event.event_type, booking_id=event.booking_id),
                    exc_info=True,
                )
        logger.info(
            "Booking event broadcast",
            extra=log_fields(
                event_type=event.event_type,
                booking_id=event.booking_id,
                delivered=f"{delivered}/{len(listeners)}",
            ),
        )
        return delivered

    def get_stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "listeners": len(self._listeners),
                "published": self._published,
                "failed_deliveries": self._failed_deliveries,
            }

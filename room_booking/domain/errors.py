"""Booking engine error taxonomy.

Every user-correctable failure has its own class and a stable ``code`` so the
HTTP layer can report it verbatim. ``InternalBookingError`` is the only kind
that is not the caller's fault; its message is deliberately opaque.
"""

from __future__ import annotations


class BookingEngineError(Exception):
    """Base exception for booking engine failures."""

    code = "booking_error"
    user_correctable = True


class InvalidInterval(BookingEngineError):
    """Raised for malformed, naive or zero/negative-length intervals."""

    code = "invalid_interval"


class PastStartTime(BookingEngineError):
    code = "past_start_time"


class InvalidDuration(BookingEngineError):
    """Raised when a non-staff booking is shorter or longer than policy allows."""

    code = "invalid_duration"


class RoomUnavailable(BookingEngineError):
    """Raised on overlap with a confirmed booking or a closed room."""

    code = "room_unavailable"


class BillingNotPermitted(BookingEngineError):
    code = "billing_not_permitted"


class InsufficientCredits(BookingEngineError):
    code = "insufficient_credits"


class NotOwner(BookingEngineError):
    code = "not_owner"


class CancellationWindowExpired(BookingEngineError):
    code = "cancellation_window_expired"


class BookingAlreadyCancelled(BookingEngineError):
    code = "booking_already_cancelled"


class GuestBookingNotPermitted(BookingEngineError):
    """Raised when a non-staff requester attaches guest details."""

    code = "guest_booking_not_permitted"


class RoomNotFound(BookingEngineError):
    code = "room_not_found"


class BookingNotFound(BookingEngineError):
    code = "booking_not_found"


class UnknownRequester(BookingEngineError):
    code = "unknown_requester"


class OrganizationNotFound(BookingEngineError):
    code = "organization_not_found"


class InternalBookingError(BookingEngineError):
    """Persistence or transport failure; the operation left no partial effect."""

    code = "internal_error"
    user_correctable = False

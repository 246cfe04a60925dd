"""Domain-level validation rules for booking intervals and policy."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from room_booking.domain.errors import InvalidInterval


@dataclass(frozen=True)
class BookingPolicy:
    min_duration_minutes: int
    max_duration_minutes: int
    cancellation_grace_minutes: int
    billing_increment_minutes: int

    @property
    def min_duration(self) -> timedelta:
        return timedelta(minutes=self.min_duration_minutes)

    @property
    def max_duration(self) -> timedelta:
        return timedelta(minutes=self.max_duration_minutes)

    @property
    def cancellation_grace(self) -> timedelta:
        return timedelta(minutes=self.cancellation_grace_minutes)


def validate_booking_policy(policy: BookingPolicy) -> None:
    if policy.min_duration_minutes <= 0:
        raise ValueError("min_duration_minutes must be > 0")
    if policy.max_duration_minutes <= 0:
        raise ValueError("max_duration_minutes must be > 0")
    if policy.min_duration_minutes > policy.max_duration_minutes:
        raise ValueError("min_duration_minutes must not exceed max_duration_minutes")
    if policy.cancellation_grace_minutes < 0:
        raise ValueError("cancellation_grace_minutes must be >= 0")
    if policy.billing_increment_minutes <= 0:
        raise ValueError("billing_increment_minutes must be > 0")


def validate_interval(start: datetime, end: datetime) -> None:
    """Reject floating local times and empty or inverted intervals."""
    if start.tzinfo is None or end.tzinfo is None:
        raise InvalidInterval("start and end must be timezone-aware timestamps")
    if start >= end:
        raise InvalidInterval("start must be before end")


def intervals_overlap(
    a_start: datetime,
    a_end: datetime,
    b_start: datetime,
    b_end: datetime,
) -> bool:
    """Half-open overlap test; touching endpoints do not overlap."""
    return a_start < b_end and a_end > b_start

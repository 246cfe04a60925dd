"""Domain models for meeting-room booking and credit accounting."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class Site(str, Enum):
    BLUE_AREA = "blue_area"
    I_10 = "i_10"


class Role(str, Enum):
    MEMBER_INDIVIDUAL = "member_individual"
    MEMBER_ORGANIZATION = "member_organization"
    MEMBER_ORGANIZATION_ADMIN = "member_organization_admin"
    # Stored for cafe staff accounts; carries no booking privileges.
    CAFE_MANAGER = "cafe_manager"
    SPACE_TEAM = "space_team"
    SPACE_ADMIN = "space_admin"


STAFF_ROLES = frozenset({Role.SPACE_TEAM, Role.SPACE_ADMIN})


class BillingTarget(str, Enum):
    PERSONAL = "personal"
    ORGANIZATION = "organization"


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    # Never stored; derived for confirmed bookings whose end time has passed.
    COMPLETED = "completed"


@dataclass(frozen=True)
class Room:
    room_id: int
    name: str
    capacity: int
    credit_cost_per_hour: float
    is_available: bool
    site: Site


@dataclass(frozen=True)
class Requester:
    """Resolved identity handed over by the session layer."""

    user_id: int
    role: Role
    organization_id: Optional[str] = None
    can_charge_room_to_org: bool = False
    site: Site = Site.BLUE_AREA

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


@dataclass(frozen=True)
class GuestInfo:
    name: str = ""
    email: str = ""
    phone: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.name or self.email or self.phone)


@dataclass(frozen=True)
class Booking:
    booking_id: int
    room_id: int
    user_id: int
    start_time: datetime
    end_time: datetime
    credits_charged: float
    status: BookingStatus
    billed_to: BillingTarget
    site: Site
    created_at: datetime
    updated_at: datetime
    org_id: Optional[str] = None
    notes: Optional[str] = None
    guest: Optional[GuestInfo] = None
    cancelled_by: Optional[int] = None

    def effective_status(self, now: datetime) -> BookingStatus:
        if self.status == BookingStatus.CONFIRMED and now > self.end_time:
            return BookingStatus.COMPLETED
        return self.status


@dataclass(frozen=True)
class NewBooking:
    """Validated booking row ready to be inserted."""

    room_id: int
    user_id: int
    start_time: datetime
    end_time: datetime
    credits_charged: float
    billed_to: BillingTarget
    site: Site
    org_id: Optional[str] = None
    notes: Optional[str] = None
    guest: Optional[GuestInfo] = None


@dataclass(frozen=True)
class BillingDecision:
    target: BillingTarget
    allows_overdraft: bool
    organization_id: Optional[str] = None


@dataclass(frozen=True)
class PersonalBalance:
    user_id: int
    allocated: float
    used: float

    @property
    def available(self) -> float:
        return self.allocated - self.used


@dataclass(frozen=True)
class OrganizationBalance:
    organization_id: str
    month_start: datetime
    monthly_allocation: float
    used: float

    @property
    def available(self) -> float:
        return self.monthly_allocation - self.used

    @property
    def extra_credits(self) -> float:
        """Usage beyond the allocation, settled by manual billing."""
        return max(0.0, self.used - self.monthly_allocation)


@dataclass(frozen=True)
class CancellationResult:
    booking: Booking
    refunded_credits: float

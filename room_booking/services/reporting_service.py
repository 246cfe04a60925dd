"""Staff reports over booking data: guest bookings and organization usage."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Callable, Optional

import pandas as pd

from room_booking.domain.models import BillingTarget, BookingStatus, Site
from room_booking.repository.data_repository import DataRepository
from room_booking.services.guest_annotation import GUEST_TAG_MARKER, resolve_guest
from room_booking.services.ledger_service import CreditLedger
from room_booking.utils.clock import billing_month_bounds, utc_now
from room_booking.utils.config import Settings, get_settings
from room_booking.utils.logger import get_logger


logger = get_logger(__name__)

GUEST_REPORT_COLUMNS = [
    "booking_id",
    "room_id",
    "site",
    "start_time",
    "end_time",
    "status",
    "credits_charged",
    "booked_by",
    "guest_name",
    "guest_email",
    "guest_phone",
    "guest_source",
]

USAGE_REPORT_COLUMNS = ["user_id", "member", "bookings", "credits"]


class ReportingService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        ledger: Optional[CreditLedger] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or utc_now
        self._ledger = ledger or CreditLedger(
            repository=self._repository,
            settings=self._settings,
            clock=self._clock,
        )

    def guest_bookings_frame(
        self,
        site: Optional[Site] = None,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> pd.DataFrame:
        """One row per booking made on behalf of a walk-in guest."""
        bookings = self._repository.list_guest_bookings(
            notes_marker=GUEST_TAG_MARKER,
            site=site,
            window_start=window_start,
            window_end=window_end,
        )
        now = self._clock()
        rows: list[dict[str, Any]] = []
        for booking in bookings:
            guest = resolve_guest(booking)
            if guest is None:
                continue
            rows.append(
                {
                    "booking_id": booking.booking_id,
                    "room_id": booking.room_id,
                    "site": booking.site.value,
                    "start_time": booking.start_time,
                    "end_time": booking.end_time,
                    "status": booking.effective_status(now).value,
                    "credits_charged": booking.credits_charged,
                    "booked_by": booking.user_id,
                    "guest_name": guest.name,
                    "guest_email": guest.email,
                    "guest_phone": guest.phone,
                    "guest_source": "columns" if booking.guest is not None else "notes_tag",
                }
            )
        return pd.DataFrame(rows, columns=GUEST_REPORT_COLUMNS)

    def organization_usage_frame(
        self,
        org_id: str,
        month: Optional[date] = None,
    ) -> pd.DataFrame:
        """Per-member organization-billed usage for the billing month."""
        month_start, month_end = billing_month_bounds(
            self._settings.billing_timezone,
            month=month,
            now=self._clock(),
        )
        bookings = [
            booking
            for booking in self._repository.list_bookings(org_id=org_id)
            if booking.billed_to == BillingTarget.ORGANIZATION
            and booking.status != BookingStatus.CANCELLED
            and month_start <= booking.created_at < month_end
        ]
        if not bookings:
            return pd.DataFrame(columns=USAGE_REPORT_COLUMNS)

        members = {
            member.user_id: f"{member.first_name} {member.last_name}"
            for member in self._repository.list_organization_members(org_id)
        }
        frame = pd.DataFrame(
            {
                "user_id": [booking.user_id for booking in bookings],
                "credits": [booking.credits_charged for booking in bookings],
            }
        )
        usage = (
            frame.groupby("user_id", as_index=False)
            .agg(bookings=("credits", "size"), credits=("credits", "sum"))
            .sort_values(["credits", "user_id"], ascending=[False, True])
            .reset_index(drop=True)
        )
        usage["member"] = usage["user_id"].map(members).fillna("")
        return usage[USAGE_REPORT_COLUMNS]

    def organization_usage_summary(
        self,
        org_id: str,
        month: Optional[date] = None,
    ) -> dict[str, Any]:
        balance = self._ledger.get_organization_balance(org_id, month=month)
        usage = self.organization_usage_frame(org_id, month=month)
        logger.info("Usage report built for organization %s", org_id)
        return {
            "organization_id": org_id,
            "month_start": balance.month_start,
            "monthly_allocation": balance.monthly_allocation,
            "used": balance.used,
            "available": balance.available,
            "extra_credits": balance.extra_credits,
            "members": [
                {
                    "user_id": int(row.user_id),
                    "member": str(row.member),
                    "bookings": int(row.bookings),
                    "credits": float(row.credits),
                }
                for row in usage.itertuples(index=False)
            ],
        }

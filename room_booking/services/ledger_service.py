"""Credit ledger: personal counters and derived organizational balances."""

from __future__ import annotations

import sqlite3
from datetime import date, datetime
from typing import Callable, Optional

from room_booking.domain.errors import (
    InsufficientCredits,
    OrganizationNotFound,
    UnknownRequester,
)
from room_booking.domain.models import (
    BillingTarget,
    Booking,
    OrganizationBalance,
    PersonalBalance,
)
from room_booking.repository.data_repository import DataRepository
from room_booking.utils.clock import billing_month_bounds, utc_now
from room_booking.utils.config import Settings, get_settings
from room_booking.utils.logger import get_logger, log_fields


logger = get_logger(__name__)


class CreditLedger:
    """Reads balances and applies debits/refunds inside booking transactions.

    Personal usage is a stored counter on the user row. Organizational usage
    is never stored: it is the sum of non-cancelled organization-billed
    bookings created in the billing month, so cancelling a booking refunds
    the organization without any write here.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or utc_now

    def get_personal_balance(
        self,
        user_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> PersonalBalance:
        user = self._repository.get_user(user_id, conn=conn)
        if user is None:
            raise UnknownRequester(f"User {user_id} does not exist")
        return PersonalBalance(
            user_id=user.user_id,
            allocated=user.credits,
            used=user.used_credits,
        )

    def get_available_personal_credits(self, user_id: int) -> float:
        return self.get_personal_balance(user_id).available

    def get_organization_balance(
        self,
        org_id: str,
        month: Optional[date] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> OrganizationBalance:
        organization = self._repository.get_organization(org_id, conn=conn)
        if organization is None:
            raise OrganizationNotFound(f"Organization {org_id} does not exist")
        month_start, month_end = billing_month_bounds(
            self._settings.billing_timezone,
            month=month,
            now=self._clock(),
        )
        used = self._repository.sum_organization_usage(
            org_id,
            month_start,
            month_end,
            conn=conn,
        )
        return OrganizationBalance(
            organization_id=org_id,
            month_start=month_start,
            monthly_allocation=organization.monthly_credit_allocation,
            used=used,
        )

    def get_available_organization_credits(
        self,
        org_id: str,
        month: Optional[date] = None,
    ) -> float:
        return self.get_organization_balance(org_id, month=month).available

    def debit_personal(self, conn: sqlite3.Connection, user_id: int, amount: float) -> None:
        """Charge the personal pool; must run inside the booking's transaction."""
        if amount <= 0:
            return
        if self._repository.increment_used_credits_if_available(conn, user_id, amount):
            return
        balance = self.get_personal_balance(user_id, conn=conn)
        logger.info(
            "Personal debit rejected",
            extra=log_fields(user_id=user_id, needed=amount, available=balance.available),
        )
        raise InsufficientCredits(
            f"Insufficient credits: {amount:g} needed, {balance.available:g} available"
        )

    def debit_organization(self, org_id: str, amount: float) -> None:
        """Organizational debits are the booking rows themselves."""
        logger.debug(
            "Organization charge recorded via booking row",
            extra=log_fields(org_id=org_id, amount=amount),
        )

    def refund(self, conn: sqlite3.Connection, booking: Booking) -> float:
        """Return a cancelled booking's charge to the pool that paid for it."""
        if booking.billed_to == BillingTarget.PERSONAL:
            self._repository.decrement_used_credits(conn, booking.user_id, booking.credits_charged)
        return booking.credits_charged

"""Billing resolution and the single credit pricing rule."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Optional

from room_booking.domain.constraints import validate_interval
from room_booking.domain.errors import BillingNotPermitted
from room_booking.domain.models import BillingDecision, BillingTarget, Requester, Room
from room_booking.utils.logger import get_logger, log_fields


logger = get_logger(__name__)


def billable_hours(start: datetime, end: datetime, increment_minutes: int) -> float:
    """Duration in hours, rounded up to the next billing increment."""
    validate_interval(start, end)
    increment_seconds = increment_minutes * 60
    duration_seconds = (end - start).total_seconds()
    increments = math.ceil(duration_seconds / increment_seconds)
    return increments * increment_minutes / 60.0


def compute_credits(
    room: Room,
    start: datetime,
    end: datetime,
    increment_minutes: int,
) -> float:
    """Credits owed for ``room`` over ``[start, end)``.

    Both the preview shown before submission and the amount charged at
    creation go through this function.
    """
    return float(billable_hours(start, end, increment_minutes) * room.credit_cost_per_hour)


class BillingResolver:
    """Decides which ledger pays for a booking and whether overdraft applies."""

    def resolve(
        self,
        requester: Requester,
        requested_target: Optional[BillingTarget] = None,
    ) -> BillingDecision:
        if requested_target == BillingTarget.ORGANIZATION:
            if not requester.organization_id:
                logger.info(
                    "Organization billing rejected: no membership",
                    extra=log_fields(user_id=requester.user_id),
                )
                raise BillingNotPermitted(
                    "Organization billing requires an organization membership"
                )
            if not requester.can_charge_room_to_org:
                logger.info(
                    "Organization billing rejected: permission missing",
                    extra=log_fields(user_id=requester.user_id, org_id=requester.organization_id),
                )
                raise BillingNotPermitted(
                    "You are not permitted to charge room bookings to your organization"
                )
            return BillingDecision(
                target=BillingTarget.ORGANIZATION,
                allows_overdraft=True,
                organization_id=requester.organization_id,
            )
        return BillingDecision(target=BillingTarget.PERSONAL, allows_overdraft=False)

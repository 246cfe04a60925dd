"""Controller layer for staff-only booking reports."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from room_booking.controllers.dependencies import (
    get_reporting_service,
    raise_booking_http_error,
    require_staff,
)
from room_booking.domain.errors import BookingEngineError
from room_booking.domain.models import Site
from room_booking.services.reporting_service import ReportingService
from room_booking.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["reports"], dependencies=[Depends(require_staff)])


class GuestBookingRow(BaseModel):
    booking_id: int
    room_id: int
    site: Site
    start_time: datetime
    end_time: datetime
    status: str
    credits_charged: float = Field(ge=0.0)
    booked_by: int
    guest_name: str
    guest_email: str
    guest_phone: str
    guest_source: str


class GuestBookingReportResponse(BaseModel):
    count: int = Field(ge=0)
    bookings: list[GuestBookingRow]


class MemberUsageRow(BaseModel):
    user_id: int
    member: str
    bookings: int = Field(ge=0)
    credits: float = Field(ge=0.0)


class OrganizationUsageResponse(BaseModel):
    organization_id: str
    month_start: datetime
    monthly_allocation: float
    used: float
    available: float
    extra_credits: float = Field(ge=0.0)
    members: list[MemberUsageRow]


@router.get("/reports/guest-bookings", response_model=GuestBookingReportResponse)
async def guest_bookings_report(
    site: Optional[Site] = Query(default=None),
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    service: ReportingService = Depends(get_reporting_service),
) -> GuestBookingReportResponse:
    if (start is not None and start.tzinfo is None) or (end is not None and end.tzinfo is None):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_interval", "message": "start and end must include a UTC offset"},
        )
    frame = service.guest_bookings_frame(site=site, window_start=start, window_end=end)
    rows = [
        GuestBookingRow(
            booking_id=int(row.booking_id),
            room_id=int(row.room_id),
            site=Site(row.site),
            start_time=row.start_time,
            end_time=row.end_time,
            status=str(row.status),
            credits_charged=float(row.credits_charged),
            booked_by=int(row.booked_by),
            guest_name=str(row.guest_name),
            guest_email=str(row.guest_email),
            guest_phone=str(row.guest_phone),
            guest_source=str(row.guest_source),
        )
        for row in frame.itertuples(index=False)
    ]
    return GuestBookingReportResponse(count=len(rows), bookings=rows)


@router.get(
    "/reports/organizations/{org_id}/usage",
    response_model=OrganizationUsageResponse,
)
async def organization_usage_report(
    org_id: str,
    month: Optional[date] = Query(default=None),
    service: ReportingService = Depends(get_reporting_service),
) -> OrganizationUsageResponse:
    try:
        summary = service.organization_usage_summary(org_id, month=month)
    except BookingEngineError as exc:
        raise_booking_http_error(exc)
    except Exception as exc:  # pragma: no cover - unexpected failure
        logger.exception("Unexpected usage report failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to build usage report",
        ) from exc
    return OrganizationUsageResponse(**summary)

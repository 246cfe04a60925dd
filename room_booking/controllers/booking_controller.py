"""HTTP controller layer for meeting-room bookings and credit balances."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator

from room_booking.controllers.dependencies import (
    get_availability_checker,
    get_booking_service,
    get_credit_ledger,
    get_requester,
    raise_booking_http_error,
)
from room_booking.domain.errors import BookingEngineError, NotOwner
from room_booking.domain.models import (
    BillingTarget,
    Booking,
    BookingStatus,
    GuestInfo,
    Requester,
    Role,
    Site,
)
from room_booking.services.availability_service import AvailabilityChecker
from room_booking.services.booking_service import BookingLifecycleManager
from room_booking.services.guest_annotation import resolve_guest
from room_booking.services.ledger_service import CreditLedger
from room_booking.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["bookings"])


class GuestInfoPayload(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(default="", max_length=320)
    phone: str = Field(default="", max_length=40)

    @field_validator("name", "email", "phone")
    @classmethod
    def strip_values(cls, value: str) -> str:
        return value.strip()


class CreateBookingRequest(BaseModel):
    """Input DTO; interval semantics are validated by the engine itself."""

    room_id: int = Field(gt=0)
    start_time: datetime
    end_time: datetime
    billed_to: Optional[BillingTarget] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
    guest: Optional[GuestInfoPayload] = None


class PreviewCreditsRequest(BaseModel):
    room_id: int = Field(gt=0)
    start_time: datetime
    end_time: datetime


class PreviewCreditsResponse(BaseModel):
    room_id: int
    credits: float = Field(ge=0.0)


class GuestInfoResponse(BaseModel):
    name: str
    email: str
    phone: str


class BookingResponse(BaseModel):
    id: int
    room_id: int
    user_id: int
    start_time: datetime
    end_time: datetime
    credits_charged: float = Field(ge=0.0)
    status: BookingStatus
    billed_to: BillingTarget
    org_id: Optional[str] = None
    notes: Optional[str] = None
    site: Site
    guest: Optional[GuestInfoResponse] = None
    cancelled_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class CancelBookingResponse(BaseModel):
    booking: BookingResponse
    refunded_credits: float = Field(ge=0.0)
    message: str = "Booking cancelled and credits refunded"


class RoomResponse(BaseModel):
    id: int
    name: str
    capacity: int = Field(ge=0)
    credit_cost_per_hour: float = Field(ge=0.0)
    is_available: bool
    site: Site


class BusyInterval(BaseModel):
    start_time: datetime
    end_time: datetime


class RoomAvailabilityResponse(BaseModel):
    room_id: int
    window_start: datetime
    window_end: datetime
    is_available: bool
    busy: list[BusyInterval]


class PersonalBalanceResponse(BaseModel):
    user_id: int
    allocated: float
    used: float
    available: float


class OrganizationBalanceResponse(BaseModel):
    organization_id: str
    month_start: datetime
    monthly_allocation: float
    used: float
    available: float
    extra_credits: float = Field(ge=0.0)


def to_booking_response(booking: Booking, now: datetime) -> BookingResponse:
    guest = resolve_guest(booking)
    return BookingResponse(
        id=booking.booking_id,
        room_id=booking.room_id,
        user_id=booking.user_id,
        start_time=booking.start_time,
        end_time=booking.end_time,
        credits_charged=booking.credits_charged,
        status=booking.effective_status(now),
        billed_to=booking.billed_to,
        org_id=booking.org_id,
        notes=booking.notes,
        site=booking.site,
        guest=GuestInfoResponse(name=guest.name, email=guest.email, phone=guest.phone)
        if guest is not None
        else None,
        cancelled_by=booking.cancelled_by,
        created_at=booking.created_at,
        updated_at=booking.updated_at,
    )


def _can_view(requester: Requester, booking: Booking) -> bool:
    if requester.is_staff or booking.user_id == requester.user_id:
        return True
    return (
        requester.role == Role.MEMBER_ORGANIZATION_ADMIN
        and booking.org_id is not None
        and booking.org_id == requester.organization_id
    )


@router.post(
    "/bookings",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_booking(
    payload: CreateBookingRequest,
    requester: Requester = Depends(get_requester),
    service: BookingLifecycleManager = Depends(get_booking_service),
) -> BookingResponse:
    guest = None
    if payload.guest is not None:
        guest = GuestInfo(
            name=payload.guest.name,
            email=payload.guest.email,
            phone=payload.guest.phone,
        )
    try:
        booking = service.create_booking(
            requester=requester,
            room_id=payload.room_id,
            start=payload.start_time,
            end=payload.end_time,
            billing_target=payload.billed_to,
            notes=payload.notes,
            guest=guest,
        )
        return to_booking_response(booking, service.now())
    except BookingEngineError as exc:
        raise_booking_http_error(exc)
    except Exception as exc:  # pragma: no cover - unexpected failure
        logger.exception("Unexpected booking creation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create booking",
        ) from exc


@router.get("/bookings", response_model=list[BookingResponse])
async def list_bookings(
    org_id: Optional[str] = Query(default=None),
    site: Optional[Site] = Query(default=None),
    requester: Requester = Depends(get_requester),
    service: BookingLifecycleManager = Depends(get_booking_service),
) -> list[BookingResponse]:
    now = service.now()
    bookings = service.list_bookings(requester, org_id=org_id, site=site)
    return [to_booking_response(booking, now) for booking in bookings]


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    requester: Requester = Depends(get_requester),
    service: BookingLifecycleManager = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = service.get_booking(booking_id)
        if not _can_view(requester, booking):
            raise NotOwner("Not authorized to view this booking")
        return to_booking_response(booking, service.now())
    except BookingEngineError as exc:
        raise_booking_http_error(exc)


@router.post("/bookings/{booking_id}/cancel", response_model=CancelBookingResponse)
async def cancel_booking(
    booking_id: int,
    requester: Requester = Depends(get_requester),
    service: BookingLifecycleManager = Depends(get_booking_service),
) -> CancelBookingResponse:
    try:
        result = service.cancel_booking(requester, booking_id)
        return CancelBookingResponse(
            booking=to_booking_response(result.booking, service.now()),
            refunded_credits=result.refunded_credits,
        )
    except BookingEngineError as exc:
        raise_booking_http_error(exc)
    except Exception as exc:  # pragma: no cover - unexpected failure
        logger.exception("Unexpected booking cancellation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to cancel booking",
        ) from exc


@router.post("/bookings/preview", response_model=PreviewCreditsResponse)
async def preview_credits(
    payload: PreviewCreditsRequest,
    _: Requester = Depends(get_requester),
    service: BookingLifecycleManager = Depends(get_booking_service),
) -> PreviewCreditsResponse:
    """Cost estimate rendered before submission; same rounding as the charge."""
    try:
        credits = service.preview_credits(payload.room_id, payload.start_time, payload.end_time)
        return PreviewCreditsResponse(room_id=payload.room_id, credits=credits)
    except BookingEngineError as exc:
        raise_booking_http_error(exc)


@router.get("/rooms", response_model=list[RoomResponse])
async def list_rooms(
    site: Optional[Site] = Query(default=None),
    available_only: bool = Query(default=False),
    _: Requester = Depends(get_requester),
    checker: AvailabilityChecker = Depends(get_availability_checker),
) -> list[RoomResponse]:
    return [
        RoomResponse(
            id=room.room_id,
            name=room.name,
            capacity=room.capacity,
            credit_cost_per_hour=room.credit_cost_per_hour,
            is_available=room.is_available,
            site=room.site,
        )
        for room in checker.list_rooms(site=site, available_only=available_only)
    ]


@router.get("/rooms/{room_id}/availability", response_model=RoomAvailabilityResponse)
async def room_availability(
    room_id: int,
    start: datetime = Query(...),
    end: datetime = Query(...),
    _: Requester = Depends(get_requester),
    checker: AvailabilityChecker = Depends(get_availability_checker),
) -> RoomAvailabilityResponse:
    try:
        busy = checker.list_confirmed_intervals(room_id, start, end)
        return RoomAvailabilityResponse(
            room_id=room_id,
            window_start=start,
            window_end=end,
            is_available=not busy,
            busy=[BusyInterval(start_time=item[0], end_time=item[1]) for item in busy],
        )
    except BookingEngineError as exc:
        raise_booking_http_error(exc)


@router.get("/credits/me", response_model=PersonalBalanceResponse)
async def my_credits(
    requester: Requester = Depends(get_requester),
    ledger: CreditLedger = Depends(get_credit_ledger),
) -> PersonalBalanceResponse:
    try:
        balance = ledger.get_personal_balance(requester.user_id)
    except BookingEngineError as exc:
        raise_booking_http_error(exc)
    return PersonalBalanceResponse(
        user_id=balance.user_id,
        allocated=balance.allocated,
        used=balance.used,
        available=balance.available,
    )


@router.get("/organizations/{org_id}/credits", response_model=OrganizationBalanceResponse)
async def organization_credits(
    org_id: str,
    month: Optional[date] = Query(default=None),
    requester: Requester = Depends(get_requester),
    ledger: CreditLedger = Depends(get_credit_ledger),
) -> OrganizationBalanceResponse:
    if not requester.is_staff and requester.organization_id != org_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "not_member", "message": "Not a member of this organization"},
        )
    try:
        balance = ledger.get_organization_balance(org_id, month=month)
    except BookingEngineError as exc:
        raise_booking_http_error(exc)
    return OrganizationBalanceResponse(
        organization_id=balance.organization_id,
        month_start=balance.month_start,
        monthly_allocation=balance.monthly_allocation,
        used=balance.used,
        available=balance.available,
        extra_credits=balance.extra_credits,
    )

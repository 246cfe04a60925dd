"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Any, NoReturn

from fastapi import Depends, Header, HTTPException, Request, status

from room_booking.domain import errors
from room_booking.domain.models import Requester
from room_booking.services.availability_service import AvailabilityChecker
from room_booking.services.booking_service import BookingLifecycleManager
from room_booking.services.identity_service import IdentityService
from room_booking.services.ledger_service import CreditLedger
from room_booking.services.reporting_service import ReportingService
from room_booking.utils.logger import get_logger


logger = get_logger(__name__)

_STATUS_BY_ERROR: dict[type[errors.BookingEngineError], int] = {
    errors.InvalidInterval: status.HTTP_400_BAD_REQUEST,
    errors.PastStartTime: status.HTTP_400_BAD_REQUEST,
    errors.InvalidDuration: status.HTTP_400_BAD_REQUEST,
    errors.InsufficientCredits: status.HTTP_402_PAYMENT_REQUIRED,
    errors.BillingNotPermitted: status.HTTP_403_FORBIDDEN,
    errors.NotOwner: status.HTTP_403_FORBIDDEN,
    errors.GuestBookingNotPermitted: status.HTTP_403_FORBIDDEN,
    errors.UnknownRequester: status.HTTP_401_UNAUTHORIZED,
    errors.RoomNotFound: status.HTTP_404_NOT_FOUND,
    errors.BookingNotFound: status.HTTP_404_NOT_FOUND,
    errors.OrganizationNotFound: status.HTTP_404_NOT_FOUND,
    errors.RoomUnavailable: status.HTTP_409_CONFLICT,
    errors.BookingAlreadyCancelled: status.HTTP_409_CONFLICT,
    errors.CancellationWindowExpired: status.HTTP_409_CONFLICT,
}


def raise_booking_http_error(exc: errors.BookingEngineError) -> NoReturn:
    """Translate an engine error into an HTTP error with a stable code."""
    if not exc.user_correctable:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": exc.code, "message": "The operation failed; nothing was changed"},
        ) from exc
    status_code = _STATUS_BY_ERROR.get(type(exc), status.HTTP_400_BAD_REQUEST)
    raise HTTPException(
        status_code=status_code,
        detail={"code": exc.code, "message": str(exc)},
    ) from exc


def _service(request: Request, name: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} is not initialized",
        )
    return service


def get_booking_service(request: Request) -> BookingLifecycleManager:
    return _service(request, "booking_service")


def get_availability_checker(request: Request) -> AvailabilityChecker:
    return _service(request, "availability_checker")


def get_credit_ledger(request: Request) -> CreditLedger:
    return _service(request, "credit_ledger")


def get_identity_service(request: Request) -> IdentityService:
    return _service(request, "identity_service")


def get_reporting_service(request: Request) -> ReportingService:
    return _service(request, "reporting_service")


async def get_requester(
    x_user_id: int | None = Header(default=None),
    identity_service: IdentityService = Depends(get_identity_service),
) -> Requester:
    if x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "unauthenticated", "message": "X-User-Id header is required"},
        )
    try:
        return identity_service.resolve_requester(x_user_id)
    except errors.UnknownRequester as exc:
        raise_booking_http_error(exc)


async def require_staff(requester: Requester = Depends(get_requester)) -> Requester:
    if not requester.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "staff_only", "message": "This endpoint is restricted to staff"},
        )
    return requester

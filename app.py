"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the booking engine services, registers routers, and runs startup
initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from room_booking.controllers.booking_controller import router as booking_router
from room_booking.controllers.report_controller import router as report_router
from room_booking.repository.data_repository import DataRepository
from room_booking.services.availability_service import AvailabilityChecker
from room_booking.services.billing_service import BillingResolver
from room_booking.services.booking_service import BookingLifecycleManager
from room_booking.services.event_service import BookingEventBroadcaster
from room_booking.services.identity_service import IdentityService
from room_booking.services.ledger_service import CreditLedger
from room_booking.services.reporting_service import ReportingService
from room_booking.utils.clock import Clock, utc_now
from room_booking.utils.config import Settings, get_settings
from room_booking.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every service shares one repository and one clock, and is reachable from
    app.state for the controllers' dependency providers.
    """
    settings = settings or get_settings()
    clock = clock or utc_now

    # --- Repository (SQLite connection factory + write transactions) ---
    repository = DataRepository(settings)

    # --- Engine services ---
    events = BookingEventBroadcaster()
    availability_checker = AvailabilityChecker(repository=repository, settings=settings)
    credit_ledger = CreditLedger(repository=repository, settings=settings, clock=clock)
    booking_service = BookingLifecycleManager(
        repository=repository,
        settings=settings,
        availability=availability_checker,
        ledger=credit_ledger,
        billing=BillingResolver(),
        events=events,
        clock=clock,
    )
    identity_service = IdentityService(repository=repository, settings=settings)
    reporting_service = ReportingService(
        repository=repository,
        ledger=credit_ledger,
        settings=settings,
        clock=clock,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app, settings)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(booking_router)
    app.include_router(report_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, object]:
        return {"status": "ok", "events": events.get_stats()}

    # --- Inject services into app.state for dependency resolution ---
    app.state.repository = repository
    app.state.events = events
    app.state.availability_checker = availability_checker
    app.state.credit_ledger = credit_ledger
    app.state.booking_service = booking_service
    app.state.identity_service = identity_service
    app.state.reporting_service = reporting_service

    return app


def _startup(app: FastAPI, settings: Settings) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema (tables, indexes, overlap triggers) must exist before seeding.
    """
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding demo organizations, members and rooms")
        repository.seed_demo_data()

    logger.info("Startup complete, booking engine ready")


# Module-level app object for uvicorn
app = create_app()

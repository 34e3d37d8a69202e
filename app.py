"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from scheduling_engine.controllers.admin_controller import router as admin_router
from scheduling_engine.controllers.scheduling_controller import router as scheduling_router
from scheduling_engine.repository.data_repository import DataRepository
from scheduling_engine.services.allocation_service import OverflowAllocationService
from scheduling_engine.services.auth_service import AuthService
from scheduling_engine.services.availability_service import AvailabilityReportService
from scheduling_engine.services.capacity_service import CapacityResolver
from scheduling_engine.services.reschedule_service import RescheduleService
from scheduling_engine.services.reservation_service import ReservationService
from scheduling_engine.services.usage_service import UsageAggregator
from scheduling_engine.utils.config import Settings, get_settings
from scheduling_engine.utils.locks import KeyedLockRegistry
from scheduling_engine.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    The allocator and the reservation service share one lock registry so
    writes to the same (channel, date, slot) never interleave.
    """
    settings = settings or get_settings()

    # --- Repository (single SQLite connection factory) ---
    repository = DataRepository(settings)

    # --- Services (business logic, no direct DB access) ---
    locks = KeyedLockRegistry()
    capacity_resolver = CapacityResolver(repository=repository, settings=settings)
    usage_aggregator = UsageAggregator(repository=repository, settings=settings)
    allocation_service = OverflowAllocationService(
        repository=repository,
        settings=settings,
        capacity_resolver=capacity_resolver,
        usage_aggregator=usage_aggregator,
        locks=locks,
    )
    availability_service = AvailabilityReportService(
        repository=repository,
        settings=settings,
        capacity_resolver=capacity_resolver,
        usage_aggregator=usage_aggregator,
    )
    reschedule_service = RescheduleService(
        repository=repository,
        settings=settings,
        capacity_resolver=capacity_resolver,
    )
    reservation_service = ReservationService(
        repository=repository,
        settings=settings,
        capacity_resolver=capacity_resolver,
        usage_aggregator=usage_aggregator,
        locks=locks,
    )
    auth_service = AuthService(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(scheduling_router)
    app.include_router(admin_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.repository = repository
    app.state.allocation_service = allocation_service
    app.state.availability_service = availability_service
    app.state.reschedule_service = reschedule_service
    app.state.reservation_service = reservation_service
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema must exist before the channel and slot catalogs are seeded.
    """
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    logger.info("Startup: seeding channel and time-slot catalogs (skipped if present)")
    repository.seed_reference_data()

    logger.info("Startup complete, system ready")


# Module-level app object for uvicorn
app = create_app()

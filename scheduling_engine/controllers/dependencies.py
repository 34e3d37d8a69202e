"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from scheduling_engine.services.allocation_service import OverflowAllocationService
from scheduling_engine.services.auth_service import AuthenticationError, AuthService
from scheduling_engine.services.availability_service import AvailabilityReportService
from scheduling_engine.services.reschedule_service import RescheduleService
from scheduling_engine.services.reservation_service import ReservationService
from scheduling_engine.utils.config import get_settings


bearer_scheme = HTTPBearer(auto_error=False)


def _service_from_state(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} service is not initialized",
        )
    return service


def get_auth_service(request: Request) -> AuthService:
    service = getattr(request.app.state, "auth_service", None)
    if service is None:
        service = AuthService(settings=get_settings())
        request.app.state.auth_service = service
    return service


def get_allocation_service(request: Request) -> OverflowAllocationService:
    return _service_from_state(request, "allocation_service", "Allocation")


def get_availability_service(request: Request) -> AvailabilityReportService:
    return _service_from_state(request, "availability_service", "Availability")


def get_reschedule_service(request: Request) -> RescheduleService:
    return _service_from_state(request, "reschedule_service", "Reschedule")


def get_reservation_service(request: Request) -> ReservationService:
    return _service_from_state(request, "reservation_service", "Reservation")


_BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}


async def require_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> None:
    """Guard for administrative routes; open when no admin token is configured."""
    if not auth_service.auth_enabled:
        return
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header with Bearer token is required",
            headers=_BEARER_CHALLENGE,
        )
    try:
        auth_service.validate_bearer_token(credentials.credentials)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers=_BEARER_CHALLENGE,
        ) from exc

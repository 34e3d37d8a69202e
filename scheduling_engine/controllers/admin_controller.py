"""Controller layer for admin login, administrative availability and holds."""

from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, Field

from scheduling_engine.controllers.dependencies import (
    bearer_scheme,
    get_auth_service,
    get_availability_service,
    get_reservation_service,
    require_admin,
)
from scheduling_engine.controllers.scheduling_controller import (
    AvailabilityResponse,
    build_availability_response,
)
from scheduling_engine.domain.constraints import format_quantity
from scheduling_engine.domain.models import KIND_HOLD, ReportMode, ReservationRecord
from scheduling_engine.repository.data_repository import LedgerError
from scheduling_engine.services.auth_service import (
    AdminTokenNotConfiguredError,
    AuthService,
    InvalidAdminTokenError,
)
from scheduling_engine.services.availability_service import AvailabilityReportService
from scheduling_engine.services.capacity_service import ChannelNotFoundError
from scheduling_engine.services.reservation_service import (
    CapacityExceededError,
    ReservationNotFoundError,
    ReservationService,
    ReservationValidationError,
)
from scheduling_engine.utils.config import get_settings
from scheduling_engine.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(tags=["admin"])

ReservationKind = Literal["confirmed", "hold"]


class LoginRequest(BaseModel):
    admin_token: str = Field(min_length=1)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class CreateReservationRequest(BaseModel):
    channel: str = Field(min_length=1)
    date: str = Field(min_length=1)
    slot: str = Field(pattern=settings.slot_label_regex)
    quantity: Decimal = Field(gt=0)
    requester_area: str = Field(min_length=1)
    kind: ReservationKind = KIND_HOLD
    requester: Optional[str] = None
    user_id: Optional[str] = None
    reference: Optional[str] = None


class UpdateReservationRequest(BaseModel):
    channel: Optional[str] = Field(default=None, min_length=1)
    date: Optional[str] = Field(default=None, min_length=1)
    slot: Optional[str] = Field(default=None, pattern=settings.slot_label_regex)
    quantity: Optional[Decimal] = Field(default=None, gt=0)
    requester_area: Optional[str] = Field(default=None, min_length=1)
    kind: Optional[ReservationKind] = None
    requester: Optional[str] = None
    reference: Optional[str] = None


class ReservationResponse(BaseModel):
    reservation_id: int = Field(gt=0)
    channel_id: str
    date: str
    slot: str
    quantity: str
    kind: ReservationKind
    requester_area: Optional[str] = None
    requester: Optional[str] = None
    user_id: Optional[str] = None
    reference: Optional[str] = None
    created_at: Optional[str] = None


class DeleteResponse(BaseModel):
    deleted: int = Field(ge=0)


def _reservation_response(record: ReservationRecord) -> ReservationResponse:
    return ReservationResponse(
        reservation_id=record.reservation_id,
        channel_id=record.channel_id,
        date=record.date,
        slot=record.slot,
        quantity=format_quantity(record.quantity),
        kind=record.kind,
        requester_area=record.requester_area,
        requester=record.requester,
        user_id=record.user_id,
        reference=record.reference,
        created_at=record.created_at,
    )


def _reservation_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ReservationValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, (ChannelNotFoundError, ReservationNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, CapacityExceededError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    logger.exception("Reservation ledger failure")
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


_RESERVATION_ERRORS = (
    ReservationValidationError,
    ChannelNotFoundError,
    ReservationNotFoundError,
    CapacityExceededError,
    LedgerError,
)


@router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
async def login(
    payload: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    try:
        token = auth_service.login(payload.admin_token)
    except (AdminTokenNotConfiguredError, InvalidAdminTokenError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    return LoginResponse(access_token=token)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> None:
    if credentials is not None:
        auth_service.logout(credentials.credentials)


@router.get(
    "/admin/availability",
    response_model=AvailabilityResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def admin_availability(
    channel: str = Query(min_length=1),
    date: str = Query(min_length=1),
    service: AvailabilityReportService = Depends(get_availability_service),
) -> AvailabilityResponse:
    """Administrative view: every hold counts as used."""
    return build_availability_response(
        service,
        channel=channel,
        date=date,
        requester_area=None,
        mode=ReportMode.ADMINISTRATIVE,
    )


@router.post(
    "/admin/reservations",
    response_model=ReservationResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
async def create_reservation(
    payload: CreateReservationRequest,
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    try:
        record = service.create(
            channel=payload.channel,
            date=payload.date,
            slot=payload.slot,
            quantity=payload.quantity,
            requester_area=payload.requester_area,
            kind=payload.kind,
            requester=payload.requester,
            user_id=payload.user_id,
            reference=payload.reference,
        )
    except _RESERVATION_ERRORS as exc:
        raise _reservation_error(exc) from exc
    return _reservation_response(record)


@router.get(
    "/admin/reservations",
    response_model=list[ReservationResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def list_reservations(
    user_id: Optional[str] = None,
    requester_area: Optional[str] = None,
    channel: Optional[str] = None,
    date: Optional[str] = None,
    kind: Optional[ReservationKind] = None,
    service: ReservationService = Depends(get_reservation_service),
) -> list[ReservationResponse]:
    try:
        records = service.list_reservations(
            user_id=user_id,
            requester_area=requester_area,
            channel=channel,
            date=date,
            kind=kind,
        )
    except _RESERVATION_ERRORS as exc:
        raise _reservation_error(exc) from exc
    return [_reservation_response(record) for record in records]


@router.get(
    "/admin/reservations/{reservation_id}",
    response_model=ReservationResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def get_reservation(
    reservation_id: int,
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    try:
        record = service.get(reservation_id)
    except _RESERVATION_ERRORS as exc:
        raise _reservation_error(exc) from exc
    return _reservation_response(record)


@router.patch(
    "/admin/reservations/{reservation_id}",
    response_model=ReservationResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def update_reservation(
    reservation_id: int,
    payload: UpdateReservationRequest,
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    try:
        record = service.update(reservation_id, **payload.model_dump(exclude_none=True))
    except _RESERVATION_ERRORS as exc:
        raise _reservation_error(exc) from exc
    return _reservation_response(record)


@router.delete(
    "/admin/reservations/{reservation_id}",
    response_model=DeleteResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def delete_reservation(
    reservation_id: int,
    service: ReservationService = Depends(get_reservation_service),
) -> DeleteResponse:
    try:
        deleted = service.delete(reservation_id)
    except LedgerError as exc:
        raise _reservation_error(exc) from exc
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Reservation {reservation_id} not found",
        )
    return DeleteResponse(deleted=1)

"""HTTP controller layer for allocation, availability and rescheduling."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from scheduling_engine.controllers.dependencies import (
    get_allocation_service,
    get_availability_service,
    get_reschedule_service,
)
from scheduling_engine.domain.constraints import format_quantity
from scheduling_engine.domain.models import (
    AllocationDiagnostic,
    AllocationEntry,
    AllocationRequest,
    ReportMode,
    RequestAllocation,
    RescheduleTarget,
    SlotTarget,
)
from scheduling_engine.repository.data_repository import LedgerError
from scheduling_engine.services.allocation_service import (
    AllocationPersistenceError,
    OverflowAllocationService,
)
from scheduling_engine.services.availability_service import (
    AvailabilityReportService,
    AvailabilityValidationError,
)
from scheduling_engine.services.capacity_service import ChannelNotFoundError
from scheduling_engine.services.reschedule_service import (
    RescheduleService,
    RescheduleValidationError,
)
from scheduling_engine.utils.config import get_settings
from scheduling_engine.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(tags=["scheduling"])


class AllocationRequestItem(BaseModel):
    """Malformed items are reported as diagnostics."""

    channel: str = ""
    date: str = ""
    slot: str = ""
    quantity: Decimal = Decimal("0")
    requester_area: Optional[str] = None
    requester: Optional[str] = None
    user_id: Optional[str] = None
    reference: Optional[str] = None


class AllocateRequest(BaseModel):
    requests: list[AllocationRequestItem] = Field(min_length=1)
    persist: bool = True
    apply_shared_capacity: Optional[bool] = None


class AllocationEntryResponse(BaseModel):
    channel_id: str
    date: str
    slot: str
    quantity: str
    channel_reference: str
    requested_slot: str
    reservation_id: Optional[int] = None


class RequestAllocationResponse(BaseModel):
    request_index: int = Field(ge=0)
    entries: list[AllocationEntryResponse]


class DiagnosticResponse(BaseModel):
    request_index: int = Field(ge=0)
    reason: str
    channel_reference: str
    date: str
    requested_slot: str
    quantity: str
    message: str


class AllocateResponse(BaseModel):
    allocations: list[RequestAllocationResponse]
    diagnostics: list[DiagnosticResponse]


class SlotAvailabilityResponse(BaseModel):
    slot: str
    max_value: str
    total_used: str
    available: str
    same_area_reserved: Optional[str] = None


class AvailabilityResponse(BaseModel):
    channel: str
    date: str
    mode: ReportMode
    slots: list[SlotAvailabilityResponse]


class SlotTargetRequest(BaseModel):
    channel: str = ""
    date: str = ""
    slot: str = ""


class RescheduleTargetRequest(BaseModel):
    channel: str = Field(min_length=1)
    date: str = Field(min_length=1)
    slot: str = Field(pattern=settings.slot_label_regex)
    quantity: Decimal = Field(gt=0)
    requester_area: Optional[str] = None


class RescheduleRequest(BaseModel):
    request_id: str = Field(min_length=1)
    old: SlotTargetRequest = Field(default_factory=SlotTargetRequest)
    new: RescheduleTargetRequest
    is_initial_fill: bool = False


class RescheduleResponse(BaseModel):
    skipped: bool
    deleted_count: int = Field(ge=0)
    reservation_id: Optional[int] = None


def _entry_response(entry: AllocationEntry) -> AllocationEntryResponse:
    return AllocationEntryResponse(
        channel_id=entry.channel_id,
        date=entry.date,
        slot=entry.slot,
        quantity=format_quantity(entry.quantity),
        channel_reference=entry.channel_reference,
        requested_slot=entry.requested_slot,
        reservation_id=entry.reservation_id,
    )


def _allocation_response(item: RequestAllocation) -> RequestAllocationResponse:
    return RequestAllocationResponse(
        request_index=item.request_index,
        entries=[_entry_response(entry) for entry in item.entries],
    )


def _diagnostic_response(item: AllocationDiagnostic) -> DiagnosticResponse:
    return DiagnosticResponse(
        request_index=item.request_index,
        reason=item.reason.value,
        channel_reference=item.channel_reference,
        date=item.date,
        requested_slot=item.requested_slot,
        quantity=format_quantity(item.quantity),
        message=item.message,
    )


def build_availability_response(
    service: AvailabilityReportService,
    *,
    channel: str,
    date: str,
    requester_area: Optional[str],
    mode: ReportMode,
) -> AvailabilityResponse:
    try:
        rows = service.report(
            channel=channel,
            date=date,
            requester_area=requester_area,
            mode=mode,
        )
    except AvailabilityValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except LedgerError as exc:
        logger.exception("Availability ledger failure")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    return AvailabilityResponse(
        channel=channel,
        date=date,
        mode=mode,
        slots=[SlotAvailabilityResponse(**row.to_dict()) for row in rows],
    )


@router.post(
    "/allocate",
    response_model=AllocateResponse,
    status_code=status.HTTP_200_OK,
)
async def allocate(
    payload: AllocateRequest,
    service: OverflowAllocationService = Depends(get_allocation_service),
) -> AllocateResponse:
    """Place each requested send, cascading overflow to later slots."""
    requests = [
        AllocationRequest(
            channel=item.channel,
            date=item.date,
            slot=item.slot,
            quantity=item.quantity,
            requester_area=item.requester_area,
            requester=item.requester,
            user_id=item.user_id,
            reference=item.reference,
        )
        for item in payload.requests
    ]
    try:
        result = service.allocate(
            requests,
            persist=payload.persist,
            apply_shared_capacity=payload.apply_shared_capacity,
        )
    except AllocationPersistenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "message": str(exc),
                "request_index": exc.request_index,
                "committed_entries": [
                    _entry_response(entry).model_dump() for entry in exc.committed_entries
                ],
                "completed": [
                    _allocation_response(item).model_dump() for item in exc.completed
                ],
            },
        ) from exc
    return AllocateResponse(
        allocations=[_allocation_response(item) for item in result.allocations],
        diagnostics=[_diagnostic_response(item) for item in result.diagnostics],
    )


@router.get(
    "/availability",
    response_model=AvailabilityResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
)
async def availability(
    channel: str = Query(min_length=1),
    date: str = Query(min_length=1),
    requester_area: Optional[str] = None,
    service: AvailabilityReportService = Depends(get_availability_service),
) -> AvailabilityResponse:
    """Self-service view: the requester's own holds do not reduce availability."""
    return build_availability_response(
        service,
        channel=channel,
        date=date,
        requester_area=requester_area,
        mode=ReportMode.SELF_SERVICE,
    )


@router.post(
    "/reschedule",
    response_model=RescheduleResponse,
    status_code=status.HTTP_200_OK,
)
async def reschedule(
    payload: RescheduleRequest,
    service: RescheduleService = Depends(get_reschedule_service),
) -> RescheduleResponse:
    try:
        result = service.reschedule(
            request_id=payload.request_id,
            old=SlotTarget(
                channel=payload.old.channel,
                date=payload.old.date,
                slot=payload.old.slot,
            ),
            new=RescheduleTarget(
                channel=payload.new.channel,
                date=payload.new.date,
                slot=payload.new.slot,
                quantity=payload.new.quantity,
                requester_area=payload.new.requester_area,
            ),
            is_initial_fill=payload.is_initial_fill,
        )
    except RescheduleValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except ChannelNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except LedgerError as exc:
        logger.exception("Reschedule ledger failure")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    return RescheduleResponse(
        skipped=result.skipped,
        deleted_count=result.deleted_count,
        reservation_id=result.created.reservation_id if result.created else None,
    )

"""Domain models for channel capacity scheduling."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional


KIND_CONFIRMED = "confirmed"
KIND_HOLD = "hold"
RESERVATION_KINDS = (KIND_CONFIRMED, KIND_HOLD)


class ReportMode(str, Enum):
    SELF_SERVICE = "self_service"
    ADMINISTRATIVE = "administrative"


class DiagnosticReason(str, Enum):
    INVALID_INPUT = "invalid_input"
    CHANNEL_UNRESOLVED = "channel_unresolved"
    CAPACITY_EXHAUSTED = "capacity_exhausted"


@dataclass(frozen=True)
class Channel:
    channel_id: str
    name: str
    capacity: Decimal
    active: bool = True


@dataclass(frozen=True)
class TimeSlot:
    label: str
    active: bool = True


@dataclass(frozen=True)
class ReservationRecord:
    reservation_id: int
    channel_id: str
    date: str
    slot: str
    quantity: Decimal
    kind: str
    requester_area: Optional[str] = None
    requester: Optional[str] = None
    user_id: Optional[str] = None
    reference: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class AllocationRequest:
    channel: str
    date: str
    slot: str
    quantity: Decimal
    requester_area: Optional[str] = None
    requester: Optional[str] = None
    user_id: Optional[str] = None
    reference: Optional[str] = None


@dataclass(frozen=True)
class AllocationEntry:
    channel_id: str
    date: str
    slot: str
    quantity: Decimal
    channel_reference: str
    requested_slot: str
    reservation_id: Optional[int] = None


@dataclass(frozen=True)
class AllocationDiagnostic:
    request_index: int
    reason: DiagnosticReason
    channel_reference: str
    date: str
    requested_slot: str
    quantity: Decimal
    message: str


@dataclass(frozen=True)
class RequestAllocation:
    request_index: int
    entries: list[AllocationEntry]

    @property
    def allocated_quantity(self) -> Decimal:
        return sum((entry.quantity for entry in self.entries), Decimal("0"))


@dataclass(frozen=True)
class AllocationBatchResult:
    allocations: list[RequestAllocation] = field(default_factory=list)
    diagnostics: list[AllocationDiagnostic] = field(default_factory=list)


@dataclass(frozen=True)
class SlotAvailability:
    slot: str
    max_value: str
    total_used: str
    available: str
    same_area_reserved: Optional[str] = None

    def to_dict(self) -> dict[str, str]:
        payload = {
            "slot": self.slot,
            "max_value": self.max_value,
            "total_used": self.total_used,
            "available": self.available,
        }
        if self.same_area_reserved is not None:
            payload["same_area_reserved"] = self.same_area_reserved
        return payload


@dataclass(frozen=True)
class SlotTarget:
    channel: str
    date: str
    slot: str


@dataclass(frozen=True)
class RescheduleTarget:
    channel: str
    date: str
    slot: str
    quantity: Decimal
    requester_area: Optional[str] = None


@dataclass(frozen=True)
class RescheduleResult:
    deleted_count: int
    created: Optional[ReservationRecord]
    skipped: bool = False

"""Domain-level validation and numeric rules for capacity scheduling."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from scheduling_engine.domain.models import AllocationRequest


ZERO = Decimal("0")
TWO_PLACES = Decimal("0.01")

_SLOT_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})(?::\d{2})?$")
_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%Y%m%d")


@dataclass(frozen=True)
class CapacityPolicy:
    """Slot label -> capacity multiplier for shared-capacity slots."""

    shared_capacity_slots: Mapping[str, Decimal] = field(default_factory=dict)

    def multiplier_for(self, slot: str) -> Decimal:
        return Decimal(self.shared_capacity_slots.get(slot, Decimal("1")))


def validate_capacity_policy(policy: CapacityPolicy) -> None:
    for label, multiplier in policy.shared_capacity_slots.items():
        normalize_slot(label)
        if not ZERO < Decimal(multiplier) <= Decimal("1"):
            raise ValueError(f"shared capacity multiplier for {label} must be in (0, 1]")


def normalize_slot(value: Any) -> str:
    """Return a zero-padded ``HH:MM`` label ("8:00" and "08:00:00" -> "08:00")."""
    text = str(value or "").strip()
    match = _SLOT_PATTERN.match(text)
    if match is None:
        raise ValueError(f"time slot '{text}' must follow HH:MM format")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"time slot '{text}' is out of range")
    return f"{hour:02d}:{minute:02d}"


def normalize_date(value: Any) -> str:
    """Return an ISO ``YYYY-MM-DD`` date from the accepted input formats."""
    text = str(value or "").strip()
    for date_format in _DATE_FORMATS:
        try:
            return datetime.strptime(text, date_format).date().isoformat()
        except ValueError:
            continue
    raise ValueError(f"date '{text}' must follow YYYY-MM-DD or DD/MM/YYYY format")


def to_quantity(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        quantity = value
    else:
        try:
            quantity = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"quantity '{value}' is not a number") from exc
    if not quantity.is_finite():
        raise ValueError("quantity must be finite")
    return quantity


def format_quantity(value: Decimal) -> str:
    return str(Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP))


def clamp_available(capacity: Decimal, used: Decimal) -> Decimal:
    return max(ZERO, capacity - used)


def request_validation_error(request: AllocationRequest) -> Optional[str]:
    """Return why ``request`` cannot be allocated, or ``None`` when it is valid."""
    if not str(request.channel or "").strip():
        return "channel is required"
    if not str(request.date or "").strip():
        return "date is required"
    if not str(request.slot or "").strip():
        return "time slot is required"
    try:
        quantity = to_quantity(request.quantity)
    except ValueError as exc:
        return str(exc)
    if quantity <= ZERO:
        return "quantity must be greater than zero"
    try:
        normalize_date(request.date)
        normalize_slot(request.slot)
    except ValueError as exc:
        return str(exc)
    return None

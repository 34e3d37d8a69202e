"""Moves an existing allocation's ledger rows when its channel/date/slot changes."""

from __future__ import annotations

from typing import Optional

from scheduling_engine.domain.constraints import ZERO, normalize_date, normalize_slot, to_quantity
from scheduling_engine.domain.models import (
    KIND_CONFIRMED,
    RescheduleResult,
    RescheduleTarget,
    ReservationRecord,
    SlotTarget,
)
from scheduling_engine.repository.data_repository import DataRepository
from scheduling_engine.services.capacity_service import CapacityResolver
from scheduling_engine.utils.config import Settings, get_settings
from scheduling_engine.utils.logger import get_logger


logger = get_logger(__name__)


class RescheduleValidationError(Exception):
    """Raised when the new placement is malformed."""


class RescheduleService:
    """Direct delete+insert move; the new slot is assumed to have room."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        capacity_resolver: Optional[CapacityResolver] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._resolver = capacity_resolver or CapacityResolver(
            repository=self._repository,
            settings=self._settings,
        )

    def reschedule(
        self,
        request_id: str,
        old: SlotTarget,
        new: RescheduleTarget,
        is_initial_fill: bool = False,
    ) -> RescheduleResult:
        try:
            new_date = normalize_date(new.date)
            new_slot = normalize_slot(new.slot)
            quantity = to_quantity(new.quantity)
        except ValueError as exc:
            raise RescheduleValidationError(str(exc)) from exc
        if quantity <= ZERO:
            raise RescheduleValidationError("quantity must be greater than zero")
        if not str(new.channel or "").strip():
            raise RescheduleValidationError("channel is required")

        if self._same_tuple(old, new):
            logger.info(
                "Reschedule skipped, placement unchanged | request_id=%s | channel=%s | date=%s | slot=%s",
                request_id,
                new.channel,
                new_date,
                new_slot,
            )
            return RescheduleResult(deleted_count=0, created=None, skipped=True)

        new_channel = self._resolver.require_channel(new.channel)

        deleted = 0
        if not is_initial_fill:
            deleted = self._release_old(request_id, old, new)

        created = self._repository.create_reservation(
            channel_id=new_channel.channel_id,
            date=new_date,
            slot=new_slot,
            quantity=quantity,
            kind=KIND_CONFIRMED,
            requester_area=new.requester_area,
            reference=request_id,
        )
        logger.info(
            "Reschedule applied | request_id=%s | deleted=%s | channel_id=%s | date=%s | slot=%s | quantity=%s",
            request_id,
            deleted,
            new_channel.channel_id,
            new_date,
            new_slot,
            quantity,
        )
        return RescheduleResult(deleted_count=deleted, created=created)

    def _same_tuple(self, old: SlotTarget, new: RescheduleTarget) -> bool:
        old_channel = str(old.channel or "").strip() or str(new.channel).strip()
        try:
            old_date = normalize_date(old.date)
            old_slot = normalize_slot(old.slot)
        except ValueError:
            return False
        if old_date != normalize_date(new.date) or old_slot != normalize_slot(new.slot):
            return False
        if old_channel == str(new.channel).strip():
            return True
        old_resolved = self._resolver.resolve_channel(old_channel)
        new_resolved = self._resolver.resolve_channel(new.channel)
        return (
            old_resolved is not None
            and new_resolved is not None
            and old_resolved.channel_id == new_resolved.channel_id
        )

    def _release_old(self, request_id: str, old: SlotTarget, new: RescheduleTarget) -> int:
        """Delete this allocation's confirmed rows at the old tuple; 0 when none remain.

        Rows tagged with ``request_id`` always belong to it. Untagged rows are
        claimed only by a move that names a requester area, and only within it.
        """
        old_channel_ref = str(old.channel or "").strip() or new.channel
        old_channel = self._resolver.resolve_channel(old_channel_ref)
        if old_channel is None or not old.date or not old.slot:
            return 0
        try:
            old_date = normalize_date(old.date)
            old_slot = normalize_slot(old.slot)
        except ValueError:
            logger.warning(
                "Old placement unreadable, nothing released | request_id=%s | date=%s | slot=%s",
                request_id,
                old.date,
                old.slot,
            )
            return 0

        candidates = self._repository.list_reservations(
            old_channel.channel_id, old_date, old_slot, kinds=(KIND_CONFIRMED,)
        )
        to_delete = [
            record.reservation_id
            for record in candidates
            if _belongs_to(record, request_id, new.requester_area)
        ]
        if not to_delete:
            logger.info(
                "No old reservations to release | request_id=%s | channel_id=%s | date=%s | slot=%s",
                request_id,
                old_channel.channel_id,
                old_date,
                old_slot,
            )
            return 0
        return self._repository.delete_reservations(to_delete)


def _belongs_to(record: ReservationRecord, request_id: str, area: Optional[str]) -> bool:
    if area and record.requester_area != area:
        return False
    if record.reference == request_id:
        return True
    return bool(area) and record.reference is None

"""Capacity consumption per (channel, date, slot)."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from scheduling_engine.domain.constraints import ZERO
from scheduling_engine.domain.models import KIND_CONFIRMED, KIND_HOLD
from scheduling_engine.repository.data_repository import DataRepository
from scheduling_engine.utils.config import Settings, get_settings
from scheduling_engine.utils.logger import get_logger


logger = get_logger(__name__)


class UsageAggregator:
    """Sums ledger quantities, exempting holds owned by the asking area."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def used_capacity(
        self,
        channel_id: str,
        date: str,
        slot: str,
        exclude_area: Optional[str] = None,
        *,
        exclude_reservation_id: Optional[int] = None,
    ) -> Decimal:
        """Confirmed quantities plus holds not owned by ``exclude_area``."""
        total = ZERO
        exempted = ZERO
        for record in self._repository.list_reservations(channel_id, date, slot):
            if exclude_reservation_id is not None and record.reservation_id == exclude_reservation_id:
                continue
            if record.kind == KIND_CONFIRMED:
                total += record.quantity
            elif record.kind == KIND_HOLD:
                if exclude_area and record.requester_area == exclude_area:
                    exempted += record.quantity
                    continue
                total += record.quantity

        logger.debug(
            "Usage computed | channel_id=%s | date=%s | slot=%s | used=%s | exempted_holds=%s",
            channel_id,
            date,
            slot,
            total,
            exempted,
        )
        return total

    def same_area_holds(self, channel_id: str, date: str, slot: str, area: Optional[str]) -> Decimal:
        if not area:
            return ZERO
        return sum(
            (
                record.quantity
                for record in self._repository.list_reservations(
                    channel_id, date, slot, kinds=(KIND_HOLD,)
                )
                if record.requester_area == area
            ),
            ZERO,
        )

"""Read-only per-slot availability reporting."""

from __future__ import annotations

from typing import Optional

from scheduling_engine.domain.constraints import clamp_available, format_quantity, normalize_date
from scheduling_engine.domain.models import ReportMode, SlotAvailability
from scheduling_engine.repository.data_repository import DataRepository
from scheduling_engine.services.capacity_service import CapacityResolver
from scheduling_engine.services.usage_service import UsageAggregator
from scheduling_engine.utils.config import Settings, get_settings
from scheduling_engine.utils.logger import get_logger


logger = get_logger(__name__)


class AvailabilityValidationError(Exception):
    """Raised when report inputs are malformed."""


class AvailabilityReportService:
    """Builds free-capacity reports for self-service and administrative views.

    Self-service views exempt the requester's own holds and report them
    separately; administrative views count every hold.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        capacity_resolver: Optional[CapacityResolver] = None,
        usage_aggregator: Optional[UsageAggregator] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._resolver = capacity_resolver or CapacityResolver(
            repository=self._repository,
            settings=self._settings,
        )
        self._usage = usage_aggregator or UsageAggregator(
            repository=self._repository,
            settings=self._settings,
        )

    def report(
        self,
        channel: str,
        date: str,
        requester_area: Optional[str] = None,
        mode: ReportMode = ReportMode.SELF_SERVICE,
        apply_shared_capacity: Optional[bool] = None,
    ) -> list[SlotAvailability]:
        try:
            iso_date = normalize_date(date)
        except ValueError as exc:
            raise AvailabilityValidationError(str(exc)) from exc
        mode = ReportMode(mode)
        use_shared_capacity = (
            apply_shared_capacity
            if apply_shared_capacity is not None
            else self._settings.availability_apply_shared_capacity
        )

        resolved = self._resolver.resolve_channel(channel)
        if resolved is None:
            logger.info("Availability report empty | channel=%s | date=%s", channel, iso_date)
            return []

        area = requester_area or None
        rows: list[SlotAvailability] = []
        for slot in self._resolver.active_slots(resolved.channel_id, iso_date):
            max_value = self._resolver.effective_capacity(resolved, slot, use_shared_capacity)
            if mode is ReportMode.SELF_SERVICE:
                total_used = self._usage.used_capacity(
                    resolved.channel_id, iso_date, slot, exclude_area=area
                )
                same_area = format_quantity(
                    self._usage.same_area_holds(resolved.channel_id, iso_date, slot, area)
                )
            else:
                total_used = self._usage.used_capacity(resolved.channel_id, iso_date, slot)
                same_area = None
            rows.append(
                SlotAvailability(
                    slot=slot,
                    max_value=format_quantity(max_value),
                    total_used=format_quantity(total_used),
                    available=format_quantity(clamp_available(max_value, total_used)),
                    same_area_reserved=same_area,
                )
            )

        logger.info(
            "Availability report generated | channel_id=%s | date=%s | mode=%s | slots=%s",
            resolved.channel_id,
            iso_date,
            mode.value,
            len(rows),
        )
        return rows

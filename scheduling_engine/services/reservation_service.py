"""Capacity-validated management of individual reservation records."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from scheduling_engine.domain.constraints import (
    ZERO,
    clamp_available,
    format_quantity,
    normalize_date,
    normalize_slot,
    to_quantity,
)
from scheduling_engine.domain.models import (
    KIND_CONFIRMED,
    KIND_HOLD,
    RESERVATION_KINDS,
    Channel,
    ReservationRecord,
)
from scheduling_engine.repository.data_repository import DataRepository
from scheduling_engine.services.capacity_service import CapacityResolver, ChannelNotFoundError
from scheduling_engine.services.usage_service import UsageAggregator
from scheduling_engine.utils.config import Settings, get_settings
from scheduling_engine.utils.locks import KeyedLockRegistry
from scheduling_engine.utils.logger import get_logger


logger = get_logger(__name__)


class ReservationValidationError(Exception):
    """Raised when reservation inputs are invalid."""


class ReservationNotFoundError(Exception):
    """Raised when a reservation id does not exist."""


class CapacityExceededError(Exception):
    """Raised when a single reservation does not fit its slot."""

    def __init__(
        self,
        *,
        slot: str,
        limit: Decimal,
        used: Decimal,
        same_area_holds: Decimal,
        requested: Decimal,
    ) -> None:
        available = clamp_available(limit, used)
        super().__init__(
            f"Insufficient capacity at {slot}. Limit: {format_quantity(limit)}, "
            f"used by others: {format_quantity(used)}, "
            f"reusable holds (your area): {format_quantity(same_area_holds)}, "
            f"requested: {format_quantity(requested)}, "
            f"available: {format_quantity(available)}"
        )
        self.slot = slot
        self.limit = limit
        self.used = used
        self.available = available
        self.requested = requested


class ReservationService:
    """Single-record create/update/delete with the same capacity rule as allocation."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        capacity_resolver: Optional[CapacityResolver] = None,
        usage_aggregator: Optional[UsageAggregator] = None,
        locks: Optional[KeyedLockRegistry] = None,
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
        self._locks = locks or KeyedLockRegistry()

    def create(
        self,
        *,
        channel: str,
        date: str,
        slot: str,
        quantity: Any,
        requester_area: str,
        kind: Optional[str] = None,
        requester: Optional[str] = None,
        user_id: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> ReservationRecord:
        iso_date, label, amount = self._validate_placement(date, slot, quantity)
        if not str(requester_area or "").strip():
            raise ReservationValidationError("requester_area is required")
        resolved_kind = self._resolve_kind(kind, user_id)
        target = self._resolve(channel)

        with self._locks.hold((target.channel_id, iso_date, label)):
            self._ensure_capacity(target, iso_date, label, amount, requester_area)
            record = self._repository.create_reservation(
                channel_id=target.channel_id,
                date=iso_date,
                slot=label,
                quantity=amount,
                kind=resolved_kind,
                requester_area=requester_area,
                requester=requester,
                user_id=user_id,
                reference=reference,
            )
        logger.info(
            "Reservation created | reservation_id=%s | kind=%s | channel_id=%s | date=%s | slot=%s | quantity=%s",
            record.reservation_id,
            record.kind,
            record.channel_id,
            record.date,
            record.slot,
            record.quantity,
        )
        return record

    def update(self, reservation_id: int, **changes: Any) -> ReservationRecord:
        existing = self.get(reservation_id)
        if "kind" in changes and changes["kind"] is not None:
            changes["kind"] = self._resolve_kind(changes["kind"], existing.user_id)
        merged = {
            "channel": changes.get("channel") or existing.channel_id,
            "date": changes.get("date") or existing.date,
            "slot": changes.get("slot") or existing.slot,
            "quantity": changes["quantity"] if changes.get("quantity") is not None else existing.quantity,
            "requester_area": (
                changes["requester_area"]
                if changes.get("requester_area") is not None
                else existing.requester_area
            ),
        }
        iso_date, label, amount = self._validate_placement(
            merged["date"], merged["slot"], merged["quantity"]
        )
        target = self._resolve(merged["channel"])

        with self._locks.hold((target.channel_id, iso_date, label)):
            self._ensure_capacity(
                target,
                iso_date,
                label,
                amount,
                merged["requester_area"],
                exclude_reservation_id=reservation_id,
            )
            updates = {
                "channel_id": target.channel_id,
                "date": iso_date,
                "slot": label,
                "quantity": amount,
                "requester_area": merged["requester_area"],
            }
            for optional_field in ("kind", "requester", "reference"):
                if changes.get(optional_field) is not None:
                    updates[optional_field] = changes[optional_field]
            updated = self._repository.update_reservation(reservation_id, **updates)
        if updated is None:
            raise ReservationNotFoundError(f"Reservation {reservation_id} not found")
        logger.info("Reservation updated | reservation_id=%s", reservation_id)
        return updated

    def delete(self, reservation_id: int) -> bool:
        deleted = self._repository.delete_reservations([reservation_id])
        logger.info("Reservation delete | reservation_id=%s | deleted=%s", reservation_id, deleted)
        return deleted > 0

    def delete_at(
        self,
        channel: str,
        date: str,
        slot: str,
        requester_area: Optional[str] = None,
    ) -> int:
        """Release every row at a tuple, optionally only one area's rows."""
        iso_date, label, _ = self._validate_placement(date, slot, Decimal("1"))
        target = self._resolver.resolve_channel(channel)
        if target is None:
            return 0
        ids = [
            record.reservation_id
            for record in self._repository.list_reservations(target.channel_id, iso_date, label)
            if not requester_area or record.requester_area == requester_area
        ]
        deleted = self._repository.delete_reservations(ids)
        logger.info(
            "Reservations released | channel_id=%s | date=%s | slot=%s | area=%s | deleted=%s",
            target.channel_id,
            iso_date,
            label,
            requester_area,
            deleted,
        )
        return deleted

    def get(self, reservation_id: int) -> ReservationRecord:
        record = self._repository.get_reservation(reservation_id)
        if record is None:
            raise ReservationNotFoundError(f"Reservation {reservation_id} not found")
        return record

    def list_reservations(
        self,
        *,
        user_id: Optional[str] = None,
        requester_area: Optional[str] = None,
        channel: Optional[str] = None,
        date: Optional[str] = None,
        kind: Optional[str] = None,
    ) -> list[ReservationRecord]:
        channel_id = None
        if channel:
            target = self._resolver.resolve_channel(channel)
            if target is None:
                return []
            channel_id = target.channel_id
        iso_date = None
        if date:
            try:
                iso_date = normalize_date(date)
            except ValueError as exc:
                raise ReservationValidationError(str(exc)) from exc
        return self._repository.search_reservations(
            user_id=user_id,
            requester_area=requester_area,
            channel_id=channel_id,
            date=iso_date,
            kind=kind,
        )

    def _resolve(self, channel: str) -> Channel:
        try:
            return self._resolver.require_channel(channel)
        except ChannelNotFoundError:
            logger.info("Reservation rejected, channel unresolved | channel=%s", channel)
            raise

    @staticmethod
    def _resolve_kind(kind: Optional[str], user_id: Optional[str]) -> str:
        if kind is None:
            return KIND_CONFIRMED if user_id else KIND_HOLD
        if kind not in RESERVATION_KINDS:
            raise ReservationValidationError(
                f"kind must be one of {', '.join(RESERVATION_KINDS)}"
            )
        return kind

    @staticmethod
    def _validate_placement(date: Any, slot: Any, quantity: Any) -> tuple[str, str, Decimal]:
        try:
            iso_date = normalize_date(date)
            label = normalize_slot(slot)
            amount = to_quantity(quantity)
        except ValueError as exc:
            raise ReservationValidationError(str(exc)) from exc
        if amount <= ZERO:
            raise ReservationValidationError("quantity must be greater than zero")
        return iso_date, label, amount

    def _ensure_capacity(
        self,
        channel: Channel,
        date: str,
        slot: str,
        quantity: Decimal,
        requester_area: Optional[str],
        exclude_reservation_id: Optional[int] = None,
    ) -> None:
        limit = self._resolver.effective_capacity(
            channel, slot, self._settings.allocation_apply_shared_capacity
        )
        used = self._usage.used_capacity(
            channel.channel_id,
            date,
            slot,
            requester_area,
            exclude_reservation_id=exclude_reservation_id,
        )
        if quantity > limit - used:
            same_area = self._usage.same_area_holds(channel.channel_id, date, slot, requester_area)
            raise CapacityExceededError(
                slot=slot,
                limit=limit,
                used=used,
                same_area_holds=same_area,
                requested=quantity,
            )

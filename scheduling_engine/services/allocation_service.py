"""Greedy overflow allocation of send volumes across a channel's time slots."""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from scheduling_engine.domain.constraints import (
    ZERO,
    clamp_available,
    normalize_date,
    normalize_slot,
    request_validation_error,
    to_quantity,
)
from scheduling_engine.domain.models import (
    KIND_CONFIRMED,
    AllocationBatchResult,
    AllocationDiagnostic,
    AllocationEntry,
    AllocationRequest,
    Channel,
    DiagnosticReason,
    RequestAllocation,
)
from scheduling_engine.repository.data_repository import DataRepository, LedgerError
from scheduling_engine.services.capacity_service import CapacityResolver, next_slot
from scheduling_engine.services.usage_service import UsageAggregator
from scheduling_engine.utils.config import Settings, get_settings
from scheduling_engine.utils.locks import KeyedLockRegistry
from scheduling_engine.utils.logger import get_logger


logger = get_logger(__name__)

SlotKey = tuple[str, str, str]


class AllocationPersistenceError(Exception):
    """Raised when a ledger read or write fails partway through a batch.

    ``committed_entries`` lists the entries of the failing request that were
    already written; ``completed`` holds the allocations of earlier requests.
    Nothing is rolled back.
    """

    def __init__(
        self,
        message: str,
        *,
        request_index: int,
        committed_entries: list[AllocationEntry],
        completed: list[RequestAllocation],
        diagnostics: list[AllocationDiagnostic],
    ) -> None:
        super().__init__(message)
        self.request_index = request_index
        self.committed_entries = committed_entries
        self.completed = completed
        self.diagnostics = diagnostics


class OverflowAllocationService:
    """Places each request at its slot, cascading overflow to later slots."""

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

    def allocate(
        self,
        requests: Iterable[AllocationRequest],
        *,
        persist: bool = True,
        apply_shared_capacity: Optional[bool] = None,
    ) -> AllocationBatchResult:
        """Allocate a batch in input order, one request fully before the next.

        With ``persist=False`` nothing is written; placements are staged in
        memory so later requests in the batch still see them.
        """
        use_shared_capacity = (
            apply_shared_capacity
            if apply_shared_capacity is not None
            else self._settings.allocation_apply_shared_capacity
        )
        staged: dict[SlotKey, Decimal] = defaultdict(lambda: ZERO)
        allocations: list[RequestAllocation] = []
        diagnostics: list[AllocationDiagnostic] = []

        for index, request in enumerate(requests):
            reason = request_validation_error(request)
            if reason is not None:
                diagnostics.append(
                    self._diagnostic(index, request, DiagnosticReason.INVALID_INPUT, reason)
                )
                continue

            date = normalize_date(request.date)
            requested_slot = normalize_slot(request.slot)
            quantity = to_quantity(request.quantity)
            entries: list[AllocationEntry] = []
            try:
                channel = self._resolver.resolve_channel(request.channel)
                if channel is None:
                    diagnostics.append(
                        self._diagnostic(
                            index,
                            request,
                            DiagnosticReason.CHANNEL_UNRESOLVED,
                            f"channel '{request.channel}' not found or inactive",
                        )
                    )
                    continue
                dropped = self._cascade(
                    channel=channel,
                    request=request,
                    date=date,
                    requested_slot=requested_slot,
                    quantity=quantity,
                    entries=entries,
                    staged=staged,
                    persist=persist,
                    apply_shared_capacity=use_shared_capacity,
                )
            except LedgerError as exc:
                logger.error(
                    "Ledger failed mid-batch | request_index=%s | channel=%s | "
                    "date=%s | committed_entries=%s | error=%s",
                    index,
                    request.channel,
                    date,
                    len(entries),
                    type(exc).__name__,
                )
                raise AllocationPersistenceError(
                    f"Ledger failed while allocating request {index}: {exc}",
                    request_index=index,
                    committed_entries=list(entries),
                    completed=list(allocations),
                    diagnostics=list(diagnostics),
                ) from exc

            allocations.append(RequestAllocation(request_index=index, entries=entries))
            if dropped > ZERO:
                diagnostics.append(
                    AllocationDiagnostic(
                        request_index=index,
                        reason=DiagnosticReason.CAPACITY_EXHAUSTED,
                        channel_reference=request.channel,
                        date=date,
                        requested_slot=requested_slot,
                        quantity=dropped,
                        message=(
                            f"no later slot with capacity on {date} after {requested_slot}; "
                            f"dropped {dropped}"
                        ),
                    )
                )
                logger.warning(
                    "Demand dropped | channel_id=%s | date=%s | requested_slot=%s | dropped=%s",
                    channel.channel_id,
                    date,
                    requested_slot,
                    dropped,
                )

        logger.info(
            "Allocation batch completed | persisted=%s | processed=%s | diagnostics=%s",
            persist,
            len(allocations),
            len(diagnostics),
        )
        return AllocationBatchResult(allocations=allocations, diagnostics=diagnostics)

    def _cascade(
        self,
        *,
        channel: Channel,
        request: AllocationRequest,
        date: str,
        requested_slot: str,
        quantity: Decimal,
        entries: list[AllocationEntry],
        staged: dict[SlotKey, Decimal],
        persist: bool,
        apply_shared_capacity: bool,
    ) -> Decimal:
        """Walk the catalog forward from ``requested_slot``; return what is left unplaced."""
        catalog: Sequence[str] = self._resolver.active_slots(channel.channel_id, date)
        active = set(catalog)
        remaining = quantity
        slot = requested_slot

        while True:
            if slot in active:
                key = (channel.channel_id, date, slot)
                with self._locks.hold(key):
                    capacity = self._resolver.effective_capacity(
                        channel, slot, apply_shared_capacity
                    )
                    used = self._usage.used_capacity(
                        channel.channel_id, date, slot, request.requester_area
                    ) + staged[key]
                    placed = min(remaining, clamp_available(capacity, used))
                    if placed > ZERO:
                        entries.append(
                            self._place(channel, request, date, slot, requested_slot, placed, persist)
                        )
                        if not persist:
                            staged[key] += placed
                        remaining -= placed
                        logger.info(
                            "Placed | channel_id=%s | date=%s | slot=%s | quantity=%s | remaining=%s",
                            channel.channel_id,
                            date,
                            slot,
                            placed,
                            remaining,
                        )

            if remaining <= ZERO:
                return ZERO

            following = next_slot(catalog, slot)
            if following is None:
                return remaining
            logger.debug(
                "Overflow moves forward | channel_id=%s | date=%s | from=%s | to=%s | remaining=%s",
                channel.channel_id,
                date,
                slot,
                following,
                remaining,
            )
            slot = following

    def _place(
        self,
        channel: Channel,
        request: AllocationRequest,
        date: str,
        slot: str,
        requested_slot: str,
        quantity: Decimal,
        persist: bool,
    ) -> AllocationEntry:
        reservation_id = None
        if persist:
            record = self._repository.create_reservation(
                channel_id=channel.channel_id,
                date=date,
                slot=slot,
                quantity=quantity,
                kind=KIND_CONFIRMED,
                requester_area=request.requester_area,
                requester=request.requester,
                user_id=request.user_id,
                reference=request.reference,
            )
            reservation_id = record.reservation_id
        return AllocationEntry(
            channel_id=channel.channel_id,
            date=date,
            slot=slot,
            quantity=quantity,
            channel_reference=request.channel,
            requested_slot=requested_slot,
            reservation_id=reservation_id,
        )

    @staticmethod
    def _diagnostic(
        index: int,
        request: AllocationRequest,
        reason: DiagnosticReason,
        message: str,
    ) -> AllocationDiagnostic:
        try:
            quantity = to_quantity(request.quantity)
        except ValueError:
            quantity = ZERO
        logger.warning(
            "Request discarded | request_index=%s | reason=%s | channel=%s | date=%s | slot=%s | detail=%s",
            index,
            reason.value,
            request.channel,
            request.date,
            request.slot,
            message,
        )
        return AllocationDiagnostic(
            request_index=index,
            reason=reason,
            channel_reference=str(request.channel or ""),
            date=str(request.date or ""),
            requested_slot=str(request.slot or ""),
            quantity=quantity,
            message=message,
        )

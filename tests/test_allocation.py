from __future__ import annotations

import random
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from decimal import Decimal

import pytest

from scheduling_engine.domain.models import (
    KIND_CONFIRMED,
    KIND_HOLD,
    AllocationRequest,
    DiagnosticReason,
)
from scheduling_engine.repository.data_repository import (
    DataRepository,
    LedgerReadError,
    LedgerWriteError,
)
from scheduling_engine.services.allocation_service import (
    AllocationPersistenceError,
    OverflowAllocationService,
)
from scheduling_engine.utils.config import get_settings


TARGET_DATE = "2026-03-02"
CATALOG = ["08:00", "08:30", "09:00", "09:30", "22:00"]


def _build_test_settings(tmp_path, filename: str):
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        shared_capacity_slots={"08:00": Decimal("0.5"), "08:30": Decimal("0.5")},
        allocation_apply_shared_capacity=True,
    )


def _build_service(tmp_path, filename: str, capacity=100, catalog=CATALOG):
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.upsert_channel("ch-email", "E-mail", capacity)
    repository.replace_time_slots(catalog)
    service = OverflowAllocationService(repository=repository, settings=settings)
    return service, repository


def _request(quantity, slot="09:00", area="Marketing", channel="ch-email") -> AllocationRequest:
    return AllocationRequest(
        channel=channel,
        date=TARGET_DATE,
        slot=slot,
        quantity=Decimal(str(quantity)),
        requester_area=area,
    )


def _placements(result, index=0) -> list[tuple[str, Decimal]]:
    allocation = next(item for item in result.allocations if item.request_index == index)
    return [(entry.slot, entry.quantity) for entry in allocation.entries]


def _confirm(repository: DataRepository, slot: str, quantity, kind=KIND_CONFIRMED, area=None):
    repository.create_reservation(
        channel_id="ch-email",
        date=TARGET_DATE,
        slot=slot,
        quantity=Decimal(str(quantity)),
        kind=kind,
        requester_area=area,
    )


def test_overflow_splits_into_the_next_slot(tmp_path):
    service, repository = _build_service(tmp_path, "split.db")

    result = service.allocate([_request(200)])

    assert _placements(result) == [("09:00", Decimal("100")), ("09:30", Decimal("100"))]
    assert result.diagnostics == []
    assert repository.count_reservations() == 2


def test_full_slot_moves_the_whole_request(tmp_path):
    service, repository = _build_service(tmp_path, "move.db", capacity=200)
    _confirm(repository, "09:00", 200)

    result = service.allocate([_request(200)])

    assert _placements(result) == [("09:30", Decimal("200"))]
    entry = result.allocations[0].entries[0]
    assert entry.requested_slot == "09:00"
    assert entry.channel_reference == "ch-email"


def test_over_committed_last_slot_drops_everything(tmp_path):
    service, repository = _build_service(tmp_path, "drop.db", capacity=50, catalog=["22:00"])
    _confirm(repository, "22:00", 60)

    result = service.allocate([_request(100, slot="22:00")])

    assert _placements(result) == []
    assert len(result.diagnostics) == 1
    diagnostic = result.diagnostics[0]
    assert diagnostic.reason is DiagnosticReason.CAPACITY_EXHAUSTED
    assert diagnostic.quantity == Decimal("100")
    assert diagnostic.requested_slot == "22:00"
    assert repository.count_reservations() == 1


def test_partial_placement_then_continue_across_several_slots(tmp_path):
    service, repository = _build_service(tmp_path, "multi_split.db")
    _confirm(repository, "09:00", 70)
    _confirm(repository, "09:30", 90)

    result = service.allocate([_request(150)])

    assert _placements(result) == [
        ("09:00", Decimal("30")),
        ("09:30", Decimal("10")),
        ("22:00", Decimal("100")),
    ]
    assert len(result.diagnostics) == 1
    assert result.diagnostics[0].quantity == Decimal("10")


def test_shared_capacity_slots_are_halved(tmp_path):
    service, _ = _build_service(tmp_path, "halved.db")

    result = service.allocate([_request(80, slot="08:00")])

    assert _placements(result) == [("08:00", Decimal("50")), ("08:30", Decimal("30"))]


def test_halving_can_be_disabled_per_call(tmp_path):
    service, _ = _build_service(tmp_path, "not_halved.db")

    result = service.allocate([_request(80, slot="08:00")], apply_shared_capacity=False)

    assert _placements(result) == [("08:00", Decimal("80"))]


def test_requests_in_a_batch_never_double_book(tmp_path):
    service, repository = _build_service(tmp_path, "batch.db")

    result = service.allocate([_request(80), _request(80, area="Comercial")])

    assert _placements(result, 0) == [("09:00", Decimal("80"))]
    assert _placements(result, 1) == [("09:00", Decimal("20")), ("09:30", Decimal("60"))]
    assert repository.count_reservations() == 3


def test_preview_stages_placements_without_writing(tmp_path):
    service, repository = _build_service(tmp_path, "preview.db")

    result = service.allocate([_request(80), _request(80)], persist=False)

    assert _placements(result, 1) == [("09:00", Decimal("20")), ("09:30", Decimal("60"))]
    assert all(entry.reservation_id is None for entry in result.allocations[1].entries)
    assert repository.count_reservations() == 0


def test_own_area_holds_do_not_block_the_requester(tmp_path):
    service, repository = _build_service(tmp_path, "holds.db")
    _confirm(repository, "09:00", 100, kind=KIND_HOLD, area="Marketing")

    result = service.allocate([_request(50, area="Marketing"), _request(50, area="Comercial")])

    assert _placements(result, 0) == [("09:00", Decimal("50"))]
    assert _placements(result, 1) == [("09:30", Decimal("50"))]


def test_inactive_requested_slot_starts_at_the_next_active_one(tmp_path):
    service, repository = _build_service(tmp_path, "inactive_slot.db")
    repository.upsert_time_slot("09:15", active=False)

    result = service.allocate([_request(40, slot="09:15")])

    assert _placements(result) == [("09:30", Decimal("40"))]


def test_invalid_and_unresolved_requests_are_discarded(tmp_path):
    service, repository = _build_service(tmp_path, "discard.db")
    repository.upsert_channel("ch-old", "Old Channel", 100, active=False)

    result = service.allocate(
        [
            _request(0),
            _request(10, slot=""),
            _request(10, channel="unknown"),
            _request(10, channel="Old Channel"),
            _request(10, channel="E-mail"),
        ]
    )

    reasons = [(item.request_index, item.reason) for item in result.diagnostics]
    assert reasons == [
        (0, DiagnosticReason.INVALID_INPUT),
        (1, DiagnosticReason.INVALID_INPUT),
        (2, DiagnosticReason.CHANNEL_UNRESOLVED),
        (3, DiagnosticReason.CHANNEL_UNRESOLVED),
    ]
    assert [item.request_index for item in result.allocations] == [4]
    assert result.allocations[0].entries[0].channel_id == "ch-email"
    assert result.allocations[0].entries[0].channel_reference == "E-mail"


def test_random_batches_respect_capacity_conservation_and_forward_motion(tmp_path):
    service, repository = _build_service(tmp_path, "property.db", capacity=120)
    rng = random.Random(7)
    requests = [
        _request(
            rng.randint(1, 150),
            slot=rng.choice(CATALOG),
            area=rng.choice(["Marketing", "Comercial", "Produto"]),
        )
        for _ in range(30)
    ]

    result = service.allocate(requests)

    dropped = {item.request_index: item.quantity for item in result.diagnostics}
    for allocation in result.allocations:
        request = requests[allocation.request_index]
        placed = allocation.allocated_quantity
        assert placed + dropped.get(allocation.request_index, Decimal("0")) == request.quantity
        for entry in allocation.entries:
            assert entry.quantity > 0
            assert entry.slot >= request.slot

    for slot in CATALOG:
        limit = Decimal("60") if slot in {"08:00", "08:30"} else Decimal("120")
        confirmed = sum(
            (record.quantity for record in repository.list_reservations("ch-email", TARGET_DATE, slot)),
            Decimal("0"),
        )
        assert confirmed <= limit


def test_concurrent_allocations_never_exceed_slot_capacity(tmp_path):
    service, repository = _build_service(tmp_path, "concurrent.db", catalog=["09:00", "09:30"])

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: service.allocate([_request(30)]), range(8)))

    placed = sum(
        (item.allocated_quantity for result in results for item in result.allocations),
        Decimal("0"),
    )
    assert placed == Decimal("200")
    for slot in ("09:00", "09:30"):
        total = sum(
            (record.quantity for record in repository.list_reservations("ch-email", TARGET_DATE, slot)),
            Decimal("0"),
        )
        assert total == Decimal("100")


def test_ledger_failure_reports_committed_entries(monkeypatch, tmp_path):
    service, repository = _build_service(tmp_path, "ledger_failure.db")
    original_create = repository.create_reservation
    calls = {"count": 0}

    def flaky_create(**kwargs):
        calls["count"] += 1
        if calls["count"] > 1:
            raise LedgerWriteError("disk I/O error")
        return original_create(**kwargs)

    monkeypatch.setattr(repository, "create_reservation", flaky_create)

    with pytest.raises(AllocationPersistenceError) as excinfo:
        service.allocate([_request(200)])

    error = excinfo.value
    assert error.request_index == 0
    assert [(entry.slot, entry.quantity) for entry in error.committed_entries] == [
        ("09:00", Decimal("100"))
    ]
    assert error.committed_entries[0].reservation_id is not None
    assert error.completed == []
    assert repository.count_reservations() == 1


def test_ledger_read_failure_mid_cascade_reports_committed_entries(monkeypatch, tmp_path):
    service, repository = _build_service(tmp_path, "ledger_read_failure.db")
    original_create = repository.create_reservation
    original_connect = repository._connect
    state = {"broken": False}

    def create_then_break(**kwargs):
        record = original_create(**kwargs)
        state["broken"] = True
        return record

    def locked_connect():
        if state["broken"]:
            raise sqlite3.OperationalError("database is locked")
        return original_connect()

    monkeypatch.setattr(repository, "create_reservation", create_then_break)
    monkeypatch.setattr(repository, "_connect", locked_connect)

    with pytest.raises(AllocationPersistenceError) as excinfo:
        service.allocate([_request(200)])

    error = excinfo.value
    assert isinstance(error.__cause__, LedgerReadError)
    assert error.request_index == 0
    assert [(entry.slot, entry.quantity) for entry in error.committed_entries] == [
        ("09:00", Decimal("100"))
    ]

    state["broken"] = False
    assert repository.count_reservations() == 1


def test_catalog_labels_are_normalized_and_kept_in_time_order(tmp_path):
    service, repository = _build_service(
        tmp_path, "catalog_order.db", catalog=["8:00", "14:00", "9:30"]
    )

    assert repository.list_active_time_slots() == ("08:00", "09:30", "14:00")
    assert repository.upsert_time_slot("7:30").label == "07:30"
    with pytest.raises(ValueError):
        repository.replace_time_slots(["noon"])

    result = service.allocate([_request(250, slot="8:00")], persist=False)
    assert _placements(result) == [
        ("08:00", Decimal("50")),
        ("09:30", Decimal("100")),
        ("14:00", Decimal("100")),
    ]

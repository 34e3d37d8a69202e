from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

from scheduling_engine.domain.models import KIND_CONFIRMED, KIND_HOLD
from scheduling_engine.repository.data_repository import DataRepository
from scheduling_engine.services.usage_service import UsageAggregator
from scheduling_engine.utils.config import get_settings


TARGET_DATE = "2026-03-02"


def _build_repository(tmp_path, filename: str) -> DataRepository:
    settings = replace(get_settings(), database_path=tmp_path / filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.upsert_channel("ch-email", "E-mail", 100)
    repository.replace_time_slots(["09:00", "09:30"])
    return repository


def _add(repository: DataRepository, quantity: str, kind: str, area: str | None = None, slot: str = "09:00"):
    return repository.create_reservation(
        channel_id="ch-email",
        date=TARGET_DATE,
        slot=slot,
        quantity=Decimal(quantity),
        kind=kind,
        requester_area=area,
    )


def test_used_capacity_is_zero_without_records(tmp_path):
    repository = _build_repository(tmp_path, "usage_empty.db")
    usage = UsageAggregator(repository=repository)

    assert usage.used_capacity("ch-email", TARGET_DATE, "09:00") == Decimal("0")


def test_used_capacity_exempts_holds_of_the_asking_area(tmp_path):
    repository = _build_repository(tmp_path, "usage_exempt.db")
    _add(repository, "50", KIND_CONFIRMED)
    _add(repository, "30", KIND_HOLD, "areaX")
    _add(repository, "20", KIND_HOLD, "areaY")
    usage = UsageAggregator(repository=repository)

    assert usage.used_capacity("ch-email", TARGET_DATE, "09:00", exclude_area="areaX") == Decimal("70")
    assert usage.used_capacity("ch-email", TARGET_DATE, "09:00", exclude_area="areaY") == Decimal("80")
    assert usage.used_capacity("ch-email", TARGET_DATE, "09:00") == Decimal("100")


def test_confirmed_records_always_count_even_for_the_same_area(tmp_path):
    repository = _build_repository(tmp_path, "usage_confirmed_area.db")
    _add(repository, "40", KIND_CONFIRMED, "areaX")
    _add(repository, "15", KIND_HOLD, "areaX")
    usage = UsageAggregator(repository=repository)

    for area in ("areaX", "areaY", None):
        used = usage.used_capacity("ch-email", TARGET_DATE, "09:00", exclude_area=area)
        assert used >= Decimal("40")
    assert usage.used_capacity("ch-email", TARGET_DATE, "09:00", exclude_area="areaX") == Decimal("40")


def test_used_capacity_is_scoped_to_the_slot(tmp_path):
    repository = _build_repository(tmp_path, "usage_scope.db")
    _add(repository, "25", KIND_CONFIRMED, slot="09:30")
    usage = UsageAggregator(repository=repository)

    assert usage.used_capacity("ch-email", TARGET_DATE, "09:00") == Decimal("0")
    assert usage.used_capacity("ch-email", TARGET_DATE, "09:30") == Decimal("25")


def test_used_capacity_can_skip_one_reservation(tmp_path):
    repository = _build_repository(tmp_path, "usage_skip.db")
    kept = _add(repository, "10", KIND_CONFIRMED)
    skipped = _add(repository, "35", KIND_CONFIRMED)
    usage = UsageAggregator(repository=repository)

    used = usage.used_capacity(
        "ch-email",
        TARGET_DATE,
        "09:00",
        exclude_reservation_id=skipped.reservation_id,
    )
    assert used == kept.quantity


def test_same_area_holds_sums_only_the_areas_holds(tmp_path):
    repository = _build_repository(tmp_path, "usage_same_area.db")
    _add(repository, "50", KIND_CONFIRMED, "areaX")
    _add(repository, "30", KIND_HOLD, "areaX")
    _add(repository, "5", KIND_HOLD, "areaX")
    _add(repository, "20", KIND_HOLD, "areaY")
    usage = UsageAggregator(repository=repository)

    assert usage.same_area_holds("ch-email", TARGET_DATE, "09:00", "areaX") == Decimal("35")
    assert usage.same_area_holds("ch-email", TARGET_DATE, "09:00", None) == Decimal("0")

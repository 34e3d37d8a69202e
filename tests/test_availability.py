from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import pytest

from scheduling_engine.domain.models import KIND_CONFIRMED, KIND_HOLD, ReportMode
from scheduling_engine.repository.data_repository import DataRepository
from scheduling_engine.services.availability_service import (
    AvailabilityReportService,
    AvailabilityValidationError,
)
from scheduling_engine.utils.config import get_settings


TARGET_DATE = "2026-03-02"


def _build_service(tmp_path, filename: str):
    settings = replace(
        get_settings(),
        database_path=tmp_path / filename,
        shared_capacity_slots={"08:00": Decimal("0.5"), "08:30": Decimal("0.5")},
        availability_apply_shared_capacity=True,
    )
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.upsert_channel("ch-email", "E-mail", 100)
    repository.replace_time_slots(["08:00", "09:00"])
    repository.create_reservation(
        channel_id="ch-email", date=TARGET_DATE, slot="08:00", quantity=Decimal("30"), kind=KIND_CONFIRMED
    )
    repository.create_reservation(
        channel_id="ch-email",
        date=TARGET_DATE,
        slot="08:00",
        quantity=Decimal("20"),
        kind=KIND_HOLD,
        requester_area="Marketing",
    )
    repository.create_reservation(
        channel_id="ch-email",
        date=TARGET_DATE,
        slot="08:00",
        quantity=Decimal("10"),
        kind=KIND_HOLD,
        requester_area="Comercial",
    )
    return AvailabilityReportService(repository=repository, settings=settings)


def _row(rows, slot: str):
    return next(row for row in rows if row.slot == slot)


def test_self_service_report_exempts_own_holds(tmp_path):
    service = _build_service(tmp_path, "self_service.db")

    rows = service.report("ch-email", TARGET_DATE, requester_area="Marketing")

    row = _row(rows, "08:00")
    assert row.max_value == "50.00"
    assert row.total_used == "40.00"
    assert row.available == "10.00"
    assert row.same_area_reserved == "20.00"


def test_administrative_report_counts_every_hold(tmp_path):
    service = _build_service(tmp_path, "administrative.db")

    rows = service.report("ch-email", TARGET_DATE, mode=ReportMode.ADMINISTRATIVE)

    row = _row(rows, "08:00")
    assert row.max_value == "50.00"
    assert row.total_used == "60.00"
    assert row.available == "0.00"
    assert row.same_area_reserved is None
    assert "same_area_reserved" not in row.to_dict()


def test_report_lists_every_active_slot_in_order(tmp_path):
    service = _build_service(tmp_path, "slots.db")

    rows = service.report("E-mail", "02/03/2026", requester_area="Comercial")

    assert [row.slot for row in rows] == ["08:00", "09:00"]
    untouched = _row(rows, "09:00")
    assert (untouched.max_value, untouched.total_used, untouched.available) == ("100.00", "0.00", "100.00")
    assert untouched.same_area_reserved == "0.00"


def test_self_service_without_area_counts_all_holds(tmp_path):
    service = _build_service(tmp_path, "no_area.db")

    row = _row(service.report("ch-email", TARGET_DATE), "08:00")

    assert row.total_used == "60.00"
    assert row.same_area_reserved == "0.00"


def test_halving_can_be_disabled_for_a_report(tmp_path):
    service = _build_service(tmp_path, "not_halved.db")

    row = _row(
        service.report(
            "ch-email", TARGET_DATE, mode=ReportMode.ADMINISTRATIVE, apply_shared_capacity=False
        ),
        "08:00",
    )

    assert row.max_value == "100.00"
    assert row.available == "40.00"


def test_unknown_channel_yields_an_empty_report(tmp_path):
    service = _build_service(tmp_path, "unknown.db")

    assert service.report("ch-fax", TARGET_DATE, requester_area="Marketing") == []


def test_malformed_date_is_rejected(tmp_path):
    service = _build_service(tmp_path, "bad_date.db")

    with pytest.raises(AvailabilityValidationError):
        service.report("ch-email", "2026-13-40")

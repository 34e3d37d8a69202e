#!/usr/bin/env python3
"""Validate local scheduler environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from decimal import Decimal
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from scheduling_engine.domain.models import AllocationRequest, ReportMode
from scheduling_engine.repository.data_repository import DataRepository
from scheduling_engine.services.allocation_service import OverflowAllocationService
from scheduling_engine.services.availability_service import AvailabilityReportService
from scheduling_engine.utils.config import get_settings

SEPARATOR_LINE = "=" * 44

PACKAGE_SPECS = [
    ("fastapi", "fastapi"),
    ("uvicorn", "uvicorn"),
    ("pydantic", "pydantic"),
    ("httpx", "httpx"),
    ("pytest", "pytest"),
]


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def _check_packages() -> tuple[bool, str]:
    import_errors: list[str] = []
    for module_name, dist_name in PACKAGE_SPECS:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        return _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    return _print_result("Required packages: all importable", True)


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="scheduler-env-")

    # CHECK 1: Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable with versions
    ok, line = _check_packages()
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "scheduler_validation.db",
        )
        repository = DataRepository(validation_settings)

        # CHECK 3: Database initialization and catalog seeding
        try:
            repository.initialize_database()
            repository.seed_reference_data()
            channels = repository.list_channels()
            slots = repository.list_active_time_slots()
            if not channels or not slots:
                raise RuntimeError("channel or time-slot catalog is empty after seeding")
            ok, line = _print_result(
                "Database + catalogs",
                True,
                f": {len(channels)} channels, {len(slots)} slots",
            )
        except Exception as exc:
            ok, line = _print_result("Database + catalogs", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Allocation smoke run (preview, nothing persisted)
        try:
            channel = repository.list_channels()[0]
            allocator = OverflowAllocationService(
                repository=repository,
                settings=validation_settings,
            )
            outcome = allocator.allocate(
                [
                    AllocationRequest(
                        channel=channel.channel_id,
                        date="2026-03-02",
                        slot=repository.list_active_time_slots()[0],
                        quantity=channel.capacity * 2,
                        requester_area="validation",
                    )
                ],
                persist=False,
            )
            placed = outcome.allocations[0].allocated_quantity
            if placed <= Decimal("0"):
                raise RuntimeError("nothing was placed")
            ok, line = _print_result("Allocation preview", True, f": placed={placed}")
        except Exception as exc:
            ok, line = _print_result("Allocation preview", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Availability report
        try:
            channel = repository.list_channels()[0]
            rows = AvailabilityReportService(
                repository=repository,
                settings=validation_settings,
            ).report(channel.channel_id, "2026-03-02", mode=ReportMode.ADMINISTRATIVE)
            ok, line = _print_result("Availability report", True, f": {len(rows)} slots")
        except Exception as exc:
            ok, line = _print_result("Availability report", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Scheduler Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())

#!/usr/bin/env python3
"""Validate local Forked environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from importlib.metadata import version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from forked.domain.models import NewSubmission, ReporterLocation, SubmissionType
from forked.repository.data_repository import DEMO_HALLS, DataRepository
from forked.services.validation_service import SubmissionValidationService
from forked.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="forked-env-")

    # CHECK 1 - Python version >= 3.11
    if sys.version_info >= (3, 11):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.11",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2 - Required packages importable with versions
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("numpy", "numpy"),
        ("pandas", "pandas"),
        ("requests", "requests"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            _ = version(dist_name)
        except Exception as exc:  # pragma: no cover - runtime guard
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "forked_validation.db",
            local_store_path=Path(temp_dir) / "forked_local.db",
        )
        repository = DataRepository(validation_settings)

        # CHECK 3 - Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4 - Demo hall seeding
        try:
            repository.seed_demo_halls()
            seeded = len(repository.list_halls())
            if seeded != len(DEMO_HALLS):
                raise RuntimeError(f"expected {len(DEMO_HALLS)} halls, got {seeded}")
            ok, line = _print_result("Demo halls", True, f": {seeded} halls")
        except Exception as exc:
            ok, line = _print_result("Demo halls", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5 - Validator smoke run: a replayed record is rate limited
        try:
            hall = DEMO_HALLS[0]
            submission_id = repository.create_submission(
                NewSubmission(
                    hall_id=hall.hall_id,
                    submission_type=SubmissionType.WAIT_TIME.value,
                    value="5",
                    created_at=1_000.0,
                    uid="env-check",
                    location=ReporterLocation(
                        lat=float(hall.lat or 0.0),
                        lon=float(hall.lon or 0.0),
                        accuracy_meters=10.0,
                    ),
                )
            )
            validator = SubmissionValidationService(
                repository=repository,
                settings=validation_settings,
            )
            first = validator.validate(submission_id, now=1_000.0)
            second = validator.validate(submission_id, now=1_001.0)
            if not (first.server_validated and first.location_verified):
                raise RuntimeError(f"expected accepted verdict, got {first}")
            if second.server_validated:
                raise RuntimeError(f"expected rate limited replay, got {second}")
            ok, line = _print_result("Submission validator", True, ": accepted then rate_limited")
        except Exception as exc:
            ok, line = _print_result("Submission validator", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Forked Environment Validation")
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

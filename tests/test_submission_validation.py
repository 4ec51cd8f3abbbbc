from __future__ import annotations

import math
import threading
from dataclasses import replace

import pytest

from forked.domain.geofence import EARTH_RADIUS_METERS
from forked.domain.models import NewSubmission, ReporterLocation, ValidationReason
from forked.repository.data_repository import DataRepository, StoreTransaction
from forked.services.validation_service import (
    SubmissionNotFoundError,
    SubmissionValidationService,
)
from forked.utils.config import get_settings


NORTH_AVE_LAT = 33.7712846105461
NORTH_AVE_LON = -84.39142581349368
METERS_PER_DEGREE_LAT = EARTH_RADIUS_METERS * math.pi / 180.0


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    return replace(get_settings(), database_path=tmp_path / filename)


def _build_services(tmp_path, filename: str = "validation.db"):
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_demo_halls()
    return repository, SubmissionValidationService(repository=repository, settings=settings)


def _location(distance_meters: float = 30.0, accuracy_meters: float = 20.0) -> ReporterLocation:
    return ReporterLocation(
        lat=NORTH_AVE_LAT + distance_meters / METERS_PER_DEGREE_LAT,
        lon=NORTH_AVE_LON,
        accuracy_meters=accuracy_meters,
    )


def _create(repository: DataRepository, **overrides) -> str:
    fields = {
        "hall_id": "north-ave",
        "submission_type": "waitTime",
        "value": "8",
        "created_at": 1_000.0,
        "uid": "user-1",
        "location": _location(),
    }
    fields.update(overrides)
    return repository.create_submission(NewSubmission(**fields))


def test_first_submission_is_accepted_and_location_verified(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    submission_id = _create(repository)

    verdict = service.validate(submission_id, now=1_000.0)

    assert verdict.server_validated is True
    assert verdict.reason is None
    assert verdict.location_verified is True
    record = repository.get_submission(submission_id)
    assert record.server_validated is True
    assert record.server_validation_reason is None
    assert record.server_validated_at == 1_000.0
    assert record.location_verified is True
    assert repository.get_marker_last("uid_user-1_north-ave_waitTime") == 1_000.0


def test_replayed_validation_is_rate_limited(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    submission_id = _create(repository)

    first = service.validate(submission_id, now=1_000.0)
    second = service.validate(submission_id, now=1_000.5)

    assert [first.server_validated, second.server_validated] == [True, False]
    assert second.reason == ValidationReason.RATE_LIMITED
    assert repository.get_submission(submission_id).server_validation_reason == "rate_limited"
    assert repository.get_marker_last("uid_user-1_north-ave_waitTime") == 1_000.0


def test_marker_expires_after_window(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    first_id = _create(repository)
    second_id = _create(repository, created_at=1_300.0)

    service.validate(first_id, now=1_000.0)
    verdict = service.validate(second_id, now=1_300.0)

    assert verdict.server_validated is True
    assert repository.get_marker_last("uid_user-1_north-ave_waitTime") == 1_300.0


def test_types_and_halls_have_separate_markers(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    wait_id = _create(repository)
    seating_id = _create(repository, submission_type="seating", value="Some")
    other_hall_id = _create(repository, hall_id="brittain", location=None)

    assert service.validate(wait_id, now=1.0).server_validated is True
    assert service.validate(seating_id, now=2.0).server_validated is True
    assert service.validate(other_hall_id, now=3.0).server_validated is True


def test_missing_hall_or_type_is_terminal(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    no_hall = _create(repository, hall_id=None)
    no_type = _create(repository, submission_type=None)

    for submission_id in (no_hall, no_type):
        verdict = service.validate(submission_id, now=5.0)
        assert verdict.server_validated is False
        assert verdict.reason == ValidationReason.MISSING_HALL_OR_TYPE
        assert repository.get_submission(submission_id).location_verified is None


def test_anonymous_submissions_use_client_hash_marker(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    first = _create(repository, uid=None, client_identifier_hash="abc123")
    second = _create(repository, uid=None, client_identifier_hash="abc123")

    assert service.validate(first, now=10.0).server_validated is True
    assert service.validate(second, now=11.0).reason == ValidationReason.RATE_LIMITED
    assert repository.get_marker_last("anon_abc123_north-ave_waitTime") == 10.0


def test_unidentified_submissions_are_not_rate_limited(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    first = _create(repository, uid=None)
    second = _create(repository, uid=None)

    assert service.validate(first, now=10.0).server_validated is True
    assert service.validate(second, now=11.0).server_validated is True


@pytest.mark.parametrize(
    ("location", "expected"),
    [
        (_location(distance_meters=200.0, accuracy_meters=10.0), False),
        (_location(distance_meters=140.0, accuracy_meters=150.0), False),
        (None, False),
    ],
)
def test_location_verified_flags_untrusted_reports(tmp_path, location, expected) -> None:
    repository, service = _build_services(tmp_path)
    submission_id = _create(repository, location=location)

    verdict = service.validate(submission_id, now=1.0)

    assert verdict.server_validated is True
    assert verdict.location_verified is expected


def test_hall_without_coordinate_never_verifies_location(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    hall = repository.get_hall("north-ave")
    repository.upsert_hall(replace(hall, lat=None, lon=None))
    submission_id = _create(repository)

    assert service.validate(submission_id, now=1.0).location_verified is False


def test_unknown_submission_raises(tmp_path) -> None:
    _, service = _build_services(tmp_path)
    with pytest.raises(SubmissionNotFoundError):
        service.validate("does-not-exist")


def test_transaction_failure_is_recorded_as_server_error(tmp_path, monkeypatch) -> None:
    repository, service = _build_services(tmp_path)
    submission_id = _create(repository)

    def exploding_set(self, marker_id: str, last: float) -> None:
        raise RuntimeError("write failed")

    monkeypatch.setattr(StoreTransaction, "set_marker_last", exploding_set)

    verdict = service.validate(submission_id, now=1.0)

    assert verdict.server_validated is False
    assert verdict.reason == ValidationReason.SERVER_ERROR
    assert repository.get_submission(submission_id).server_validation_reason == "server_error"
    assert repository.get_marker_last("uid_user-1_north-ave_waitTime") is None


def test_concurrent_validations_accept_exactly_once(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    submission_ids = [_create(repository) for _ in range(6)]
    barrier = threading.Barrier(len(submission_ids))
    verdicts = []
    lock = threading.Lock()

    def worker(submission_id: str) -> None:
        barrier.wait()
        verdict = service.validate(submission_id, now=2_000.0)
        with lock:
            verdicts.append(verdict)

    threads = [threading.Thread(target=worker, args=(item,)) for item in submission_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    accepted = [verdict for verdict in verdicts if verdict.server_validated]
    assert len(accepted) == 1
    assert sorted(verdict.reason for verdict in verdicts if not verdict.server_validated) == [
        ValidationReason.RATE_LIMITED
    ] * 5

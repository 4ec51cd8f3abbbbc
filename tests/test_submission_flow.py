from __future__ import annotations

import math
from dataclasses import replace

import pytest

from forked.domain.geofence import EARTH_RADIUS_METERS
from forked.domain.models import (
    HallStatus,
    HallUpdate,
    ReporterLocation,
    SeatingLevel,
    SubmissionOutcome,
)
from forked.repository.data_repository import DataRepository, StoreError
from forked.repository.local_store import LocalKeyValueStore
from forked.services.cooldown_service import CooldownGate
from forked.services.hall_state_service import HallStateService
from forked.services.identity_service import StaticIdentityProvider
from forked.services.location_service import AuthorizationStatus, ManualLocationProvider
from forked.services.submission_service import SubmissionService
from forked.services.validation_service import SubmissionValidationService
from forked.services.vote_service import VoteAggregator
from forked.utils.config import get_settings


METERS_PER_DEGREE_LAT = EARTH_RADIUS_METERS * math.pi / 180.0
T0 = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingStore:
    """Store double whose every write fails."""

    def __init__(self) -> None:
        self.attempts = 0

    def create_submission(self, submission):
        self.attempts += 1
        raise StoreError("store offline")

    def apply_hall_update(self, update):
        self.attempts += 1
        raise StoreError("store offline")

    def apply_item_rating(self, hall_id, item_id, stars):
        self.attempts += 1
        raise StoreError("store offline")


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    return replace(
        get_settings(),
        database_path=tmp_path / f"{filename}.db",
        local_store_path=tmp_path / f"{filename}_local.db",
    )


def _near(repository: DataRepository, hall_id: str, distance_meters: float, accuracy: float):
    hall = repository.get_hall(hall_id)
    return ReporterLocation(
        lat=hall.lat + distance_meters / METERS_PER_DEGREE_LAT,
        lon=hall.lon,
        accuracy_meters=accuracy,
    )


def _build_flow(tmp_path, filename: str = "flow", store=None, status=AuthorizationStatus.AUTHORIZED):
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_demo_halls()

    hall_state = HallStateService()
    hall_state.attach(repository)
    identity = StaticIdentityProvider()
    identity.sign_in("user-u")
    location = ManualLocationProvider(status=status)
    location.push_fix(_near(repository, "north-ave", 30.0, 20.0))
    clock = FakeClock(T0)
    sleeps: list[float] = []

    service = SubmissionService(
        identity_provider=identity,
        location_provider=location,
        hall_state=hall_state,
        aggregator=VoteAggregator(hall_state, quorum=settings.wait_vote_quorum),
        cooldown=CooldownGate(LocalKeyValueStore(settings), settings.rate_limit_seconds),
        store=store if store is not None else repository,
        settings=settings,
        clock=clock,
        sleep=sleeps.append,
    )
    return {
        "settings": settings,
        "service": service,
        "repository": repository,
        "hall_state": hall_state,
        "identity": identity,
        "location": location,
        "clock": clock,
        "sleeps": sleeps,
    }


def test_five_taps_reach_quorum_then_cooldown_rejects(tmp_path) -> None:
    flow = _build_flow(tmp_path)
    service = flow["service"]
    clock = flow["clock"]

    results = []
    for _ in range(5):
        results.append(service.submit_wait_time("north-ave", 8))
        clock.advance(0.2)

    assert [result.outcome for result in results[:4]] == [SubmissionOutcome.QUEUED] * 4
    assert all(result.success and result.message for result in results[:4])
    assert results[0].message == "Thanks! Waiting for 4 more matching reports to confirm 8 min."
    assert results[4].success is True
    assert results[4].message is None
    assert results[4].outcome == SubmissionOutcome.COMMITTED

    local = flow["hall_state"].get_hall("north-ave")
    shared = flow["repository"].get_hall("north-ave")
    assert local.wait_time == shared.wait_time == "7-9 min"
    assert local.verified_count == shared.verified_count == 147

    sixth = service.submit_wait_time("north-ave", 8)
    assert sixth.success is False
    assert sixth.outcome == SubmissionOutcome.REJECTED_POLICY
    assert "Try again in 300 seconds" in sixth.message

    records = flow["repository"].list_submissions(hall_id="north-ave")
    assert len(records) == 5
    assert {record.uid for record in records} == {"user-u"}
    assert all(record.location.accuracy_meters == 20.0 for record in records)


def test_other_reporters_pending_votes_do_not_lift_cooldown(tmp_path) -> None:
    flow = _build_flow(tmp_path)
    service = flow["service"]
    identity = flow["identity"]
    for _ in range(5):
        service.submit_wait_time("north-ave", 8)
    assert service.submit_wait_time("north-ave", 8).outcome == SubmissionOutcome.REJECTED_POLICY

    identity.sign_in("user-b")
    assert service.submit_wait_time("north-ave", 8).outcome == SubmissionOutcome.QUEUED

    flow["clock"].advance(5)
    identity.sign_in("user-u")
    result = service.submit_wait_time("north-ave", 8)

    assert result.outcome == SubmissionOutcome.REJECTED_POLICY
    assert "Try again in 295 seconds" in result.message
    assert flow["repository"].count_submissions() == 6


def test_wait_time_cooldown_expires_after_window(tmp_path) -> None:
    flow = _build_flow(tmp_path)
    service = flow["service"]
    for _ in range(5):
        service.submit_wait_time("north-ave", 8)

    flow["clock"].advance(300)
    result = service.submit_wait_time("north-ave", 8)

    assert result.outcome == SubmissionOutcome.QUEUED


def test_seating_commits_immediately_and_records_cooldown(tmp_path) -> None:
    flow = _build_flow(tmp_path)
    service = flow["service"]

    result = service.submit_seating("north-ave", "Packed")

    assert result.success is True
    assert result.outcome == SubmissionOutcome.COMMITTED
    shared = flow["repository"].get_hall("north-ave")
    assert shared.seating == SeatingLevel.PACKED
    assert shared.seating_verified_count == 35
    assert shared.seating_last_updated_at == T0

    flow["clock"].advance(10)
    again = service.submit_seating("north-ave", SeatingLevel.PLENTY)
    assert again.outcome == SubmissionOutcome.REJECTED_POLICY
    assert "290 seconds" in again.message
    assert flow["repository"].get_hall("north-ave").seating == SeatingLevel.PACKED


def test_input_rejections_mutate_nothing(tmp_path) -> None:
    flow = _build_flow(tmp_path)
    service = flow["service"]
    repository = flow["repository"]

    assert service.submit_wait_time("north-ave", 0).outcome == SubmissionOutcome.REJECTED_INPUT
    assert service.submit_wait_time("north-ave", 61).outcome == SubmissionOutcome.REJECTED_INPUT
    assert service.submit_wait_time("nowhere", 5).outcome == SubmissionOutcome.REJECTED_INPUT
    assert service.submit_seating("north-ave", "Overflowing").outcome == SubmissionOutcome.REJECTED_INPUT

    repository.apply_hall_update(HallUpdate(hall_id="brittain", updated_at=1.0, status=HallStatus.CLOSED))
    closed = service.submit_wait_time("brittain", 5)
    assert closed.outcome == SubmissionOutcome.REJECTED_INPUT
    assert "closed" in closed.message

    assert repository.count_submissions() == 0
    assert repository.get_hall("north-ave").wait_time == "5-10 min"


def test_session_requirements(tmp_path) -> None:
    flow = _build_flow(tmp_path)
    service = flow["service"]
    identity = flow["identity"]

    identity.sign_out()
    signed_out = service.submit_wait_time("north-ave", 5)
    assert signed_out.message == "Please sign in to submit reports."
    assert signed_out.outcome == SubmissionOutcome.REJECTED_INPUT

    identity.sign_in("user-u", email_verified=False)
    unverified = service.submit_wait_time("north-ave", 5)
    assert unverified.outcome == SubmissionOutcome.REJECTED_INPUT
    assert "verify your email" in unverified.message

    identity.mark_email_verified()
    assert service.submit_wait_time("north-ave", 5).outcome == SubmissionOutcome.QUEUED


def test_undetermined_permission_is_requested(tmp_path) -> None:
    flow = _build_flow(tmp_path, status=AuthorizationStatus.NOT_DETERMINED)

    result = flow["service"].submit_wait_time("north-ave", 5)

    assert result.outcome == SubmissionOutcome.REJECTED_POLICY
    assert flow["location"].permission_requests == 1
    assert flow["repository"].count_submissions() == 0


def test_denied_permission_points_to_settings(tmp_path) -> None:
    flow = _build_flow(tmp_path, status=AuthorizationStatus.DENIED)

    result = flow["service"].submit_seating("north-ave", "Some")

    assert result.outcome == SubmissionOutcome.REJECTED_POLICY
    assert "Settings" in result.message
    assert flow["location"].permission_requests == 0


def test_out_of_range_rejection_reports_distance(tmp_path) -> None:
    flow = _build_flow(tmp_path)
    flow["location"].push_fix(_near(flow["repository"], "north-ave", 400.0, 10.0))

    result = flow["service"].submit_wait_time("north-ave", 5)

    assert result.outcome == SubmissionOutcome.REJECTED_POLICY
    assert "400 m away" in result.message


def test_low_accuracy_rejection_reports_accuracy(tmp_path) -> None:
    flow = _build_flow(tmp_path)
    flow["location"].push_fix(_near(flow["repository"], "north-ave", 20.0, 250.0))

    result = flow["service"].submit_seating("north-ave", "Some")

    assert result.outcome == SubmissionOutcome.REJECTED_POLICY
    assert "250 m" in result.message


def test_missing_fix_is_rejected_after_the_fix_wait(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "nofix")
    flow = _build_flow(tmp_path, filename="nofix")
    location = ManualLocationProvider(status=AuthorizationStatus.AUTHORIZED)
    service = SubmissionService(
        identity_provider=flow["identity"],
        location_provider=location,
        hall_state=flow["hall_state"],
        aggregator=VoteAggregator(flow["hall_state"], quorum=5),
        cooldown=CooldownGate(LocalKeyValueStore(settings), 300),
        store=flow["repository"],
        settings=settings,
        clock=flow["clock"],
        sleep=flow["sleeps"].append,
    )

    result = service.submit_wait_time("north-ave", 5)

    assert result.outcome == SubmissionOutcome.REJECTED_POLICY
    assert flow["sleeps"] == [pytest.approx(0.6)]


def test_fix_arriving_during_wait_replaces_stale_fix(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "stale")
    flow = _build_flow(tmp_path, filename="stale")
    repository = flow["repository"]
    location = flow["location"]
    location.push_fix(_near(repository, "north-ave", 250.0, 10.0))
    sleeps: list[float] = []

    def settle(seconds: float) -> None:
        sleeps.append(seconds)
        location.push_fix(_near(repository, "north-ave", 20.0, 15.0))

    service = SubmissionService(
        identity_provider=flow["identity"],
        location_provider=location,
        hall_state=flow["hall_state"],
        aggregator=VoteAggregator(flow["hall_state"], quorum=5),
        cooldown=CooldownGate(LocalKeyValueStore(settings), 300),
        store=repository,
        settings=settings,
        clock=flow["clock"],
        sleep=settle,
    )

    result = service.submit_wait_time("north-ave", 8)

    assert result.outcome == SubmissionOutcome.QUEUED
    assert sleeps == [pytest.approx(0.6)]
    (record,) = repository.list_submissions(hall_id="north-ave")
    assert record.location.accuracy_meters == 15.0


def test_zero_fix_wait_checks_cached_fix_immediately(tmp_path) -> None:
    flow = _build_flow(tmp_path, filename="nowait")
    settings = replace(flow["settings"], location_fix_wait_seconds=0.0)
    sleeps: list[float] = []
    service = SubmissionService(
        identity_provider=flow["identity"],
        location_provider=flow["location"],
        hall_state=flow["hall_state"],
        aggregator=VoteAggregator(flow["hall_state"], quorum=5),
        cooldown=CooldownGate(LocalKeyValueStore(settings), 300),
        store=flow["repository"],
        settings=settings,
        clock=flow["clock"],
        sleep=sleeps.append,
    )

    assert service.submit_seating("north-ave", "Some").outcome == SubmissionOutcome.COMMITTED
    assert sleeps == []


def test_fresh_fix_is_polled_when_authorized(tmp_path) -> None:
    flow = _build_flow(tmp_path)
    near = _near(flow["repository"], "willage", 10.0, 5.0)
    location = ManualLocationProvider(
        status=AuthorizationStatus.NOT_DETERMINED,
        fix_source=lambda: near,
    )
    changes = []
    location.on_authorization_change(changes.append)

    location.update_authorization(AuthorizationStatus.AUTHORIZED)

    assert changes == [AuthorizationStatus.AUTHORIZED]
    assert location.last_known_location() == near


def test_hall_without_coordinate_skips_location_checks(tmp_path) -> None:
    flow = _build_flow(tmp_path, status=AuthorizationStatus.DENIED)
    repository = flow["repository"]
    hall = repository.get_hall("willage")
    repository.upsert_hall(replace(hall, lat=None, lon=None))

    result = flow["service"].submit_seating("willage", "Plenty")

    assert result.outcome == SubmissionOutcome.COMMITTED


def test_store_failure_keeps_local_commit(tmp_path) -> None:
    store = FailingStore()
    flow = _build_flow(tmp_path, store=store)

    result = flow["service"].submit_seating("north-ave", "Plenty")

    assert result.success is True
    assert flow["hall_state"].get_hall("north-ave").seating == SeatingLevel.PLENTY
    assert flow["repository"].get_hall("north-ave").seating == SeatingLevel.SOME
    assert store.attempts == 2


def test_rating_updates_running_average(tmp_path) -> None:
    flow = _build_flow(tmp_path)
    service = flow["service"]

    assert service.submit_rating("north-ave", "na-pizza", 4).success is True
    assert service.submit_rating("north-ave", "na-pizza", 2).success is True

    item = next(
        item for item in flow["repository"].get_hall("north-ave").menu_items if item.item_id == "na-pizza"
    )
    assert item.rating == pytest.approx(3.0)
    assert item.review_count == 2
    assert service.submit_rating("north-ave", "na-pizza", 6).outcome == SubmissionOutcome.REJECTED_INPUT
    assert service.submit_rating("north-ave", "ghost", 3).outcome == SubmissionOutcome.REJECTED_INPUT


def test_client_records_pass_server_validation(tmp_path) -> None:
    flow = _build_flow(tmp_path)
    flow["service"].submit_seating("north-ave", "Some")
    repository = flow["repository"]
    validator = SubmissionValidationService(repository=repository, settings=flow["settings"])

    (record,) = repository.list_submissions(hall_id="north-ave")
    verdict = validator.validate(record.submission_id, now=T0 + 1)

    assert verdict.server_validated is True
    assert verdict.location_verified is True

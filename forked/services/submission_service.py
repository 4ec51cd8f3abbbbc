"""Client-side submission flow for wait-time, seating and rating reports."""

from __future__ import annotations

import math
import time
from typing import Callable, Optional, Protocol, Union

from forked.domain.geofence import evaluate_geofence
from forked.domain.models import (
    DiningHall,
    GeofenceReason,
    HallStatus,
    HallUpdate,
    MenuItem,
    NewSubmission,
    ReporterLocation,
    SeatingLevel,
    SubmissionOutcome,
    SubmissionResult,
    SubmissionType,
)
from forked.repository.data_repository import StoreError
from forked.services.cooldown_service import CooldownGate
from forked.services.hall_state_service import HallStateService, UnknownMenuItemError
from forked.services.identity_service import IdentityProvider, UserSession
from forked.services.location_service import AuthorizationStatus, LocationProvider
from forked.services.vote_service import VoteAggregator
from forked.utils.config import Settings, get_settings
from forked.utils.logger import get_logger


logger = get_logger(__name__)

MIN_RATING_STARS = 1
MAX_RATING_STARS = 5


class SubmissionStore(Protocol):
    def create_submission(self, submission: NewSubmission) -> str:
        ...

    def apply_hall_update(self, update: HallUpdate) -> object:
        ...

    def apply_item_rating(self, hall_id: str, item_id: str, stars: int) -> object:
        ...


def _rejected_input(message: str) -> SubmissionResult:
    return SubmissionResult(success=False, message=message, outcome=SubmissionOutcome.REJECTED_INPUT)


def _rejected_policy(message: str) -> SubmissionResult:
    return SubmissionResult(success=False, message=message, outcome=SubmissionOutcome.REJECTED_POLICY)


class SubmissionService:
    """Gates, commits and records user reports for one signed-in client.

    Every rejection is returned as a ``SubmissionResult`` and leaves all state
    untouched. Local commits are applied before the shared store is written,
    and a failed store write never undoes them.
    """

    def __init__(
        self,
        identity_provider: IdentityProvider,
        location_provider: LocationProvider,
        hall_state: HallStateService,
        aggregator: VoteAggregator,
        cooldown: CooldownGate,
        store: SubmissionStore,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        self._policy = self._settings.submission_policy()
        self._identity_provider = identity_provider
        self._location_provider = location_provider
        self._hall_state = hall_state
        self._aggregator = aggregator
        self._cooldown = cooldown
        self._store = store
        self._clock = clock
        self._sleep = sleep

    def submit_wait_time(self, hall_id: str, minutes: int) -> SubmissionResult:
        session, hall, rejection = self._precheck(hall_id)
        if rejection is not None:
            return rejection
        if isinstance(minutes, bool) or not isinstance(minutes, int):
            return _rejected_input("Wait time must be a whole number of minutes.")
        if not 1 <= minutes <= self._policy.max_wait_minutes:
            return _rejected_input(
                f"Wait time must be between 1 and {self._policy.max_wait_minutes} minutes."
            )

        location, rejection = self._gate_location(hall)
        if rejection is not None:
            return rejection

        now = self._clock()
        identity = session.identity
        voter = identity.marker_id(hall_id, SubmissionType.WAIT_TIME.value)
        # A reporter's own taps queued toward quorum are not re-checked against the cooldown.
        if voter is None or not self._aggregator.has_pending_votes(hall_id, voter):
            rejection = self._check_cooldown(session, hall_id, SubmissionType.WAIT_TIME, now)
            if rejection is not None:
                return rejection

        self._cooldown.record(identity, hall_id, SubmissionType.WAIT_TIME, now)
        outcome = self._aggregator.submit_vote(hall_id, minutes, now, voter=voter)
        self._record_submission(session, hall_id, SubmissionType.WAIT_TIME, str(minutes), now, location)

        if not outcome.committed:
            return SubmissionResult(
                success=True,
                message=outcome.message,
                outcome=SubmissionOutcome.QUEUED,
            )
        if outcome.hall_update is not None:
            self._push_hall_update(outcome.hall_update)
        return SubmissionResult(success=True, message=None, outcome=SubmissionOutcome.COMMITTED)

    def submit_seating(self, hall_id: str, level: Union[str, SeatingLevel]) -> SubmissionResult:
        session, hall, rejection = self._precheck(hall_id)
        if rejection is not None:
            return rejection
        try:
            seating = SeatingLevel(level)
        except ValueError:
            return _rejected_input(
                "Seating must be one of: " + ", ".join(item.value for item in SeatingLevel) + "."
            )

        location, rejection = self._gate_location(hall)
        if rejection is not None:
            return rejection

        now = self._clock()
        rejection = self._check_cooldown(session, hall_id, SubmissionType.SEATING, now)
        if rejection is not None:
            return rejection

        update = self._hall_state.apply_seating(hall_id, seating, now)
        self._cooldown.record(session.identity, hall_id, SubmissionType.SEATING, now)
        logger.info("Seating committed | hall_id=%s | seating=%s", hall_id, seating.value)
        self._push_hall_update(update)
        self._record_submission(session, hall_id, SubmissionType.SEATING, seating.value, now, location)
        return SubmissionResult(success=True, message=None, outcome=SubmissionOutcome.COMMITTED)

    def submit_rating(self, hall_id: str, item_id: str, rating: int) -> SubmissionResult:
        session, hall, rejection = self._precheck(hall_id, allow_closed=True)
        if rejection is not None:
            return rejection
        if isinstance(rating, bool) or not isinstance(rating, int):
            return _rejected_input("Rating must be a whole number of stars.")
        if not MIN_RATING_STARS <= rating <= MAX_RATING_STARS:
            return _rejected_input(
                f"Rating must be between {MIN_RATING_STARS} and {MAX_RATING_STARS} stars."
            )

        try:
            item: MenuItem = self._hall_state.apply_rating(hall_id, item_id, rating)
        except UnknownMenuItemError:
            return _rejected_input("That menu item isn't available at this dining hall.")

        now = self._clock()
        logger.info(
            "Rating committed | hall_id=%s | item_id=%s | rating=%.2f | review_count=%s",
            hall_id,
            item_id,
            item.rating,
            item.review_count,
        )
        try:
            self._store.apply_item_rating(hall_id, item_id, rating)
        except StoreError as exc:
            logger.warning("Rating write failed | hall_id=%s | item_id=%s | error=%s", hall_id, item_id, exc)
        self._record_submission(session, hall_id, SubmissionType.RATING, f"{item_id}:{rating}", now, None)
        return SubmissionResult(success=True, message=None, outcome=SubmissionOutcome.COMMITTED)

    def _precheck(
        self,
        hall_id: str,
        allow_closed: bool = False,
    ) -> tuple[Optional[UserSession], Optional[DiningHall], Optional[SubmissionResult]]:
        session = self._identity_provider.current_session()
        if session is None:
            return None, None, _rejected_input("Please sign in to submit reports.")
        if not session.email_verified:
            return session, None, _rejected_input("Please verify your email before submitting reports.")
        hall = self._hall_state.get_hall(hall_id)
        if hall is None:
            return session, None, _rejected_input("That dining hall could not be found.")
        if hall.status == HallStatus.CLOSED and not allow_closed:
            return session, hall, _rejected_input(f"{hall.name} is closed right now.")
        return session, hall, None

    def _gate_location(
        self,
        hall: DiningHall,
    ) -> tuple[Optional[ReporterLocation], Optional[SubmissionResult]]:
        venue = hall.coordinate
        if venue is None:
            return self._location_provider.last_known_location(), None

        status = self._location_provider.authorization_status
        if status == AuthorizationStatus.NOT_DETERMINED:
            self._location_provider.request_permission()
            return None, _rejected_policy(
                "Location access is needed to confirm you're at the dining hall. "
                "Please allow it and try again."
            )
        if status in (AuthorizationStatus.DENIED, AuthorizationStatus.RESTRICTED):
            return None, _rejected_policy(
                "Location access is off. Enable it in Settings to submit reports."
            )

        self._location_provider.request_fresh_fix()
        if self._policy.location_fix_wait_seconds > 0:
            self._sleep(self._policy.location_fix_wait_seconds)
        location = self._location_provider.last_known_location()

        result = evaluate_geofence(
            location,
            venue,
            radius_meters=self._policy.geofence_meters,
            max_accuracy_meters=self._policy.max_location_accuracy_meters,
        )
        if result.admissible:
            return location, None

        logger.info(
            "Location rejected | hall_id=%s | reason=%s | distance_meters=%s",
            hall.hall_id,
            result.reason.value if result.reason is not None else None,
            result.distance_meters,
        )
        if result.reason == GeofenceReason.OUT_OF_RANGE:
            return location, _rejected_policy(
                f"You need to be within {int(self._policy.geofence_meters)} m of {hall.name} "
                f"to submit. You're about {int(round(result.distance_meters or 0.0))} m away."
            )
        if result.reason == GeofenceReason.LOW_ACCURACY and location is not None:
            return location, _rejected_policy(
                f"Your location is too imprecise ({int(round(location.accuracy_meters))} m). "
                "Try again in a moment."
            )
        return location, _rejected_policy("We couldn't get your location yet. Try again in a moment.")

    def _check_cooldown(
        self,
        session: UserSession,
        hall_id: str,
        action: SubmissionType,
        now: float,
    ) -> Optional[SubmissionResult]:
        check = self._cooldown.check(session.identity, hall_id, action, now)
        if check.allowed:
            return None
        return _rejected_policy(
            f"You've already reported here recently. "
            f"Try again in {math.ceil(check.remaining_seconds)} seconds."
        )

    def _push_hall_update(self, update: HallUpdate) -> None:
        try:
            self._store.apply_hall_update(update)
        except StoreError as exc:
            logger.warning("Hall update write failed | hall_id=%s | error=%s", update.hall_id, exc)

    def _record_submission(
        self,
        session: UserSession,
        hall_id: str,
        submission_type: SubmissionType,
        value: str,
        now: float,
        location: Optional[ReporterLocation],
    ) -> None:
        submission = NewSubmission(
            hall_id=hall_id,
            submission_type=submission_type.value,
            value=value,
            created_at=now,
            uid=session.uid,
            client_identifier_hash=session.client_identifier_hash,
            location=location,
        )
        try:
            self._store.create_submission(submission)
        except StoreError as exc:
            logger.warning(
                "Submission write failed | hall_id=%s | submission_type=%s | error=%s",
                hall_id,
                submission_type.value,
                exc,
            )

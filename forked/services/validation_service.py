"""Authoritative server-side validation of submission records.

Runs once per created submission (and again on redelivery). The rate-limit
marker is read, checked and written inside a single store transaction, so a
replayed or concurrent validation can never consume the same window twice.
The validator only annotates the submission record; it never writes hall
documents.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

from forked.domain.geofence import evaluate_geofence
from forked.domain.identity import resolve_identity
from forked.domain.models import SubmissionRecord, ValidationReason, ValidationVerdict
from forked.repository.data_repository import DataRepository, StoreTransaction
from forked.services.cooldown_service import remaining_cooldown
from forked.utils.config import Settings, get_settings
from forked.utils.logger import get_logger


logger = get_logger(__name__)


class SubmissionValidationError(Exception):
    """Base exception for submission validation failures."""


class SubmissionNotFoundError(SubmissionValidationError):
    """Raised when the submission id does not exist."""


class SubmissionValidationService:
    """Stamps ``server_validated`` / ``location_verified`` verdicts."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._policy = self._settings.submission_policy()
        self._clock = clock

    def validate(self, submission_id: str, now: Optional[float] = None) -> ValidationVerdict:
        record = self._repository.get_submission(submission_id)
        if record is None:
            raise SubmissionNotFoundError(f"submission_id {submission_id} not found")
        validated_at = self._clock() if now is None else now

        if not record.hall_id or not record.submission_type:
            self._repository.update_submission_verdict(
                submission_id,
                server_validated=False,
                reason=ValidationReason.MISSING_HALL_OR_TYPE,
                validated_at=validated_at,
            )
            logger.info(
                "Submission rejected | submission_id=%s | reason=%s",
                submission_id,
                ValidationReason.MISSING_HALL_OR_TYPE.value,
            )
            return ValidationVerdict(
                submission_id=submission_id,
                server_validated=False,
                reason=ValidationReason.MISSING_HALL_OR_TYPE,
                validated_at=validated_at,
            )

        try:
            with self._repository.transaction() as tx:
                verdict = self._validate_in_transaction(tx, record, validated_at)
        except Exception:
            logger.exception("Submission validation transaction failed | submission_id=%s", submission_id)
            self._repository.update_submission_verdict(
                submission_id,
                server_validated=False,
                reason=ValidationReason.SERVER_ERROR,
                validated_at=validated_at,
            )
            return ValidationVerdict(
                submission_id=submission_id,
                server_validated=False,
                reason=ValidationReason.SERVER_ERROR,
                validated_at=validated_at,
            )

        logger.info(
            "Submission validated | submission_id=%s | server_validated=%s | reason=%s | "
            "location_verified=%s",
            submission_id,
            verdict.server_validated,
            verdict.reason.value if verdict.reason is not None else None,
            verdict.location_verified,
        )
        return verdict

    def _validate_in_transaction(
        self,
        tx: StoreTransaction,
        record: SubmissionRecord,
        now: float,
    ) -> ValidationVerdict:
        hall_id = str(record.hall_id)
        identity = resolve_identity(record.uid, record.client_identifier_hash)
        marker_id = identity.marker_id(hall_id, str(record.submission_type))

        if marker_id is not None:
            remaining = remaining_cooldown(
                tx.get_marker_last(marker_id),
                now,
                self._policy.rate_limit_seconds,
            )
            if remaining > 0:
                tx.write_verdict(
                    record.submission_id,
                    server_validated=False,
                    reason=ValidationReason.RATE_LIMITED,
                    validated_at=now,
                )
                return ValidationVerdict(
                    submission_id=record.submission_id,
                    server_validated=False,
                    reason=ValidationReason.RATE_LIMITED,
                    validated_at=now,
                )
            tx.set_marker_last(marker_id, now)

        location_verified = False
        if record.location is not None:
            venue = tx.get_hall_coordinate(hall_id)
            if venue is not None:
                location_verified = evaluate_geofence(
                    record.location,
                    venue,
                    radius_meters=self._policy.geofence_meters,
                    max_accuracy_meters=self._policy.max_location_accuracy_meters,
                ).admissible

        tx.write_verdict(
            record.submission_id,
            server_validated=True,
            reason=None,
            validated_at=now,
            location_verified=location_verified,
        )
        return ValidationVerdict(
            submission_id=record.submission_id,
            server_validated=True,
            reason=None,
            validated_at=now,
            location_verified=location_verified,
        )

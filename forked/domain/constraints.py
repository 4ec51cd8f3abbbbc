"""Domain-level validation rules for submission policy."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SubmissionPolicy:
    rate_limit_seconds: int
    geofence_meters: float
    max_location_accuracy_meters: float
    wait_vote_quorum: int
    max_wait_minutes: int
    location_fix_wait_seconds: float


def validate_submission_policy(policy: SubmissionPolicy) -> None:
    if policy.rate_limit_seconds <= 0:
        raise ValueError("rate_limit_seconds must be > 0")
    if policy.geofence_meters <= 0:
        raise ValueError("geofence_meters must be > 0")
    if policy.max_location_accuracy_meters <= 0:
        raise ValueError("max_location_accuracy_meters must be > 0")
    if policy.wait_vote_quorum < 1:
        raise ValueError("wait_vote_quorum must be >= 1")
    if policy.max_wait_minutes < 1:
        raise ValueError("max_wait_minutes must be >= 1")
    if policy.location_fix_wait_seconds < 0:
        raise ValueError("location_fix_wait_seconds must be >= 0")

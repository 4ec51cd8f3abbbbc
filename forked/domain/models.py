"""Domain models for dining-hall reports, submissions and verdicts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional


class HallStatus(str, Enum):
    OPEN = "open"
    BUSY = "busy"
    CLOSED = "closed"
    UNKNOWN = "unknown"


class SeatingLevel(str, Enum):
    PLENTY = "Plenty"
    SOME = "Some"
    PACKED = "Packed"


class SubmissionType(str, Enum):
    WAIT_TIME = "waitTime"
    SEATING = "seating"
    RATING = "rating"


class ValidationReason(str, Enum):
    MISSING_HALL_OR_TYPE = "missing_hall_or_type"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"


class GeofenceReason(str, Enum):
    LOCATION_UNAVAILABLE = "location_unavailable"
    OUT_OF_RANGE = "out_of_range"
    LOW_ACCURACY = "low_accuracy"


class SubmissionOutcome(str, Enum):
    COMMITTED = "committed"
    QUEUED = "queued"
    REJECTED_INPUT = "rejected_input"
    REJECTED_POLICY = "rejected_policy"


def wait_time_label(minutes: int) -> str:
    """Render reported minutes as the published bucket label."""
    if minutes < 2:
        return "1-2 min"
    return f"{max(1, minutes - 1)}-{minutes + 1} min"


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lon: float


@dataclass(frozen=True)
class ReporterLocation:
    lat: float
    lon: float
    accuracy_meters: float

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(lat=self.lat, lon=self.lon)


@dataclass(frozen=True)
class MenuItem:
    item_id: str
    name: str
    category: str = ""
    rating: float = 0.0
    review_count: int = 0


@dataclass(frozen=True)
class DiningHall:
    hall_id: str
    name: str
    wait_time: str = "Unknown"
    status: HallStatus = HallStatus.UNKNOWN
    last_updated_at: Optional[float] = None
    verified_count: int = 0
    lat: Optional[float] = None
    lon: Optional[float] = None
    seating: Optional[SeatingLevel] = None
    seating_last_updated_at: Optional[float] = None
    seating_verified_count: int = 0
    opens_at: Optional[str] = None
    closes_at: Optional[str] = None
    menu_items: tuple[MenuItem, ...] = field(default_factory=tuple)

    @property
    def coordinate(self) -> Optional[Coordinate]:
        if self.lat is None or self.lon is None:
            return None
        return Coordinate(lat=self.lat, lon=self.lon)

    def last_updated_text(self, now: float) -> str:
        """Human-friendly freshness of the wait-time estimate."""
        if self.last_updated_at is None:
            return "Unknown"
        elapsed = int(now - self.last_updated_at)
        if elapsed < 60:
            return "now"
        if elapsed < 3600:
            return f"{elapsed // 60}m ago"
        if elapsed < 86400:
            return f"{elapsed // 3600}h ago"
        return datetime.fromtimestamp(self.last_updated_at).strftime("%b %d, %Y %I:%M %p")

    @classmethod
    def from_document(cls, document: Mapping[str, Any], hall_id: str) -> "DiningHall":
        """Build a hall from a loosely-typed store document.

        Accepts the legacy shapes still found in older hall documents:
        ``currentWaitMinutes`` instead of a label, ``isOpen`` instead of
        ``status`` and ``lastUpdatedAt`` stored as ``{"_seconds": n}``.
        """
        minutes = document.get("currentWaitMinutes")
        if isinstance(minutes, (int, float)) and not isinstance(minutes, bool):
            wait_time = wait_time_label(int(minutes))
        else:
            wait_time = str(document.get("waitTime") or "Unknown")

        raw_status = document.get("status")
        if raw_status in {status.value for status in HallStatus}:
            status = HallStatus(raw_status)
        elif isinstance(document.get("isOpen"), bool):
            status = HallStatus.OPEN if document["isOpen"] else HallStatus.CLOSED
        else:
            status = HallStatus.UNKNOWN

        raw_seating = document.get("seating")
        seating = (
            SeatingLevel(raw_seating)
            if raw_seating in {level.value for level in SeatingLevel}
            else None
        )

        items = tuple(
            MenuItem(
                item_id=str(item.get("id") or f"{hall_id}-item-{index}"),
                name=str(item.get("name") or "Unknown"),
                category=str(item.get("category") or ""),
                rating=float(item.get("rating") or 0.0),
                review_count=int(item.get("reviewCount") or 0),
            )
            for index, item in enumerate(document.get("menuItems") or [])
            if isinstance(item, Mapping)
        )

        return cls(
            hall_id=hall_id,
            name=str(document.get("name") or "Unknown Hall"),
            wait_time=wait_time,
            status=status,
            last_updated_at=_parse_timestamp(document.get("lastUpdatedAt")),
            verified_count=_parse_int(document.get("verifiedCount")),
            lat=_parse_float(document.get("lat")),
            lon=_parse_float(document.get("lon")),
            seating=seating,
            seating_last_updated_at=_parse_timestamp(document.get("seatingLastUpdatedAt")),
            seating_verified_count=_parse_int(document.get("seatingVerifiedCount")),
            opens_at=document.get("opensAt"),
            closes_at=document.get("closesAt"),
            menu_items=items,
        )


def _parse_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _parse_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def _parse_timestamp(value: Any) -> Optional[float]:
    if isinstance(value, Mapping):
        value = value.get("_seconds")
    return _parse_float(value)


@dataclass(frozen=True)
class HallUpdate:
    """Client commit merged into the shared hall document.

    Counters are increments so concurrent clients never overwrite each
    other's corroboration totals.
    """

    hall_id: str
    updated_at: float
    wait_time: Optional[str] = None
    seating: Optional[SeatingLevel] = None
    status: Optional[HallStatus] = None
    verified_increment: int = 0
    seating_verified_increment: int = 0


@dataclass(frozen=True)
class NewSubmission:
    hall_id: Optional[str]
    submission_type: Optional[str]
    value: Optional[str]
    created_at: float
    uid: Optional[str] = None
    client_identifier_hash: Optional[str] = None
    location: Optional[ReporterLocation] = None


@dataclass(frozen=True)
class SubmissionRecord:
    submission_id: str
    hall_id: Optional[str]
    submission_type: Optional[str]
    value: Optional[str]
    created_at: float
    uid: Optional[str] = None
    client_identifier_hash: Optional[str] = None
    location: Optional[ReporterLocation] = None
    server_validated: Optional[bool] = None
    server_validation_reason: Optional[str] = None
    server_validated_at: Optional[float] = None
    location_verified: Optional[bool] = None


@dataclass(frozen=True)
class ValidationVerdict:
    submission_id: str
    server_validated: bool
    reason: Optional[ValidationReason]
    validated_at: float
    location_verified: Optional[bool] = None


@dataclass(frozen=True)
class GeofenceResult:
    admissible: bool
    distance_meters: Optional[float] = None
    reason: Optional[GeofenceReason] = None


@dataclass(frozen=True)
class CooldownCheck:
    allowed: bool
    remaining_seconds: float = 0.0


@dataclass(frozen=True)
class VoteOutcome:
    committed: bool
    message: Optional[str]
    wait_time_label: Optional[str] = None
    votes_remaining: int = 0
    hall_update: Optional[HallUpdate] = None


@dataclass(frozen=True)
class SubmissionResult:
    """User-facing result of a client submission attempt."""

    success: bool
    message: Optional[str]
    outcome: SubmissionOutcome

"""Proximity check between a reporter and a dining hall."""

from __future__ import annotations

import math
from typing import Optional

from forked.domain.models import Coordinate, GeofenceReason, GeofenceResult, ReporterLocation


EARTH_RADIUS_METERS = 6_371_000.0


def haversine_distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance on a spherical earth."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def evaluate_geofence(
    reporter: Optional[ReporterLocation],
    venue: Optional[Coordinate],
    radius_meters: float,
    max_accuracy_meters: float,
) -> GeofenceResult:
    """Decide whether a report from ``reporter`` may count for ``venue``.

    Halls without a configured coordinate are never fenced. A fix must be
    both inside the radius and at least as precise as ``max_accuracy_meters``;
    a negative accuracy marks an invalid fix and is rejected.
    """
    if venue is None:
        return GeofenceResult(admissible=True)
    if reporter is None:
        return GeofenceResult(admissible=False, reason=GeofenceReason.LOCATION_UNAVAILABLE)

    distance = haversine_distance_meters(reporter.lat, reporter.lon, venue.lat, venue.lon)
    if distance > radius_meters:
        return GeofenceResult(
            admissible=False,
            distance_meters=distance,
            reason=GeofenceReason.OUT_OF_RANGE,
        )
    if reporter.accuracy_meters < 0 or reporter.accuracy_meters > max_accuracy_meters:
        return GeofenceResult(
            admissible=False,
            distance_meters=distance,
            reason=GeofenceReason.LOW_ACCURACY,
        )
    return GeofenceResult(admissible=True, distance_meters=distance)

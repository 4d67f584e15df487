"""Great-circle distance and impossible-travel detection."""

from __future__ import annotations

import math
from datetime import datetime

from pydantic import BaseModel

from auditguard.core.models import GeoLocation

EARTH_RADIUS_KM = 6371.0
DEFAULT_IMPOSSIBLE_TRAVEL_KMH = 1000.0


class TravelAssessment(BaseModel):
    distance_km: float
    elapsed_hours: float
    velocity_kmh: float
    impossible: bool


def haversine_km(a: GeoLocation, b: GeoLocation) -> float:
    """Great-circle distance between *a* and *b* in kilometres."""
    lat1, lon1 = math.radians(a.latitude), math.radians(a.longitude)
    lat2, lon2 = math.radians(b.latitude), math.radians(b.longitude)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # Rounding can push h a hair past 1.0 for antipodal points.
    h = min(1.0, max(0.0, h))
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def travel_velocity_kmh(
    origin: GeoLocation,
    origin_time: datetime,
    destination: GeoLocation,
    destination_time: datetime,
) -> float:
    """Average speed needed to get from *origin* to *destination*.

    Returns ``0.0`` when no time has elapsed (or the clock went backwards)
    rather than dividing by zero.
    """
    elapsed_hours = abs((destination_time - origin_time).total_seconds()) / 3600.0
    if elapsed_hours == 0:
        return 0.0
    return haversine_km(origin, destination) / elapsed_hours


class GeoVelocityDetector:
    """Flags consecutive geolocated events that imply implausible travel speed.

    Args:
        threshold_kmh: Speed above which travel is considered impossible.
    """

    def __init__(self, threshold_kmh: float = DEFAULT_IMPOSSIBLE_TRAVEL_KMH) -> None:
        self._threshold_kmh = threshold_kmh

    @property
    def threshold_kmh(self) -> float:
        return self._threshold_kmh

    def assess(
        self,
        origin: GeoLocation,
        origin_time: datetime,
        destination: GeoLocation,
        destination_time: datetime,
    ) -> TravelAssessment:
        distance = haversine_km(origin, destination)
        elapsed = abs((destination_time - origin_time).total_seconds()) / 3600.0
        velocity = distance / elapsed if elapsed > 0 else 0.0
        return TravelAssessment(
            distance_km=distance,
            elapsed_hours=elapsed,
            velocity_kmh=velocity,
            impossible=velocity > self._threshold_kmh,
        )

"""
Geofence validation.

Great-circle distance from the reported position to the school reference
point, plus screening of the reported GPS accuracy for mock-location apps.
"""

import math
import logging
from typing import Optional

from ..errors import InvalidEvidenceError
from ..schemas import LocationPolicy

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371000.0


def _check_coordinate(lat: float, lon: float):
    if not (isinstance(lat, (int, float)) and isinstance(lon, (int, float))):
        raise InvalidEvidenceError(f"Coordinates must be numbers, got {lat!r}, {lon!r}")
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise InvalidEvidenceError(f"Coordinates must be finite, got {lat}, {lon}")
    if not -90.0 <= lat <= 90.0:
        raise InvalidEvidenceError(f"Latitude {lat} outside [-90, 90]")
    if not -180.0 <= lon <= 180.0:
        raise InvalidEvidenceError(f"Longitude {lon} outside [-180, 180]")


def distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in meters between two coordinates."""
    _check_coordinate(lat1, lon1)
    _check_coordinate(lat2, lon2)

    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) *
         math.sin(delta_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


class GeofenceCheck:
    """Outcome of a geofence test."""

    def __init__(self, ok: bool, distance_meters: float, near_boundary: bool = False):
        self.ok = ok
        self.distance_meters = distance_meters
        self.near_boundary = near_boundary

    def __repr__(self):
        return f"<GeofenceCheck(ok={self.ok}, distance={self.distance_meters:.1f}m, near_boundary={self.near_boundary})>"


class AccuracyCheck:
    """Outcome of GPS accuracy screening. ``verdict`` is None, "fake" or "low"."""

    def __init__(self, verdict: Optional[str] = None, accuracy: Optional[float] = None):
        self.verdict = verdict
        self.accuracy = accuracy

    @property
    def ok(self) -> bool:
        return self.verdict is None


class GeofenceValidator:
    """
    Distance-based location check against the active LocationPolicy.

    Args:
        near_boundary_ratio: Fraction of the radius past which a passing
            position is flagged as near the boundary
        fake_accuracy_max_m: Reported accuracy above this is treated as spoofed
        accuracy_required_m: Reported accuracy above this is too coarse to trust
    """

    def __init__(self, near_boundary_ratio: float = 0.8,
                 fake_accuracy_max_m: float = 10000.0,
                 accuracy_required_m: float = 20.0):
        if not 0 < near_boundary_ratio <= 1:
            raise ValueError(f"near_boundary_ratio must be in (0, 1], got {near_boundary_ratio}")
        self.near_boundary_ratio = near_boundary_ratio
        self.fake_accuracy_max_m = fake_accuracy_max_m
        self.accuracy_required_m = accuracy_required_m

    @staticmethod
    def distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        return distance(lat1, lon1, lat2, lon2)

    def is_within(self, lat: float, lon: float, policy: LocationPolicy) -> GeofenceCheck:
        meters = distance(lat, lon, policy.reference_latitude, policy.reference_longitude)
        ok = meters <= policy.radius_meters
        near_boundary = ok and meters > self.near_boundary_ratio * policy.radius_meters

        logger.debug(f"[SECURITY] Geofence: {meters:.1f}m of {policy.radius_meters}m (ok={ok})")
        return GeofenceCheck(ok, meters, near_boundary)

    def check_accuracy(self, accuracy: Optional[float]) -> AccuracyCheck:
        """
        Screen the reported GPS accuracy.

        Mock-location apps typically report an accuracy of exactly 0 or an
        absurdly large value. Unknown accuracy is not screened.
        """
        if accuracy is None:
            return AccuracyCheck()
        if not math.isfinite(accuracy) or accuracy < 0:
            raise InvalidEvidenceError(f"Location accuracy must be a finite non-negative number, got {accuracy}")

        if accuracy == 0 or accuracy > self.fake_accuracy_max_m:
            return AccuracyCheck("fake", accuracy)
        if accuracy > self.accuracy_required_m:
            return AccuracyCheck("low", accuracy)
        return AccuracyCheck(None, accuracy)

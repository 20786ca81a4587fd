"""Great-circle distance and coordinate plausibility."""

from __future__ import annotations

import math

from famguard.core.proximity_policies import NULL_ISLAND_EPSILON

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance between two lat/lng points in kilometers."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def is_plausible_coordinate(latitude: float, longitude: float, epsilon: float = NULL_ISLAND_EPSILON) -> bool:
    """
    Reject coordinates a location provider should never report:
      - NaN / infinite values
      - latitude outside [-90, 90] or longitude outside [-180, 180]
      - (0, 0) within epsilon, the usual sentinel for a failed GPS fix
    """
    if latitude is None or longitude is None:
        return False
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        return False
    if not (-90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0):
        return False
    if abs(latitude) < epsilon and abs(longitude) < epsilon:
        return False
    return True

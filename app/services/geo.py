"""
Lumen — Great-circle distance.

Haversine distance in kilometres between two points given in decimal
degrees.  Inputs are not range-checked.
"""

from __future__ import annotations

import math

EARTH_RADIUS_KM = 6371.0

# Distance assigned when either side has no coordinates; sorts such
# candidates after every located one without excluding them.
UNKNOWN_DISTANCE_KM = 999_999.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return the great-circle distance between two coordinates in km."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance_between(
    lat1: float | None,
    lon1: float | None,
    lat2: float | None,
    lon2: float | None,
) -> float:
    """Distance in km, or ``UNKNOWN_DISTANCE_KM`` if any coordinate is missing."""
    if lat1 is None or lon1 is None or lat2 is None or lon2 is None:
        return UNKNOWN_DISTANCE_KM
    return haversine_km(lat1, lon1, lat2, lon2)

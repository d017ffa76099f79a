"""Great-circle distance and bounding-box helpers.

All functions are pure. Distances are in kilometres on a spherical earth using
the IUGG mean radius, which keeps haversine error well under 0.5% anywhere.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

EARTH_RADIUS_KM = 6371.0088

# Padding added to prefilter boxes so float rounding never drops a point that
# sits exactly on the radius boundary.
_BOX_EPSILON_DEG = 1e-9


@dataclass(frozen=True, slots=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, latitude: float, longitude: float) -> bool:
        """Inclusive containment on both axes."""
        return (
            self.min_lat <= latitude <= self.max_lat
            and self.min_lon <= longitude <= self.max_lon
        )


def is_valid_latitude(value: float) -> bool:
    return math.isfinite(value) and -90.0 <= value <= 90.0


def is_valid_longitude(value: float) -> bool:
    return math.isfinite(value) and -180.0 <= value <= 180.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    )
    # clamp: rounding can push `a` a hair above 1 for antipodal points
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def radius_bounding_boxes(
    latitude: float, longitude: float, radius_km: float
) -> tuple[BoundingBox, ...]:
    """Return boxes that together enclose every point within ``radius_km``.

    The result is a superset used for index-friendly prefiltering; callers must
    still apply ``haversine_km`` for the exact cutoff. A circle that covers a
    pole spans every longitude, and one that crosses the antimeridian is split
    into two boxes.
    """
    angular = radius_km / EARTH_RADIUS_KM
    delta_lat = math.degrees(angular) + _BOX_EPSILON_DEG
    min_lat = latitude - delta_lat
    max_lat = latitude + delta_lat

    if min_lat <= -90.0 or max_lat >= 90.0:
        return (BoundingBox(max(min_lat, -90.0), min(max_lat, 90.0), -180.0, 180.0),)

    ratio = math.sin(angular) / math.cos(math.radians(latitude))
    if angular >= math.pi / 2 or ratio >= 1.0:
        return (BoundingBox(min_lat, max_lat, -180.0, 180.0),)

    delta_lon = math.degrees(math.asin(ratio)) + _BOX_EPSILON_DEG
    min_lon = longitude - delta_lon
    max_lon = longitude + delta_lon

    if min_lon < -180.0:
        return (
            BoundingBox(min_lat, max_lat, min_lon + 360.0, 180.0),
            BoundingBox(min_lat, max_lat, -180.0, max_lon),
        )
    if max_lon > 180.0:
        return (
            BoundingBox(min_lat, max_lat, min_lon, 180.0),
            BoundingBox(min_lat, max_lat, -180.0, max_lon - 360.0),
        )
    return (BoundingBox(min_lat, max_lat, min_lon, max_lon),)

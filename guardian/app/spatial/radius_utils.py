"""
radius_utils.py — Great-circle distance and radius filtering.

Provides:
    - Haversine distance between two (lat, lon) points
    - Bounding-box pre-filter for performance at scale
    - Destination point for a distance + bearing (used to place test fixtures
      and to reason about boundaries)
    - Half-away-from-zero rounding used when rendering distances

All distances are in **kilometers**. Coordinates are in **decimal degrees**.

Mathematical Foundation — Haversine Formula
============================================
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

Where φ is latitude and λ longitude in radians and R is Earth's mean radius.
Every proximity decision in the pipeline (alert matching, direct push,
geofencing, the alerts endpoint) goes through `haversine` so that boundary
behaviour is identical everywhere.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_KM: float = 6_371.0
BBOX_PAD_KM: float = 0.01


# ---------------------------------------------------------------------------
# Core data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Coordinate:
    """A geographic point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not (-90.0 <= self.latitude <= 90.0):
            raise ValueError(
                f"Latitude must be in [-90, 90], got {self.latitude}"
            )
        if not (-180.0 <= self.longitude <= 180.0):
            raise ValueError(
                f"Longitude must be in [-180, 180], got {self.longitude}"
            )

    @classmethod
    def is_valid(cls, latitude: float, longitude: float) -> bool:
        """Whether (latitude, longitude) is a usable point. NaN fails both range checks."""
        try:
            cls(float(latitude), float(longitude))
        except (TypeError, ValueError):
            return False
        return True

    @property
    def lat_rad(self) -> float:
        """Latitude in radians."""
        return math.radians(self.latitude)

    @property
    def lon_rad(self) -> float:
        """Longitude in radians."""
        return math.radians(self.longitude)


# ---------------------------------------------------------------------------
# Haversine implementation
# ---------------------------------------------------------------------------

def haversine(point1: Coordinate, point2: Coordinate) -> float:
    """
    Compute the great-circle distance between two points.

    Parameters
    ----------
    point1 : Coordinate
        Origin point (e.g. hazard location).
    point2 : Coordinate
        Target point (e.g. user location).

    Returns
    -------
    float
        Distance in kilometers (unrounded).

    Examples
    --------
    >>> round(haversine(Coordinate(0, 0), Coordinate(0, 1)), 2)
    111.19
    """
    d_lat = point2.lat_rad - point1.lat_rad
    d_lon = point2.lon_rad - point1.lon_rad

    a = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(point1.lat_rad)
        * math.cos(point2.lat_rad)
        * math.sin(d_lon / 2.0) ** 2
    )
    a = min(1.0, max(0.0, a))

    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_KM * c


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine on raw floats."""
    return haversine(Coordinate(lat1, lon1), Coordinate(lat2, lon2))


# ---------------------------------------------------------------------------
# Bounding-box pre-filter (fast rejection before expensive Haversine)
# ---------------------------------------------------------------------------

def bounding_box(center: Coordinate, radius_km: float) -> Tuple[float, float, float, float]:
    """
    Compute a lat/lon bounding box that fully contains the circle defined
    by (center, radius_km).

    Returns (min_lat, max_lat, min_lon, max_lon) in degrees. Near the poles
    or when the box would cross the antimeridian, the longitude span widens
    to the full [-180, 180] so the pre-filter never rejects a true match.
    """
    # Pad so float error never rejects a point sitting exactly on the circle
    angular = (radius_km + BBOX_PAD_KM) / EARTH_RADIUS_KM

    min_lat = center.latitude - math.degrees(angular)
    max_lat = center.latitude + math.degrees(angular)

    # Widest longitude reached by the circle: asin(sin(r) / cos(φ))
    cos_lat = math.cos(math.radians(center.latitude))
    ratio = math.sin(angular) / cos_lat if cos_lat > 1e-10 else 2.0
    covers_pole = max_lat >= 90.0 or min_lat <= -90.0
    if not covers_pole and angular < math.pi / 2 and ratio < 1.0:
        delta_lon = math.degrees(math.asin(ratio))
    else:
        delta_lon = 180.0

    min_lon = center.longitude - delta_lon
    max_lon = center.longitude + delta_lon
    if min_lon < -180.0 or max_lon > 180.0:
        min_lon, max_lon = -180.0, 180.0

    return (
        max(min_lat, -90.0),
        min(max_lat, 90.0),
        min_lon,
        max_lon,
    )


def inside_bbox(
    lat: float, lon: float,
    bbox: Tuple[float, float, float, float],
) -> bool:
    """Quick rectangular check."""
    min_lat, max_lat, min_lon, max_lon = bbox
    return min_lat <= lat <= max_lat and min_lon <= lon <= max_lon


# ---------------------------------------------------------------------------
# Destination point
# ---------------------------------------------------------------------------

def destination(origin: Coordinate, distance: float, bearing_deg: float) -> Coordinate:
    """
    Point reached travelling `distance` km from `origin` on `bearing_deg`
    (0 = north, 90 = east) along a great circle.
    """
    angular = distance / EARTH_RADIUS_KM
    bearing = math.radians(bearing_deg)
    lat1, lon1 = origin.lat_rad, origin.lon_rad

    lat2 = math.asin(
        math.sin(lat1) * math.cos(angular)
        + math.cos(lat1) * math.sin(angular) * math.cos(bearing)
    )
    lon2 = lon1 + math.atan2(
        math.sin(bearing) * math.sin(angular) * math.cos(lat1),
        math.cos(angular) - math.sin(lat1) * math.sin(lat2),
    )
    lon_deg = (math.degrees(lon2) + 540.0) % 360.0 - 180.0
    return Coordinate(math.degrees(lat2), lon_deg)


# ---------------------------------------------------------------------------
# Rounding for display
# ---------------------------------------------------------------------------

def round_half_up(value: float, ndigits: int = 0) -> float:
    """
    Round half away from zero (2.5 → 3, -2.5 → -3).

    Python's built-in round() uses banker's rounding, which would render a
    2.5 km match as "~2 km".
    """
    factor = 10 ** ndigits
    scaled = abs(value) * factor
    rounded = math.floor(scaled + 0.5) / factor
    return math.copysign(rounded, value)


def format_distance(km: float) -> str:
    """
    Format a distance for display.

    >>> format_distance(0.45)
    '450 m'
    >>> format_distance(3.7266)
    '3.73 km'
    """
    if km < 1.0:
        return f"{int(round_half_up(km * 1000))} m"
    return f"{round_half_up(km, 2):.2f} km"

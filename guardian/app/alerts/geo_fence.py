"""
geo_fence.py — Spatial matching of hazards against tracked positions.

Every proximity decision in the alerting layer goes through this module:

    alert generation    distance ≤ match radius     (inclusive)
    direct push         distance < push radius      (strict)
    geofencing          distance < danger radius    (strict)

═══════════════════════════════════════════════════════════════════════════
BOUNDING-BOX PRE-FILTER
═══════════════════════════════════════════════════════════════════════════

    Step 1 — Compute bounding box around the hazard for the radius
    Step 2 — Reject points outside the box (simple float comparison)
    Step 3 — Run Haversine only on candidates inside the box

═══════════════════════════════════════════════════════════════════════════
DANGER TIERS (geofencing)
═══════════════════════════════════════════════════════════════════════════

    severity ≥ 0.7   CRITICAL   within 5 km
    severity ≥ 0.4   HIGH       within 2 km
    otherwise        —          never a danger zone
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional

from guardian.app.core.config import settings
from guardian.app.hazards.models import Hazard, PoiKind, PointOfInterest, TrackedUser
from guardian.app.spatial.radius_utils import Coordinate, bounding_box, distance_km, inside_bbox

logger = logging.getLogger(__name__)


class DangerTier(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"


@dataclass(frozen=True)
class DangerZone:
    tier: DangerTier
    radius_km: float


def danger_zone(
    severity: float,
    *,
    critical_severity: float = settings.GEOFENCE_CRITICAL_SEVERITY,
    critical_radius_km: float = settings.GEOFENCE_CRITICAL_RADIUS_KM,
    high_severity: float = settings.GEOFENCE_HIGH_SEVERITY,
    high_radius_km: float = settings.GEOFENCE_HIGH_RADIUS_KM,
) -> Optional[DangerZone]:
    """Danger tier and radius for a hazard severity, or None below HIGH."""
    if severity >= critical_severity:
        return DangerZone(DangerTier.CRITICAL, critical_radius_km)
    if severity >= high_severity:
        return DangerZone(DangerTier.HIGH, high_radius_km)
    return None


@dataclass(frozen=True)
class PoiMatch:
    poi: PointOfInterest
    distance_km: float

    @property
    def user_id(self) -> int:
        return self.poi.user_id

    def sort_key(self):
        """Nearest first; exact ties prefer the live position, then lowest place id."""
        live_first = 0 if self.poi.kind is PoiKind.LIVE else 1
        place_id = self.poi.place_id if self.poi.place_id is not None else -1
        return (self.distance_km, live_first, place_id)


def located_hazards(hazards: Iterable[Hazard]) -> List[Hazard]:
    """Drop hazards whose stored coordinates cannot be matched against."""
    kept: List[Hazard] = []
    for hazard in hazards:
        if Coordinate.is_valid(hazard.lat, hazard.lon):
            kept.append(hazard)
        else:
            logger.warning(
                "Hazard %s has unusable coordinates (%s, %s)", hazard.id, hazard.lat, hazard.lon,
                extra={"hazard_id": hazard.id},
            )
    return kept


def _hazard_bbox(hazard: Hazard, radius_km: float):
    return bounding_box(Coordinate(hazard.lat, hazard.lon), radius_km)


def points_within(
    hazard: Hazard,
    pois: Iterable[PointOfInterest],
    radius_km: float,
) -> List[PoiMatch]:
    """Every POI with distance ≤ radius_km (inclusive)."""
    bbox = _hazard_bbox(hazard, radius_km)
    matches: List[PoiMatch] = []
    for poi in pois:
        if not inside_bbox(poi.lat, poi.lon, bbox):
            continue
        d = distance_km(hazard.lat, hazard.lon, poi.lat, poi.lon)
        if d <= radius_km:
            matches.append(PoiMatch(poi, d))
    return matches


def nearest_per_user(matches: Iterable[PoiMatch]) -> Dict[int, PoiMatch]:
    """Collapse several matches per user to the single best one."""
    best: Dict[int, PoiMatch] = {}
    for match in matches:
        current = best.get(match.user_id)
        if current is None or match.sort_key() < current.sort_key():
            best[match.user_id] = match
    return best


def users_within(
    hazard: Hazard,
    users: Iterable[TrackedUser],
    radius_km: float,
) -> List[tuple]:
    """(user, distance) for users whose live position is strictly inside radius_km."""
    bbox = _hazard_bbox(hazard, radius_km)
    found = []
    for user in users:
        if not user.has_position or not inside_bbox(user.last_lat, user.last_lon, bbox):
            continue
        d = distance_km(hazard.lat, hazard.lon, user.last_lat, user.last_lon)
        if d < radius_km:
            found.append((user, d))
    return found

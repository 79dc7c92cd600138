"""
generator.py — Turns recent hazards into per-user Alert rows.

One run:

    1. Load hazards with occurred_at ≥ now − lookback (newest first)
    2. Match each against every saved place and live position
       (distance ≤ match radius, inclusive)
    3. Keep one match per user: nearest, then live position, then lowest
       saved-place id
    4. Insert one Alert per (user, hazard); an existing pair is left as is
    5. Purge alerts older than the TTL, even when steps 1–4 failed

Re-running over the same window creates nothing new, so the generator can
run every minute and overlap with itself safely.

Match radius:
    fixed   ALERT_MATCH_RADIUS_KM for every hazard (default 500 km)
    scaled  earthquakes use max(15, 10 × magnitude) km, magnitude
            defaulting to 3; other hazard types keep the fixed radius
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from guardian.app.alerts.geo_fence import located_hazards, nearest_per_user, points_within
from guardian.app.core.config import settings
from guardian.app.core.errors import GuardianError
from guardian.app.core.results import TaskResult
from guardian.app.hazards.models import Hazard, HazardType
from guardian.app.hazards.store import HazardStore, UserDirectory
from guardian.app.spatial.radius_utils import round_half_up

logger = logging.getLogger(__name__)

RADIUS_MODES = ("fixed", "scaled")

SCALED_MIN_RADIUS_KM = 15.0
SCALED_KM_PER_MAGNITUDE = 10.0
SCALED_DEFAULT_MAGNITUDE = 3.0


def render_alert_message(hazard: Hazard, distance: float) -> str:
    """
    Alert text for one user.

        M5.4 earthquake, 12.5 km   → "Earthquake M5.4 detected ~13 km away."
        untitled wildfire, 2.4 km  → "Wildfire alert: Emergency detected ~2 km away."
    """
    km = int(round_half_up(distance))
    magnitude = hazard.magnitude
    if hazard.type is HazardType.EARTHQUAKE and magnitude:
        return f"Earthquake M{magnitude:.1f} detected ~{km} km away."
    label = hazard.type.value.capitalize()
    return f"{label} alert: {hazard.title or 'Emergency'} detected ~{km} km away."


class AlertGenerator:

    name = "alerts"

    def __init__(
        self,
        store: HazardStore,
        directory: UserDirectory,
        *,
        lookback_minutes: int = settings.ALERT_LOOKBACK_MINUTES,
        match_radius_km: float = settings.ALERT_MATCH_RADIUS_KM,
        radius_mode: str = settings.ALERT_RADIUS_MODE,
        ttl_hours: int = settings.ALERT_TTL_HOURS,
    ):
        if radius_mode not in RADIUS_MODES:
            raise ValueError(f"radius_mode must be one of {RADIUS_MODES}, got {radius_mode!r}")
        self.store = store
        self.directory = directory
        self.lookback = timedelta(minutes=lookback_minutes)
        self.match_radius_km = match_radius_km
        self.radius_mode = radius_mode
        self.ttl = timedelta(hours=ttl_hours)

    def match_radius(self, hazard: Hazard) -> float:
        if self.radius_mode == "scaled" and hazard.type is HazardType.EARTHQUAKE:
            magnitude = hazard.magnitude
            if magnitude is None:
                magnitude = SCALED_DEFAULT_MAGNITUDE
            return max(SCALED_MIN_RADIUS_KM, SCALED_KM_PER_MAGNITUDE * magnitude)
        return self.match_radius_km

    async def run(self, now: Optional[datetime] = None) -> TaskResult:
        now = now or datetime.now(timezone.utc)
        start = time.monotonic()
        created = conflicts = failed = purged = 0
        warnings: List[str] = []
        error: Optional[GuardianError] = None
        hazards_seen = 0

        try:
            hazards = await self.store.hazards_since(now - self.lookback)
            hazards_seen = len(hazards)
            located = located_hazards(hazards)
            unusable = len(hazards) - len(located)
            if unusable:
                failed += unusable
                warnings.append(f"{unusable} hazards with unusable coordinates")
            hazards = located
            pois = await self.directory.points_of_interest() if hazards else []

            for hazard in hazards:
                best = nearest_per_user(points_within(hazard, pois, self.match_radius(hazard)))
                for user_id in sorted(best):
                    message = render_alert_message(hazard, best[user_id].distance_km)
                    try:
                        inserted = await self.store.insert_alert(
                            user_id, hazard.id, message, created_at=now,
                        )
                    except GuardianError as exc:
                        failed += 1
                        warnings.append(f"alert {user_id}/{hazard.id}: {exc.message}")
                        logger.error(
                            "Alert insert failed: %s", exc.message,
                            extra={"user_id": user_id, "hazard_id": hazard.id},
                        )
                        continue
                    if inserted:
                        created += 1
                    else:
                        conflicts += 1
        except GuardianError as exc:
            error = exc
            logger.error("Alert matching failed: %s", exc.message, extra={"task": self.name})
        except Exception as exc:
            error = GuardianError(f"{type(exc).__name__}: {exc}")
            logger.exception("Alert matching crashed", extra={"task": self.name})

        # Purge runs whatever happened above
        try:
            purged = await self.store.delete_alerts_before(now - self.ttl)
        except GuardianError as exc:
            warnings.append(f"purge: {exc.message}")
            logger.error("Alert purge failed: %s", exc.message, extra={"task": self.name})
            if error is None:
                error = exc

        details = {
            "hazards": hazards_seen,
            "purged": purged,
            "failed": failed,
            "radius_mode": self.radius_mode,
        }
        duration_ms = int((time.monotonic() - start) * 1000)

        if error is not None:
            return TaskResult.failure(
                self.name, error.kind, error.message,
                count=created, skipped=conflicts, warnings=warnings,
                details=details, duration_ms=duration_ms,
            )

        if created or purged:
            logger.info(
                "Alerts: %d new, %d existing, %d purged", created, conflicts, purged,
                extra={"task": self.name, "count": created},
            )
        return TaskResult.success(
            self.name, count=created, skipped=conflicts,
            warnings=warnings, details=details, duration_ms=duration_ms,
        )

"""
notifier.py — Proximity push notifications and family geofencing.

Two independent passes, each scheduled on its own:

═══════════════════════════════════════════════════════════════════════════
DIRECT PROXIMITY PUSH
═══════════════════════════════════════════════════════════════════════════

    hazards:  occurred_at > now − 2 min
    users:    push token + live position, distance < 50 km
    send:     one gateway request per hazard, one message per user

No record is kept of what was sent; a hazard seen by two overlapping
windows is pushed twice (at-least-once).

═══════════════════════════════════════════════════════════════════════════
FAMILY GEOFENCING
═══════════════════════════════════════════════════════════════════════════

    hazards:  occurred_at > now − 6 h
    users:    live position + family id
    match:    distance < danger radius for the hazard's severity tier
    send:     for each matched (user, hazard), every other family member
              with a push token gets one message

A gateway failure is contained to the hazard (direct) or the matched pair
(geofence) being sent; the rest of the pass still goes out. Messages from
chunks delivered before the failure still count as sent.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from guardian.app.alerts.channels.expo_push import ExpoPushGateway, PushMessage
from guardian.app.alerts.geo_fence import DangerZone, danger_zone, located_hazards, users_within
from guardian.app.core.config import settings
from guardian.app.core.errors import GuardianError, PushDeliveryError
from guardian.app.core.results import ErrorKind, TaskResult
from guardian.app.hazards.models import Hazard, TrackedUser
from guardian.app.hazards.store import HazardStore, UserDirectory
from guardian.app.spatial.radius_utils import distance_km, round_half_up

logger = logging.getLogger(__name__)


def severity_label(severity: float) -> str:
    if severity >= 0.7:
        return "critical"
    if severity >= 0.4:
        return "high"
    if severity >= 0.2:
        return "moderate"
    return "low"


def direct_message(hazard: Hazard, user: TrackedUser, distance: float) -> PushMessage:
    km = int(round_half_up(distance))
    return PushMessage(
        to=user.push_token,
        body=f"New {severity_label(hazard.severity)} {hazard.type.value} reported ~{km} km away.",
        data={"type": "hazard_alert", "hazardId": hazard.id},
    )


def geofence_message(
    member: TrackedUser,
    target: TrackedUser,
    hazard: Hazard,
    zone: DangerZone,
    distance: float,
) -> PushMessage:
    return PushMessage(
        to=member.push_token,
        body=(
            f"EMERGENCY: {target.name} is near a {zone.tier.value} "
            f"{hazard.type.value} zone! ({round_half_up(distance, 1):.1f} km away)"
        ),
        data={
            "type": "geofence_alert",
            "targetUserId": target.id,
            "targetUserName": target.name,
            "hazardType": hazard.type.value,
            "hazardId": hazard.id,
        },
    )


class ProximityNotifier:

    def __init__(
        self,
        store: HazardStore,
        directory: UserDirectory,
        gateway: ExpoPushGateway,
        *,
        push_window_minutes: int = settings.PUSH_WINDOW_MINUTES,
        push_radius_km: float = settings.PUSH_RADIUS_KM,
        geofence_window_hours: int = settings.GEOFENCE_WINDOW_HOURS,
        critical_severity: float = settings.GEOFENCE_CRITICAL_SEVERITY,
        critical_radius_km: float = settings.GEOFENCE_CRITICAL_RADIUS_KM,
        high_severity: float = settings.GEOFENCE_HIGH_SEVERITY,
        high_radius_km: float = settings.GEOFENCE_HIGH_RADIUS_KM,
    ):
        self.store = store
        self.directory = directory
        self.gateway = gateway
        self.push_window = timedelta(minutes=push_window_minutes)
        self.push_radius_km = push_radius_km
        self.geofence_window = timedelta(hours=geofence_window_hours)
        self.danger_tiers = {
            "critical_severity": critical_severity,
            "critical_radius_km": critical_radius_km,
            "high_severity": high_severity,
            "high_radius_km": high_radius_km,
        }

    async def _recent_hazards(self, cutoff: datetime) -> List[Hazard]:
        # Both windows are exclusive of the cutoff itself
        recent = [h for h in await self.store.hazards_since(cutoff) if h.occurred_at > cutoff]
        return located_hazards(recent)

    async def _deliver(
        self, messages: List[PushMessage], what: str, warnings: List[str],
    ) -> Tuple[int, bool]:
        """Send one batch; returns (messages sent, whether every chunk went out)."""
        try:
            report = await self.gateway.send(messages)
        except PushDeliveryError as exc:
            partial = exc.partial_report
            delivered = partial.sent if partial is not None else 0
            warnings.append(f"{what}: {exc.message}")
            if partial is not None:
                warnings.extend(partial.ticket_errors)
            logger.error(
                "Push for %s failed after %d of %d messages: %s",
                what, delivered, len(messages), exc.message,
                extra={"recipient_count": len(messages), "error_kind": exc.kind.value},
            )
            return delivered, False
        warnings.extend(report.ticket_errors)
        return report.sent, True

    @staticmethod
    def _result(
        task: str,
        sent: int,
        attempts: int,
        failures: int,
        warnings: List[str],
        details: Dict,
        start: float,
    ) -> TaskResult:
        duration_ms = int((time.monotonic() - start) * 1000)
        if attempts and failures == attempts:
            return TaskResult.failure(
                task, ErrorKind.GATEWAY, f"all {attempts} push requests failed",
                count=sent, skipped=failures, warnings=warnings,
                details=details, duration_ms=duration_ms,
            )
        return TaskResult.success(
            task, count=sent, skipped=failures,
            warnings=warnings, details=details, duration_ms=duration_ms,
        )

    # ── Direct proximity push ──

    async def run_direct_pass(self, now: Optional[datetime] = None) -> TaskResult:
        task = "push"
        now = now or datetime.now(timezone.utc)
        start = time.monotonic()
        warnings: List[str] = []
        sent = attempts = failures = 0

        try:
            hazards = await self._recent_hazards(now - self.push_window)
            users = [u for u in await self.directory.tracked_users() if u.push_token] if hazards else []
        except GuardianError as exc:
            return TaskResult.failure(task, exc.kind, exc.message)

        for hazard in hazards:
            nearby = users_within(hazard, users, self.push_radius_km)
            if not nearby:
                continue
            messages = [direct_message(hazard, user, d) for user, d in nearby]
            attempts += 1
            delivered, ok = await self._deliver(messages, f"hazard {hazard.id}", warnings)
            sent += delivered
            if not ok:
                failures += 1
            elif delivered:
                logger.info(
                    "Pushed hazard %d to %d users", hazard.id, delivered,
                    extra={"task": task, "hazard_id": hazard.id, "recipient_count": delivered},
                )

        return self._result(
            task, sent, attempts, failures, warnings,
            {"hazards": len(hazards), "requests": attempts}, start,
        )

    # ── Family geofencing ──

    def danger_matches(
        self, hazards: List[Hazard], users: List[TrackedUser],
    ) -> List[Tuple[TrackedUser, Hazard, DangerZone, float]]:
        matches = []
        for user in users:
            for hazard in hazards:
                zone = danger_zone(hazard.severity, **self.danger_tiers)
                if zone is None:
                    continue
                d = distance_km(hazard.lat, hazard.lon, user.last_lat, user.last_lon)
                if d < zone.radius_km:
                    matches.append((user, hazard, zone, d))
        return matches

    async def run_geofence_pass(self, now: Optional[datetime] = None) -> TaskResult:
        task = "geofence"
        now = now or datetime.now(timezone.utc)
        start = time.monotonic()
        warnings: List[str] = []
        sent = attempts = failures = 0

        try:
            hazards = await self._recent_hazards(now - self.geofence_window)
            users = [u for u in await self.directory.tracked_users() if u.family_id] if hazards else []
            matches = self.danger_matches(hazards, users)

            families: Dict[Tuple[str, int], List[TrackedUser]] = {}
            for user, _, _, _ in matches:
                key = (user.family_id, user.id)
                if key not in families:
                    families[key] = await self.directory.family_members(user.family_id, user.id)
        except GuardianError as exc:
            return TaskResult.failure(task, exc.kind, exc.message)

        for user, hazard, zone, d in matches:
            members = [m for m in families[(user.family_id, user.id)] if m.push_token]
            if not members:
                continue
            messages = [geofence_message(m, user, hazard, zone, d) for m in members]
            attempts += 1
            delivered, ok = await self._deliver(
                messages, f"user {user.id} / hazard {hazard.id}", warnings,
            )
            sent += delivered
            if not ok:
                failures += 1
            elif delivered:
                logger.info(
                    "Geofence: %s near %s %s, notified %d family members",
                    user.name, zone.tier.value, hazard.type.value, delivered,
                    extra={"task": task, "user_id": user.id, "hazard_id": hazard.id},
                )

        return self._result(
            task, sent, attempts, failures, warnings,
            {"hazards": len(hazards), "matches": len(matches), "requests": attempts}, start,
        )

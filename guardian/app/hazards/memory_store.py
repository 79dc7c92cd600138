"""
memory_store.py — In-process HazardStore / UserDirectory.

Used by the test suite and by `STORE_BACKEND=memory` for local runs
without a database. Same contract as the SQL implementation, including the
(source, source_event_id) and (user_id, hazard_id) uniqueness rules.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from guardian.app.hazards.models import (
    AlertRecord,
    Hazard,
    HazardCandidate,
    HazardType,
    PoiKind,
    PointOfInterest,
    TrackedUser,
    UpsertOutcome,
    utc,
)
from guardian.app.hazards.store import HazardStore, UserDirectory


class InMemoryHazardStore(HazardStore):

    def __init__(self) -> None:
        self._hazards: Dict[int, Hazard] = {}
        self._by_identity: Dict[Tuple[str, str], int] = {}
        self._alerts: Dict[Tuple[int, int], AlertRecord] = {}
        self._next_hazard_id = 1
        self._next_alert_id = 1
        self._lock = asyncio.Lock()

    async def upsert_hazard(
        self, candidate: HazardCandidate, *, overwrite: bool = True,
    ) -> UpsertOutcome:
        async with self._lock:
            existing_id = self._by_identity.get(candidate.identity)
            if existing_id is None:
                hazard = Hazard(
                    id=self._next_hazard_id,
                    type=candidate.type,
                    severity=candidate.severity,
                    occurred_at=candidate.occurred_at,
                    lat=candidate.lat,
                    lon=candidate.lon,
                    source=candidate.source,
                    source_event_id=candidate.source_event_id,
                    attributes=dict(candidate.attributes),
                )
                self._hazards[hazard.id] = hazard
                self._by_identity[candidate.identity] = hazard.id
                self._next_hazard_id += 1
                return UpsertOutcome.INSERTED

            if not overwrite:
                return UpsertOutcome.UNCHANGED

            self._hazards[existing_id] = replace(
                self._hazards[existing_id],
                severity=candidate.severity,
                occurred_at=candidate.occurred_at,
                lat=candidate.lat,
                lon=candidate.lon,
                attributes=dict(candidate.attributes),
            )
            return UpsertOutcome.UPDATED

    async def get_hazard(self, hazard_id: int) -> Optional[Hazard]:
        return self._hazards.get(hazard_id)

    async def get_hazard_by_source(
        self, source: str, source_event_id: str,
    ) -> Optional[Hazard]:
        hazard_id = self._by_identity.get((source, source_event_id))
        return self._hazards.get(hazard_id) if hazard_id is not None else None

    async def hazards_since(
        self,
        cutoff: datetime,
        *,
        types: Optional[Sequence[HazardType]] = None,
        limit: Optional[int] = None,
    ) -> List[Hazard]:
        cutoff = utc(cutoff)
        wanted = {HazardType(t) for t in types} if types else None
        rows = [
            h for h in self._hazards.values()
            if h.occurred_at >= cutoff and (wanted is None or h.type in wanted)
        ]
        rows.sort(key=lambda h: (h.occurred_at, h.id), reverse=True)
        return rows[:limit] if limit else rows

    async def insert_alert(
        self,
        user_id: int,
        hazard_id: int,
        message: str,
        created_at: Optional[datetime] = None,
    ) -> bool:
        async with self._lock:
            key = (user_id, hazard_id)
            if key in self._alerts:
                return False
            self._alerts[key] = AlertRecord(
                id=self._next_alert_id,
                user_id=user_id,
                hazard_id=hazard_id,
                message=message,
                created_at=utc(created_at) if created_at else datetime.now(timezone.utc),
            )
            self._next_alert_id += 1
            return True

    async def delete_alerts_before(self, cutoff: datetime) -> int:
        cutoff = utc(cutoff)
        async with self._lock:
            stale = [k for k, a in self._alerts.items() if a.created_at < cutoff]
            for key in stale:
                del self._alerts[key]
            return len(stale)

    async def list_alerts(
        self, user_id: int, since: Optional[datetime] = None,
    ) -> List[AlertRecord]:
        rows = [
            a for a in self._alerts.values()
            if a.user_id == user_id and (since is None or a.created_at >= utc(since))
        ]
        rows.sort(key=lambda a: (a.created_at, a.id), reverse=True)
        return rows

    async def count_hazards(self) -> int:
        return len(self._hazards)

    async def count_alerts(self) -> int:
        return len(self._alerts)


class InMemoryUserDirectory(UserDirectory):

    def __init__(self) -> None:
        self._users: Dict[int, TrackedUser] = {}
        self._places: List[PointOfInterest] = []
        self._next_place_id = 1

    # ── Seeding (tests / local runs) ──

    def add_user(self, user: TrackedUser) -> TrackedUser:
        self._users[user.id] = user
        return user

    def add_place(self, user_id: int, lat: float, lon: float) -> PointOfInterest:
        poi = PointOfInterest(
            user_id=user_id, lat=lat, lon=lon,
            kind=PoiKind.SAVED, place_id=self._next_place_id,
        )
        self._next_place_id += 1
        self._places.append(poi)
        return poi

    # ── UserDirectory ──

    async def points_of_interest(self) -> List[PointOfInterest]:
        pois = list(self._places)
        pois.extend(
            PointOfInterest(user_id=u.id, lat=u.last_lat, lon=u.last_lon, kind=PoiKind.LIVE)
            for u in self._positioned()
        )
        return pois

    async def tracked_users(self) -> List[TrackedUser]:
        return self._positioned()

    async def recent_live_positions(self, since: datetime) -> List[TrackedUser]:
        since = utc(since)
        return [
            u for u in self._positioned()
            if u.last_location_update is not None and utc(u.last_location_update) >= since
        ]

    async def family_members(
        self, family_id: str, exclude_user_id: int,
    ) -> List[TrackedUser]:
        return [
            u for u in sorted(self._users.values(), key=lambda u: u.id)
            if u.family_id == family_id and u.id != exclude_user_id and u.push_token
        ]

    def _positioned(self) -> List[TrackedUser]:
        return [u for u in sorted(self._users.values(), key=lambda u: u.id) if u.has_position]

"""
test_alert_generator.py — Alert materialization from recent hazards.

Tests cover:
  1. Idempotency: re-running over the same window adds nothing
  2. Inclusive match radius (a point exactly on the radius matches)
  3. One alert per user (nearest place, live position on ties)
  4. TTL purge of old alerts
  5. Alert message text
  6. Scaled radius mode for earthquakes

Run with:
    pytest tests/test_alert_generator.py -v
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from guardian.app.alerts.generator import AlertGenerator, render_alert_message
from guardian.app.alerts.geo_fence import PoiMatch, nearest_per_user
from guardian.app.core.results import ErrorKind
from guardian.app.hazards.memory_store import InMemoryHazardStore, InMemoryUserDirectory
from guardian.app.hazards.models import (
    Hazard,
    HazardCandidate,
    HazardType,
    PoiKind,
    PointOfInterest,
    TrackedUser,
)
from guardian.app.spatial.radius_utils import Coordinate, destination, distance_km

from conftest import NOW

# ═══════════════════════════════════════════════════════════════════════════
# Constants
# ═══════════════════════════════════════════════════════════════════════════

LA = Coordinate(34.05, -118.25)


def _make_candidate(event_id="ev1", *, hazard_type=HazardType.EARTHQUAKE,
                    lat=LA.latitude, lon=LA.longitude, minutes_ago=5, **attributes):
    return HazardCandidate(
        type=hazard_type,
        severity=0.5,
        occurred_at=NOW - timedelta(minutes=minutes_ago),
        lat=lat,
        lon=lon,
        source="USGS" if hazard_type is HazardType.EARTHQUAKE else "TEST",
        source_event_id=event_id,
        attributes=attributes,
    )


def _make_hazard(hazard_type=HazardType.EARTHQUAKE, **attributes) -> Hazard:
    return Hazard(
        id=1, type=hazard_type, severity=0.5, occurred_at=NOW,
        lat=LA.latitude, lon=LA.longitude, source="X", source_event_id="x",
        attributes=attributes,
    )


def _point_at(km: float, bearing: float = 90.0) -> Coordinate:
    return destination(LA, km, bearing)


def _make_generator(store, directory, **kwargs) -> AlertGenerator:
    return AlertGenerator(store, directory, **kwargs)


class _StaleRowStore(InMemoryHazardStore):
    """Also returns a row written before coordinates were validated on ingest."""

    def __init__(self, stale: Hazard):
        super().__init__()
        self.stale = stale

    async def hazards_since(self, cutoff, **kwargs):
        return [self.stale, *await super().hazards_since(cutoff, **kwargs)]


class _BrokenDirectory(InMemoryUserDirectory):

    async def points_of_interest(self):
        raise RuntimeError("directory offline")


# ═══════════════════════════════════════════════════════════════════════════
# Messages
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertMessage:

    def test_earthquake_with_magnitude(self):
        msg = render_alert_message(_make_hazard(magnitude=5.43), 12.5)
        assert msg == "Earthquake M5.4 detected ~13 km away."

    def test_earthquake_without_magnitude_uses_title(self):
        msg = render_alert_message(_make_hazard(title="Quake near LA"), 2.4)
        assert msg == "Earthquake alert: Quake near LA detected ~2 km away."

    def test_untitled_hazard(self):
        msg = render_alert_message(_make_hazard(HazardType.WILDFIRE), 2.4)
        assert msg == "Wildfire alert: Emergency detected ~2 km away."


# ═══════════════════════════════════════════════════════════════════════════
# Tie-break
# ═══════════════════════════════════════════════════════════════════════════

class TestNearestPerUser:

    def test_nearest_wins(self):
        near = PoiMatch(PointOfInterest(1, 0, 0, PoiKind.SAVED, place_id=9), 3.0)
        far = PoiMatch(PointOfInterest(1, 0, 0, PoiKind.LIVE), 8.0)
        assert nearest_per_user([far, near])[1] is near

    def test_live_position_wins_exact_tie(self):
        saved = PoiMatch(PointOfInterest(1, 0, 0, PoiKind.SAVED, place_id=1), 3.0)
        live = PoiMatch(PointOfInterest(1, 0, 0, PoiKind.LIVE), 3.0)
        assert nearest_per_user([saved, live])[1] is live

    def test_lowest_place_id_between_saved_places(self):
        a = PoiMatch(PointOfInterest(1, 0, 0, PoiKind.SAVED, place_id=7), 3.0)
        b = PoiMatch(PointOfInterest(1, 0, 0, PoiKind.SAVED, place_id=2), 3.0)
        assert nearest_per_user([a, b])[1] is b


# ═══════════════════════════════════════════════════════════════════════════
# Generator runs
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertGenerator:

    async def test_rerun_creates_nothing_new(self, store, directory):
        await store.upsert_hazard(_make_candidate(magnitude=5.0))
        p = _point_at(10)
        directory.add_user(TrackedUser(id=1, name="Asha", last_lat=p.latitude, last_lon=p.longitude))
        gen = _make_generator(store, directory)

        first = await gen.run(now=NOW)
        second = await gen.run(now=NOW + timedelta(minutes=1))

        assert first.ok and first.count == 1
        assert second.ok and second.count == 0 and second.skipped == 1
        assert await store.count_alerts() == 1

    async def test_point_exactly_on_radius_matches(self, store, directory):
        await store.upsert_hazard(_make_candidate())
        p = _point_at(120)
        radius = distance_km(LA.latitude, LA.longitude, p.latitude, p.longitude)
        directory.add_place(1, p.latitude, p.longitude)

        result = await _make_generator(store, directory, match_radius_km=radius).run(now=NOW)

        assert result.count == 1

    async def test_point_beyond_radius_does_not_match(self, store, directory):
        await store.upsert_hazard(_make_candidate())
        p = _point_at(501)
        directory.add_place(1, p.latitude, p.longitude)

        result = await _make_generator(store, directory, match_radius_km=500).run(now=NOW)
        assert result.count == 0

    async def test_one_alert_per_user_from_nearest_place(self, store, directory):
        await store.upsert_hazard(_make_candidate(magnitude=4.0))
        far, near = _point_at(300), _point_at(20, bearing=0)
        directory.add_place(1, far.latitude, far.longitude)
        directory.add_place(1, near.latitude, near.longitude)

        await _make_generator(store, directory).run(now=NOW)

        alerts = await store.list_alerts(1)
        assert len(alerts) == 1
        assert alerts[0].message == "Earthquake M4.0 detected ~20 km away."

    async def test_hazards_outside_lookback_ignored(self, store, directory):
        await store.upsert_hazard(_make_candidate(minutes_ago=90))
        directory.add_place(1, LA.latitude, LA.longitude)

        result = await _make_generator(store, directory, lookback_minutes=60).run(now=NOW)
        assert result.count == 0
        assert result.details["hazards"] == 0

    async def test_ttl_purge(self, store, directory):
        await store.upsert_hazard(_make_candidate("old"))
        await store.upsert_hazard(_make_candidate("recent"))
        old = await store.get_hazard_by_source("USGS", "old")
        recent = await store.get_hazard_by_source("USGS", "recent")
        await store.insert_alert(5, old.id, "old", created_at=NOW - timedelta(hours=25))
        await store.insert_alert(5, recent.id, "recent", created_at=NOW - timedelta(hours=23))

        result = await _make_generator(store, directory, ttl_hours=24).run(now=NOW)

        assert result.details["purged"] == 1
        assert [a.message for a in await store.list_alerts(5)] == ["recent"]

    async def test_hazard_with_nan_coordinates_skipped(self, directory):
        stale = Hazard(
            id=999, type=HazardType.TSUNAMI, severity=0.9, occurred_at=NOW,
            lat=float("nan"), lon=float("nan"), source="NOAA NTWC", source_event_id="urn:nan",
        )
        store = _StaleRowStore(stale)
        await store.upsert_hazard(_make_candidate(magnitude=5.0))
        old = await store.get_hazard_by_source("USGS", "ev1")
        await store.insert_alert(5, old.id, "old", created_at=NOW - timedelta(hours=25))
        p = _point_at(10)
        directory.add_place(1, p.latitude, p.longitude)

        result = await _make_generator(store, directory).run(now=NOW)

        assert result.ok
        assert result.count == 1
        assert result.details["failed"] == 1
        assert result.details["purged"] == 1
        assert await store.list_alerts(5) == []

    async def test_purge_runs_when_matching_crashes(self, store):
        await store.upsert_hazard(_make_candidate())
        hazard = await store.get_hazard_by_source("USGS", "ev1")
        await store.insert_alert(5, hazard.id, "old", created_at=NOW - timedelta(hours=25))

        result = await _make_generator(store, _BrokenDirectory()).run(now=NOW)

        assert not result.ok
        assert result.error_kind is ErrorKind.INTERNAL
        assert "directory offline" in result.error_message
        assert result.details["purged"] == 1
        assert await store.count_alerts() == 0

    def test_invalid_radius_mode(self, store, directory):
        with pytest.raises(ValueError):
            _make_generator(store, directory, radius_mode="adaptive")


class TestScaledRadius:

    @pytest.mark.parametrize("magnitude, expected", [
        (None, 30.0), (1.0, 15.0), (5.0, 50.0), (7.2, 72.0),
    ])
    def test_earthquake_radius(self, store, directory, magnitude, expected):
        gen = _make_generator(store, directory, radius_mode="scaled")
        attrs = {"magnitude": magnitude} if magnitude is not None else {}
        assert gen.match_radius(_make_hazard(**attrs)) == pytest.approx(expected)

    def test_other_types_keep_fixed_radius(self, store, directory):
        gen = _make_generator(store, directory, radius_mode="scaled", match_radius_km=500)
        assert gen.match_radius(_make_hazard(HazardType.WILDFIRE)) == 500

    async def test_small_quake_does_not_reach_far_users(self, store, directory):
        await store.upsert_hazard(_make_candidate(magnitude=3.0))
        p = _point_at(100)
        directory.add_place(1, p.latitude, p.longitude)

        scaled = await _make_generator(store, directory, radius_mode="scaled").run(now=NOW)
        assert scaled.count == 0

        fixed = await _make_generator(store, directory, radius_mode="fixed").run(now=NOW)
        assert fixed.count == 1


class TestAlertGeneratorOnSql:

    async def test_two_runs_one_alert_per_pair(self, sql_store, directory):
        await sql_store.upsert_hazard(_make_candidate("q1", magnitude=5.0))
        await sql_store.upsert_hazard(_make_candidate("q2", magnitude=4.1, minutes_ago=10))
        home, here = _point_at(40), _point_at(42, bearing=180)
        directory.add_place(1, home.latitude, home.longitude)
        directory.add_user(TrackedUser(id=1, name="Asha", last_lat=here.latitude, last_lon=here.longitude))
        directory.add_place(2, home.latitude, home.longitude)
        gen = _make_generator(sql_store, directory)

        first = await gen.run(now=NOW)
        second = await gen.run(now=NOW + timedelta(minutes=1))

        assert first.count == 4
        assert second.count == 0 and second.skipped == 4
        assert await sql_store.count_alerts() == 4
        assert sorted(a.message for a in await sql_store.list_alerts(1)) == [
            "Earthquake M4.1 detected ~40 km away.",
            "Earthquake M5.0 detected ~40 km away.",
        ]

"""
test_wildfire.py — NIFC ArcGIS parsing and the wildfire adapter.

Run with:
    pytest tests/test_wildfire.py -v
"""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from guardian.app.core.results import ErrorKind
from guardian.app.hazards.models import HazardType
from guardian.app.ingestion.wildfire import (
    WildfireAdapter,
    parse_nifc_feature,
    wildfire_severity,
)

NIFC_URL = "https://nifc.test/query"
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _make_incident(uid="2026-CAXXX-000123", acres=15000, x=-120.0, y=38.0, **attrs):
    attributes = {
        "UniqueFireIdentifier": uid,
        "IncidentName": "Ridge Fire",
        "IncidentSize": acres,
        "PercentContained": 20,
        "POOCounty": "Tuolumne",
        "POOState": "US-CA",
        "OBJECTID": 42,
        "FireDiscoveryDateTime": 1760600000000,
        **attrs,
    }
    return {"attributes": attributes, "geometry": {"x": x, "y": y}}


def _make_adapter(store, feed_client_factory, payload, *, batch_size=50, seen=None):
    def handler(request):
        if seen is not None:
            seen.append(request)
        return httpx.Response(200, json=payload)
    return WildfireAdapter(
        store, feed_client_factory(handler),
        url=NIFC_URL, record_limit=500, batch_size=batch_size,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Severity + parsing
# ═══════════════════════════════════════════════════════════════════════════

class TestWildfireSeverity:

    @pytest.mark.parametrize("acres, expected", [
        (None, 0.3), (500, 0.3), (1000, 0.3), (5000, 0.6), (10000, 0.6), (50000, 0.9),
    ])
    def test_bands(self, acres, expected):
        assert wildfire_severity(acres) == expected


class TestParseIncident:

    def test_fields(self):
        c = parse_nifc_feature(_make_incident())
        assert c.type is HazardType.WILDFIRE
        assert c.source == "NIFC"
        assert c.source_event_id == "2026-CAXXX-000123"
        assert (c.lat, c.lon) == (38.0, -120.0)
        assert c.severity == 0.9
        assert c.attributes["title"] == "Ridge Fire"
        assert c.attributes["place"] == "Tuolumne, US-CA"
        assert c.attributes["description"] == "Acres: 15000, Contained: 20%"
        assert c.attributes["url"] is None
        assert c.attributes["IncidentSize"] == 15000

    def test_object_id_fallback(self):
        c = parse_nifc_feature(_make_incident(uid=None))
        assert c.source_event_id == "nifc:42"

    def test_missing_geometry_skipped(self):
        feature = _make_incident()
        feature["geometry"] = {"x": None, "y": 38.0}
        assert parse_nifc_feature(feature) is None

    def test_zero_coordinate_is_valid(self):
        assert parse_nifc_feature(_make_incident(x=0.0)) is not None

    def test_out_of_range_geometry_skipped(self):
        assert parse_nifc_feature(_make_incident(y=95.0)) is None
        assert parse_nifc_feature(_make_incident(x=float("nan"))) is None

    def test_numeric_string_size_is_coerced(self):
        assert parse_nifc_feature(_make_incident(acres="1200")).severity == 0.6

    def test_unreadable_size_skipped(self):
        assert parse_nifc_feature(_make_incident(acres="unknown")) is None

    @pytest.mark.parametrize("county, state, place", [
        (None, None, ""),
        ("Tuolumne", None, "Tuolumne"),
        (None, "US-CA", "US-CA"),
    ])
    def test_place_omits_missing_parts(self, county, state, place):
        c = parse_nifc_feature(_make_incident(POOCounty=county, POOState=state))
        assert c.attributes["place"] == place


# ═══════════════════════════════════════════════════════════════════════════
# Adapter
# ═══════════════════════════════════════════════════════════════════════════

class TestWildfireAdapter:

    async def test_single_large_fire(self, store, feed_client_factory):
        result = await _make_adapter(
            store, feed_client_factory, {"features": [_make_incident()]},
        ).run()

        assert result.ok and result.count == 1
        hazards = await store.hazards_since(EPOCH)
        assert len(hazards) == 1
        assert hazards[0].severity == 0.9
        assert (hazards[0].lat, hazards[0].lon) == (38.0, -120.0)

    async def test_query_parameters(self, store, feed_client_factory):
        seen = []
        await _make_adapter(store, feed_client_factory, {"features": []}, seen=seen).run()
        params = seen[0].url.params
        assert params["where"] == "1=1"
        assert params["f"] == "json"
        assert params["resultRecordCount"] == "500"
        assert params["orderByFields"] == "FireDiscoveryDateTime DESC"
        assert "UniqueFireIdentifier" in params["outFields"]

    async def test_batches_cover_every_record(self, store, feed_client_factory):
        features = [_make_incident(uid=f"fire-{i}") for i in range(7)]
        result = await _make_adapter(
            store, feed_client_factory, {"features": features}, batch_size=3,
        ).run()
        assert result.count == 7
        assert await store.count_hazards() == 7

    async def test_arcgis_error_body_is_fetch_failure(self, store, feed_client_factory):
        payload = {"error": {"code": 400, "message": "Invalid query"}}
        result = await _make_adapter(store, feed_client_factory, payload).run()
        assert not result.ok
        assert result.error_kind is ErrorKind.FETCH
        assert "Invalid query" in result.error_message

    async def test_feature_without_geometry_skipped(self, store, feed_client_factory):
        broken = _make_incident(uid="b")
        del broken["geometry"]
        result = await _make_adapter(
            store, feed_client_factory, {"features": [_make_incident(), broken]},
        ).run()
        assert result.ok
        assert result.count == 1
        assert result.skipped == 1

    async def test_bad_size_skips_only_that_incident(self, store, feed_client_factory):
        features = [_make_incident(uid="good"), _make_incident(uid="bad", acres="n/a")]
        result = await _make_adapter(store, feed_client_factory, {"features": features}).run()

        assert result.ok
        assert (result.count, result.skipped) == (1, 1)
        assert (await store.get_hazard_by_source("NIFC", "good")).severity == 0.9

    async def test_batches_bound_concurrent_writes(self, tracking_store, feed_client_factory):
        features = [_make_incident(uid=f"fire-{i}") for i in range(12)]
        result = await _make_adapter(
            tracking_store, feed_client_factory, {"features": features}, batch_size=5,
        ).run()

        assert result.count == 12
        assert tracking_store.peak == 5

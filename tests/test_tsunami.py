"""
test_tsunami.py — Atom bulletin parsing and the tsunami adapter.

Run with:
    pytest tests/test_tsunami.py -v
"""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from guardian.app.core.errors import FeedParseError
from guardian.app.core.results import ErrorKind
from guardian.app.hazards.models import HazardType
from guardian.app.ingestion.atom import parse_atom_bulletins, parse_point, strip_tags
from guardian.app.ingestion.tsunami import (
    TsunamiAdapter,
    bulletin_to_candidate,
    tsunami_severity,
)

from conftest import NOW

NTWC_URL = "https://tsunami.test/PAAQAtom.xml"
PTWC_URL = "https://tsunami.test/PHEBAtom.xml"


def _make_entry(entry_id, title, point="23.8 121.6", updated="2026-10-17T11:30:00Z"):
    point_el = f"<georss:point>{point}</georss:point>" if point else ""
    return f"""
  <entry>
    <id>{entry_id}</id>
    <title>{title}</title>
    <updated>{updated}</updated>
    <summary type="html">&lt;p&gt;Magnitude 7.4 &lt;b&gt;offshore&lt;/b&gt;&lt;/p&gt;</summary>
    {point_el}
  </entry>"""


def _make_feed(*entries):
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<feed xmlns="http://www.w3.org/2005/Atom" '
        'xmlns:georss="http://www.georss.org/georss">\n'
        "  <title>NTWC bulletins</title>"
        + "".join(entries)
        + "\n</feed>"
    )


# ═══════════════════════════════════════════════════════════════════════════
# Severity
# ═══════════════════════════════════════════════════════════════════════════

class TestTsunamiSeverity:

    @pytest.mark.parametrize("title, expected", [
        ("Tsunami Warning for Hawaii", 0.9),
        ("Tsunami Warning Number 3", 0.9),
        ("Tsunami ADVISORY", 0.6),
        ("Tsunami Watch", 0.4),
        ("Tsunami Information Statement", 0.2),
        ("Information Statement", 0.2),
        ("Advisory", 0.6),
        ("Watch", 0.4),
        ("Test message", 0.3),
        ("Warning and Advisory cancellation", 0.9),
    ])
    def test_keywords(self, title, expected):
        assert tsunami_severity(title) == expected


# ═══════════════════════════════════════════════════════════════════════════
# Atom parsing
# ═══════════════════════════════════════════════════════════════════════════

class TestAtomParsing:

    def test_namespaced_entries(self):
        xml = _make_feed(
            _make_entry("urn:a", "Tsunami Warning"),
            _make_entry("urn:b", "Tsunami Information Statement", point=None),
        )
        entries = parse_atom_bulletins(xml, source="NOAA NTWC", now=NOW)

        assert [e.id for e in entries] == ["urn:a", "urn:b"]
        first = entries[0]
        assert (first.lat, first.lon) == (23.8, 121.6)
        assert first.updated == datetime(2026, 10, 17, 11, 30, tzinfo=timezone.utc)
        assert first.summary == "Magnitude 7.4 offshore"
        assert not entries[1].has_point

    def test_unreadable_updated_falls_back_to_now(self):
        xml = _make_feed(_make_entry("urn:a", "Tsunami Watch", updated="yesterday"))
        assert parse_atom_bulletins(xml, now=NOW)[0].updated == NOW

    def test_entry_without_title_dropped(self):
        xml = _make_feed(_make_entry("urn:a", ""))
        assert parse_atom_bulletins(xml, now=NOW) == []

    def test_malformed_xml_raises(self):
        with pytest.raises(FeedParseError):
            parse_atom_bulletins("<feed><entry>", source="NOAA NTWC")

    def test_point_and_tags(self):
        assert parse_point("19.5 -155.2") == (19.5, -155.2)
        assert parse_point("19.5") == (None, None)
        assert parse_point("north south") == (None, None)
        assert strip_tags("<p>Hello <b>there</b></p>") == "Hello there"

    @pytest.mark.parametrize("point", ["NaN NaN", "95.0 121.6", "23.8 200.0", "inf 0"])
    def test_unusable_point_is_missing(self, point):
        entry = parse_atom_bulletins(
            _make_feed(_make_entry("urn:a", "Tsunami Warning", point=point)), now=NOW,
        )[0]
        assert not entry.has_point
        assert bulletin_to_candidate(entry, "NOAA NTWC") is None


class TestBulletinToCandidate:

    def test_candidate_fields(self):
        entry = parse_atom_bulletins(
            _make_feed(_make_entry("urn:a", "Tsunami Advisory")), now=NOW,
        )[0]
        c = bulletin_to_candidate(entry, "NOAA PTWC")
        assert c.type is HazardType.TSUNAMI
        assert c.source == "NOAA PTWC"
        assert c.source_event_id == "urn:a"
        assert c.severity == 0.6
        assert c.attributes["url"] == "urn:a"

    def test_entry_without_point_skipped(self):
        entry = parse_atom_bulletins(
            _make_feed(_make_entry("urn:a", "Tsunami Advisory", point=None)), now=NOW,
        )[0]
        assert bulletin_to_candidate(entry, "NOAA PTWC") is None


# ═══════════════════════════════════════════════════════════════════════════
# Adapter
# ═══════════════════════════════════════════════════════════════════════════

def _make_adapter(store, feed_client_factory, responses):
    def handler(request):
        return responses[str(request.url)]
    return TsunamiAdapter(
        store, feed_client_factory(handler, max_retries=0),
        feeds=[("NOAA NTWC", NTWC_URL), ("NOAA PTWC", PTWC_URL)],
    )


class TestTsunamiAdapter:

    async def test_both_feeds_ingested(self, store, feed_client_factory):
        adapter = _make_adapter(store, feed_client_factory, {
            NTWC_URL: httpx.Response(200, text=_make_feed(_make_entry("urn:a", "Tsunami Warning"))),
            PTWC_URL: httpx.Response(200, text=_make_feed(
                _make_entry("urn:b", "Tsunami Watch"),
                _make_entry("urn:c", "Tsunami Information Statement", point=None),
            )),
        })
        result = await adapter.run()

        assert result.ok
        assert result.count == 2
        assert result.skipped == 1
        assert (await store.get_hazard_by_source("NOAA NTWC", "urn:a")).severity == 0.9

    async def test_one_failing_feed_is_a_warning(self, store, feed_client_factory):
        adapter = _make_adapter(store, feed_client_factory, {
            NTWC_URL: httpx.Response(200, text="<feed><entry>"),
            PTWC_URL: httpx.Response(200, text=_make_feed(_make_entry("urn:b", "Tsunami Watch"))),
        })
        result = await adapter.run()

        assert result.ok
        assert result.count == 1
        assert len(result.warnings) == 1
        assert result.warnings[0].startswith("NOAA NTWC")

    async def test_every_feed_failing_fails_the_run(self, store, feed_client_factory):
        adapter = _make_adapter(store, feed_client_factory, {
            NTWC_URL: httpx.Response(502),
            PTWC_URL: httpx.Response(503),
        })
        result = await adapter.run()

        assert not result.ok
        assert result.error_kind is ErrorKind.FETCH
        assert await store.count_hazards() == 0

    async def test_bulletin_with_nan_point_not_stored(self, store, feed_client_factory):
        adapter = _make_adapter(store, feed_client_factory, {
            NTWC_URL: httpx.Response(200, text=_make_feed(
                _make_entry("urn:bad", "Tsunami Warning", point="NaN NaN"),
                _make_entry("urn:good", "Tsunami Advisory"),
            )),
            PTWC_URL: httpx.Response(200, text=_make_feed()),
        })
        result = await adapter.run()

        assert result.ok
        assert (result.count, result.skipped) == (1, 1)
        assert await store.get_hazard_by_source("NOAA NTWC", "urn:bad") is None
        assert await store.count_hazards() == 1

    async def test_large_feed_written_in_bounded_batches(self, tracking_store, feed_client_factory):
        entries = [_make_entry(f"urn:{i}", "Tsunami Watch") for i in range(45)]
        adapter = TsunamiAdapter(
            tracking_store,
            feed_client_factory(lambda request: httpx.Response(200, text=_make_feed(*entries))),
            feeds=[("NOAA NTWC", NTWC_URL)],
            batch_size=10,
        )
        result = await adapter.run()

        assert result.count == 45
        assert tracking_store.peak == 10

"""
test_radius_utils.py — Great-circle distance, bounding boxes and rounding.

Run with:
    pytest tests/test_radius_utils.py -v
"""

from __future__ import annotations

import pytest

from guardian.app.spatial.radius_utils import (
    Coordinate,
    bounding_box,
    destination,
    distance_km,
    format_distance,
    haversine,
    inside_bbox,
    round_half_up,
)


# ═══════════════════════════════════════════════════════════════════════════
# Haversine
# ═══════════════════════════════════════════════════════════════════════════

class TestHaversine:
    """Known distances and symmetry."""

    def test_same_point_is_zero(self):
        p = Coordinate(40.0, -74.0)
        assert haversine(p, p) == 0.0

    def test_one_degree_longitude_at_equator(self):
        assert haversine(Coordinate(0, 0), Coordinate(0, 1)) == pytest.approx(111.19, abs=0.01)

    def test_new_york_to_london(self):
        d = distance_km(40.7128, -74.0060, 51.5074, -0.1278)
        assert d == pytest.approx(5570, rel=0.01)

    def test_symmetric(self):
        a, b = Coordinate(13.08, 80.27), Coordinate(12.97, 77.59)
        assert haversine(a, b) == pytest.approx(haversine(b, a))

    def test_antipodal_points_do_not_fail(self):
        d = distance_km(0, 0, 0, 180)
        assert d == pytest.approx(20015.1, rel=1e-3)

    def test_invalid_latitude_rejected(self):
        with pytest.raises(ValueError):
            Coordinate(91.0, 0.0)

    @pytest.mark.parametrize("lat, lon, valid", [
        (90.0, 180.0, True),
        (-90.0, -180.0, True),
        (95.0, 10.0, False),
        (10.0, 200.0, False),
        (float("nan"), 0.0, False),
        (0.0, float("inf"), False),
        (None, 0.0, False),
    ])
    def test_is_valid(self, lat, lon, valid):
        assert Coordinate.is_valid(lat, lon) is valid


# ═══════════════════════════════════════════════════════════════════════════
# Destination + bounding box
# ═══════════════════════════════════════════════════════════════════════════

class TestDestination:

    @pytest.mark.parametrize("bearing", [0, 45, 90, 180, 270])
    def test_destination_distance_round_trips(self, bearing):
        origin = Coordinate(40.0, -74.0)
        target = destination(origin, 3.0, bearing)
        assert haversine(origin, target) == pytest.approx(3.0, abs=1e-6)

    def test_wraps_longitude(self):
        target = destination(Coordinate(0.0, 179.9), 50.0, 90)
        assert -180.0 <= target.longitude <= 180.0
        assert target.longitude < 0


class TestBoundingBox:
    """The pre-filter must never reject a point that is truly inside."""

    @pytest.mark.parametrize("lat", [0.0, 45.0, 60.0, 75.0])
    @pytest.mark.parametrize("bearing", [0, 60, 90, 120, 180, 270])
    def test_points_on_circle_are_inside_box(self, lat, bearing):
        center = Coordinate(lat, 10.0)
        box = bounding_box(center, 500.0)
        edge = destination(center, 500.0, bearing)
        assert inside_bbox(edge.latitude, edge.longitude, box)

    def test_far_point_rejected(self):
        box = bounding_box(Coordinate(40.0, -74.0), 50.0)
        assert not inside_bbox(51.5, -0.13, box)

    def test_antimeridian_widens_to_full_longitude(self):
        _, _, min_lon, max_lon = bounding_box(Coordinate(0.0, 179.5), 200.0)
        assert (min_lon, max_lon) == (-180.0, 180.0)

    def test_polar_circle_widens_to_full_longitude(self):
        _, max_lat, min_lon, max_lon = bounding_box(Coordinate(89.5, 0.0), 100.0)
        assert max_lat == 90.0
        assert (min_lon, max_lon) == (-180.0, 180.0)


# ═══════════════════════════════════════════════════════════════════════════
# Rounding / formatting
# ═══════════════════════════════════════════════════════════════════════════

class TestRounding:

    @pytest.mark.parametrize("value, expected", [
        (2.5, 3.0), (3.5, 4.0), (2.4999, 2.0), (-2.5, -3.0), (0.0, 0.0),
    ])
    def test_half_away_from_zero(self, value, expected):
        assert round_half_up(value) == expected

    def test_one_decimal(self):
        assert round_half_up(2.75, 1) == 2.8
        assert round_half_up(3.04, 1) == 3.0

    def test_format_distance(self):
        assert format_distance(0.45) == "450 m"
        assert format_distance(3.7266) == "3.73 km"

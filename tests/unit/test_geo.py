"""Tests for haversine distance."""

import pytest

from civictrack.core.geo import haversine_km


class TestHaversine:
    def test_same_point_is_zero(self):
        assert haversine_km(10.0, 10.0, 10.0, 10.0) == 0.0

    def test_small_offset(self):
        # 0.01 degrees on each axis at latitude 10 is about 1.56 km
        d = haversine_km(10.0, 10.0, 10.01, 10.01)
        assert 1.4 < d < 1.7

    def test_symmetric(self):
        a = haversine_km(40.7128, -74.0060, 51.5074, -0.1278)
        b = haversine_km(51.5074, -0.1278, 40.7128, -74.0060)
        assert a == pytest.approx(b)

    def test_new_york_to_london(self):
        assert haversine_km(40.7128, -74.0060, 51.5074, -0.1278) == pytest.approx(5570, rel=0.01)

    def test_one_degree_latitude(self):
        assert haversine_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(111.19, rel=0.001)

    def test_antimeridian(self):
        assert haversine_km(0.0, 179.5, 0.0, -179.5) == pytest.approx(111.19, rel=0.001)

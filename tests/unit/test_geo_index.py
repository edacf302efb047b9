"""
Unit tests for the geospatial index
"""

import threading

import pytest

from rescuelink.models.sos import GeoPoint
from rescuelink.services.sos.geo_index import EARTH_RADIUS_KM, GeoIndex, distance_km
from tests.base import BASE_POINT, offset_km


class TestDistance:
    """Test haversine distance"""

    def test_same_point_is_zero(self):
        assert distance_km(BASE_POINT, BASE_POINT) == pytest.approx(0.0, abs=1e-9)

    def test_one_degree_of_latitude(self):
        a = GeoPoint(0.0, 0.0)
        b = GeoPoint(1.0, 0.0)
        assert distance_km(a, b) == pytest.approx(111.195, rel=1e-4)

    def test_antipodal_points(self):
        a = GeoPoint(0.0, 0.0)
        b = GeoPoint(0.0, 180.0)
        assert distance_km(a, b) == pytest.approx(EARTH_RADIUS_KM * 3.141592653589793, rel=1e-9)

    def test_known_city_pair(self):
        colombo = GeoPoint(6.9271, 79.8612)
        kandy = GeoPoint(7.2906, 80.6337)
        assert distance_km(colombo, kandy) == pytest.approx(94.3, abs=1.0)

    def test_symmetric(self):
        other = offset_km(BASE_POINT, 3, -4)
        assert distance_km(BASE_POINT, other) == pytest.approx(distance_km(other, BASE_POINT))


class TestGeoIndex:
    """Test radius queries"""

    def setup_method(self):
        self.index = GeoIndex("test")

    def test_nearby_returns_points_inside_radius(self):
        self.index.upsert("near", offset_km(BASE_POINT, 1))
        self.index.upsert("far", offset_km(BASE_POINT, 20))

        assert self.index.nearby(BASE_POINT, 5) == {"near"}

    def test_boundary_is_inclusive(self):
        point = offset_km(BASE_POINT, 2)
        exact = distance_km(BASE_POINT, point)
        self.index.upsert("edge", point)

        assert "edge" in self.index.nearby(BASE_POINT, exact)

    def test_zero_radius_matches_same_point(self):
        self.index.upsert("here", BASE_POINT)
        assert self.index.nearby(BASE_POINT, 0) == {"here"}

    def test_negative_radius_matches_nothing(self):
        self.index.upsert("here", BASE_POINT)
        assert self.index.nearby(BASE_POINT, -1) == set()

    def test_nearest_sorted_by_distance(self):
        self.index.upsert("three", offset_km(BASE_POINT, 3))
        self.index.upsert("one", offset_km(BASE_POINT, 1))
        self.index.upsert("two", offset_km(BASE_POINT, 0, 2))

        ids = [entity_id for entity_id, _ in self.index.nearest(BASE_POINT, 10)]
        assert ids == ["one", "two", "three"]

    def test_upsert_moves_entity(self):
        self.index.upsert("mover", offset_km(BASE_POINT, 50))
        assert self.index.nearby(BASE_POINT, 5) == set()

        self.index.upsert("mover", offset_km(BASE_POINT, 1))
        assert self.index.nearby(BASE_POINT, 5) == {"mover"}
        assert len(self.index) == 1

    def test_remove(self):
        self.index.upsert("gone", BASE_POINT)
        self.index.remove("gone")
        self.index.remove("never-there")

        assert "gone" not in self.index
        assert self.index.get("gone") is None

    def test_concurrent_upserts(self):
        def worker(prefix):
            for i in range(200):
                self.index.upsert(f"{prefix}-{i}", offset_km(BASE_POINT, i * 0.01))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(self.index) == 800


class TestGeoPoint:
    def test_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            GeoPoint(91.0, 0.0)
        with pytest.raises(ValueError):
            GeoPoint(0.0, -181.0)

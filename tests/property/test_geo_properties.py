"""
Property-based tests for distance and radius queries
"""

from hypothesis import assume, given, settings, strategies as st

from rescuelink.models.sos import GeoPoint
from rescuelink.services.sos.geo_index import EARTH_RADIUS_KM, GeoIndex, distance_km


points = st.builds(
    GeoPoint,
    st.floats(min_value=-89.0, max_value=89.0, allow_nan=False),
    st.floats(min_value=-179.0, max_value=179.0, allow_nan=False)
)

# Points within a few hundred km of each other
local_points = st.builds(
    GeoPoint,
    st.floats(min_value=5.0, max_value=9.0),
    st.floats(min_value=78.0, max_value=82.0)
)


class TestDistanceProperties:
    @settings(max_examples=200, deadline=None)
    @given(a=points, b=points)
    def test_symmetric_and_bounded(self, a, b):
        d = distance_km(a, b)
        assert 0.0 <= d <= EARTH_RADIUS_KM * 3.141592653589793 + 1e-6
        assert abs(d - distance_km(b, a)) < 1e-6

    @settings(max_examples=100, deadline=None)
    @given(a=points)
    def test_zero_to_self(self, a):
        assert distance_km(a, a) < 1e-6

    @settings(max_examples=100, deadline=None)
    @given(a=local_points, b=local_points, c=local_points)
    def test_triangle_inequality(self, a, b, c):
        assert distance_km(a, c) <= distance_km(a, b) + distance_km(b, c) + 1e-6


class TestGeoIndexProperties:
    @settings(max_examples=100, deadline=None)
    @given(center=local_points, others=st.lists(local_points, max_size=20),
           radius=st.floats(min_value=0.0, max_value=300.0))
    def test_nearby_matches_brute_force(self, center, others, radius):
        index = GeoIndex("property")
        for n, point in enumerate(others):
            index.upsert(f"e-{n}", point)

        expected = {f"e-{n}" for n, point in enumerate(others) if distance_km(center, point) <= radius}
        assert index.nearby(center, radius) == expected

        distances = [distance for _, distance in index.nearest(center, radius)]
        assert distances == sorted(distances)

    @settings(max_examples=100, deadline=None)
    @given(center=local_points, point=local_points)
    def test_boundary_inclusive(self, center, point):
        exact = distance_km(center, point)
        assume(exact > 0)

        index = GeoIndex("boundary")
        index.upsert("edge", point)

        assert "edge" in index.nearby(center, exact)

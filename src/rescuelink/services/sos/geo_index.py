"""
Geospatial index for signals and responders

Keeps the latest known position of each entity in memory and answers
radius queries with great-circle distances.
"""

import math
import threading
from typing import Dict, Iterable, List, Optional, Set, Tuple

from rescuelink.models.sos import GeoPoint


EARTH_RADIUS_KM = 6371.0


def distance_km(a: GeoPoint, b: GeoPoint) -> float:
    """Haversine distance between two points in kilometres"""
    lat1, lng1 = math.radians(a.lat), math.radians(a.lng)
    lat2, lng2 = math.radians(b.lat), math.radians(b.lng)
    dlat = lat2 - lat1
    dlng = lng2 - lng1

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    # Rounding can push h a hair past 1 for antipodal points
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


class GeoIndex:
    """Thread-safe in-memory position index"""

    def __init__(self, name: str = "geo", entries: Optional[Iterable[Tuple[str, GeoPoint]]] = None):
        self.name = name
        self._points: Dict[str, GeoPoint] = {}
        self._lock = threading.Lock()

        for entity_id, point in entries or ():
            self._points[entity_id] = point

    def __len__(self) -> int:
        with self._lock:
            return len(self._points)

    def __contains__(self, entity_id: str) -> bool:
        with self._lock:
            return entity_id in self._points

    def upsert(self, entity_id: str, point: GeoPoint) -> None:
        """Insert or move an entity"""
        with self._lock:
            self._points[entity_id] = point

    def remove(self, entity_id: str) -> None:
        """Drop an entity; unknown ids are ignored"""
        with self._lock:
            self._points.pop(entity_id, None)

    def get(self, entity_id: str) -> Optional[GeoPoint]:
        with self._lock:
            return self._points.get(entity_id)

    def nearest(self, point: GeoPoint, radius_km: float) -> List[Tuple[str, float]]:
        """
        Find entities within ``radius_km`` of ``point``

        Returns (id, distance) pairs, closest first. The boundary is
        inclusive and a negative radius matches nothing.
        """
        if radius_km < 0:
            return []

        with self._lock:
            snapshot = list(self._points.items())

        matches = []
        for entity_id, position in snapshot:
            distance = distance_km(point, position)
            if distance <= radius_km:
                matches.append((entity_id, distance))

        matches.sort(key=lambda item: (item[1], item[0]))
        return matches

    def nearby(self, point: GeoPoint, radius_km: float) -> Set[str]:
        """Ids of entities within ``radius_km`` of ``point``"""
        return {entity_id for entity_id, _ in self.nearest(point, radius_km)}

    def clear(self) -> None:
        with self._lock:
            self._points.clear()

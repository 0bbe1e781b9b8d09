"""
Grid-based spatial clustering of visible aircraft.

Below the bypass zoom, aircraft are bucketed into square grid cells whose
size halves with every zoom level. At or above it, every aircraft is its
own cluster.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from contracts.constants import CLUSTER_BASE_GRID_DEGREES, CLUSTER_BYPASS_MIN_ZOOM
from contracts.validation import AircraftState


@dataclass
class Cluster:
    """
    Renderable group of aircraft for one recompute cycle.

    Cluster ids are only meaningful within the cycle that produced them.
    """
    id: str
    count: int = 0
    center: Tuple[float, float] = (0.0, 0.0)
    members: List[AircraftState] = field(default_factory=list)

    def add(self, flight: AircraftState, lat: float, lng: float):
        """Add a member and fold its position into the running centroid."""
        self.count += 1
        n = self.count
        center_lat, center_lng = self.center
        self.center = (
            (center_lat * (n - 1) + lat) / n,
            (center_lng * (n - 1) + lng) / n,
        )
        self.members.append(flight)

    @property
    def is_singleton(self) -> bool:
        """Single-member clusters render as the aircraft itself."""
        return self.count == 1


def should_bypass(zoom: int) -> bool:
    return zoom >= CLUSTER_BYPASS_MIN_ZOOM


def grid_size_for_zoom(zoom: int) -> float:
    """Cell edge in degrees: 2 / 2^zoom."""
    return CLUSTER_BASE_GRID_DEGREES / (2 ** zoom)


def cell_key(lat: float, lng: float, grid_size: float) -> str:
    return f"{math.floor(lat / grid_size)}:{math.floor(lng / grid_size)}"


def cluster_flights(visible: Iterable[AircraftState], zoom: int) -> List[Cluster]:
    """
    Group visible aircraft into clusters for the given zoom.

    Aircraft without a resolvable position are skipped. Output order follows
    the first member of each cluster.
    """
    if should_bypass(zoom):
        singles = []
        for flight in visible:
            coords = flight.coordinates
            if coords is None:
                continue
            cluster = Cluster(id=flight.id)
            cluster.add(flight, *coords)
            singles.append(cluster)
        return singles

    grid_size = grid_size_for_zoom(zoom)
    clusters: Dict[str, Cluster] = {}
    for flight in visible:
        coords = flight.coordinates
        if coords is None:
            continue
        lat, lng = coords
        key = cell_key(lat, lng, grid_size)
        cluster = clusters.get(key)
        if cluster is None:
            cluster = clusters[key] = Cluster(id=key)
        cluster.add(flight, lat, lng)

    return list(clusters.values())

"""
Visibility filter: which known aircraft fall inside the viewport.
"""

from typing import Iterable, List, Optional

from shapely.geometry import Point
from shapely.strtree import STRtree

from contracts.validation import AircraftState
from tracker.viewport import Bounds


def filter_visible(flights: Iterable[AircraftState], bounds: Optional[Bounds]) -> List[AircraftState]:
    """
    Return the aircraft whose position lies within bounds (edges inclusive).

    Aircraft without a resolvable position are left out. Input order is
    preserved. With no bounds yet, nothing is visible.
    """
    if bounds is None:
        return []

    positioned = []
    points = []
    for flight in flights:
        coords = flight.coordinates
        if coords is None:
            continue
        lat, lng = coords
        positioned.append(flight)
        points.append(Point(lng, lat))

    if not points:
        return []

    if bounds.south == bounds.north or bounds.west == bounds.east:
        # Zero-area viewport has no polygon to index against
        return [f for f in positioned if bounds.contains(*f.coordinates)]

    tree = STRtree(points)
    hits = tree.query(bounds.to_geometry(), predicate="covers")
    return [positioned[int(i)] for i in sorted(hits)]

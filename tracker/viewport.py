"""
Viewport tracking for the live map.

Holds the settled bounds and zoom of the rendered map and notifies
subscribers once per settle event.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional, Tuple

from shapely.geometry import MultiPoint, Polygon, box

from contracts.constants import (
    DETAIL_HIGH_MIN_ZOOM,
    DETAIL_MEDIUM_MIN_ZOOM,
    DETAIL_LEVEL_HIGH,
    DETAIL_LEVEL_MEDIUM,
    DETAIL_LEVEL_LOW,
)

logger = logging.getLogger(__name__)


class DetailLevel(str, Enum):
    HIGH = DETAIL_LEVEL_HIGH
    MEDIUM = DETAIL_LEVEL_MEDIUM
    LOW = DETAIL_LEVEL_LOW


def detail_level_for_zoom(zoom: int) -> DetailLevel:
    """Map a zoom level to the rendering detail level."""
    if zoom >= DETAIL_HIGH_MIN_ZOOM:
        return DetailLevel.HIGH
    if zoom >= DETAIL_MEDIUM_MIN_ZOOM:
        return DetailLevel.MEDIUM
    return DetailLevel.LOW


@dataclass(frozen=True)
class Bounds:
    """Geographic rectangle, inclusive on every edge."""
    south: float
    west: float
    north: float
    east: float

    def __post_init__(self):
        if self.south > self.north:
            raise ValueError(f"south ({self.south}) must not exceed north ({self.north})")
        if self.west > self.east:
            raise ValueError(f"west ({self.west}) must not exceed east ({self.east})")

    @classmethod
    def from_corners(cls, corner_a: Tuple[float, float], corner_b: Tuple[float, float]) -> "Bounds":
        """Build bounds from two (lat, lng) corners in any order."""
        (lat_a, lng_a), (lat_b, lng_b) = corner_a, corner_b
        return cls(
            south=min(lat_a, lat_b),
            west=min(lng_a, lng_b),
            north=max(lat_a, lat_b),
            east=max(lng_a, lng_b),
        )

    @classmethod
    def around(cls, points: Iterable[Tuple[float, float]]) -> Optional["Bounds"]:
        """Smallest bounds containing every (lat, lng) point, or None if empty."""
        coords = [(lng, lat) for lat, lng in points]
        if not coords:
            return None
        min_x, min_y, max_x, max_y = MultiPoint(coords).bounds
        return cls(south=min_y, west=min_x, north=max_y, east=max_x)

    def contains(self, lat: float, lng: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lng <= self.east

    def pad(self, ratio: float) -> "Bounds":
        """Extend each side by `ratio` of the span (Leaflet LatLngBounds.pad)."""
        lat_buffer = (self.north - self.south) * ratio
        lng_buffer = (self.east - self.west) * ratio
        return Bounds(
            south=self.south - lat_buffer,
            west=self.west - lng_buffer,
            north=self.north + lat_buffer,
            east=self.east + lng_buffer,
        )

    def to_geometry(self) -> Polygon:
        """Shapely polygon in (lng, lat) axis order."""
        return box(self.west, self.south, self.east, self.north)


@dataclass(frozen=True)
class ViewportState:
    bounds: Bounds
    zoom: int
    detail_level: DetailLevel


ViewportListener = Callable[[ViewportState], None]


class ViewportTracker:
    """
    Owner of the current ViewportState.

    on_viewport_settled() is called by the map when a pan/zoom gesture
    completes. Each settle notifies subscribers exactly once, in
    subscription order. A settle raised from inside a subscriber is queued
    and processed after the current one finishes.
    """

    def __init__(self):
        self._state: Optional[ViewportState] = None
        self._listeners: List[ViewportListener] = []
        self._pending: List[ViewportState] = []
        self._dispatching = False
        self.settle_count = 0

    @property
    def state(self) -> Optional[ViewportState]:
        return self._state

    def subscribe(self, listener: ViewportListener):
        self._listeners.append(listener)

    def on_viewport_settled(self, bounds: Bounds, zoom: int) -> ViewportState:
        zoom = int(zoom)
        state = ViewportState(bounds=bounds, zoom=zoom, detail_level=detail_level_for_zoom(zoom))
        self._pending.append(state)

        if self._dispatching:
            logger.debug("Viewport settle queued behind in-flight recompute")
            return state

        self._dispatching = True
        try:
            while self._pending:
                current = self._pending.pop(0)
                self._state = current
                self.settle_count += 1
                for listener in self._listeners:
                    listener(current)
        finally:
            self._dispatching = False
        return state

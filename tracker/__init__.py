"""
SkyTrack tracker: live-data synchronization and view reduction for the map.
"""

from tracker.client import LiveFlightClient, Notice
from tracker.clustering import Cluster, cluster_flights
from tracker.session import TransportSession
from tracker.store import FlightStore
from tracker.view import ClickAction, LiveMapView, ViewFrame
from tracker.viewport import Bounds, DetailLevel, ViewportTracker, detail_level_for_zoom
from tracker.visibility import filter_visible

__all__ = [
    "LiveFlightClient",
    "Notice",
    "Cluster",
    "cluster_flights",
    "TransportSession",
    "FlightStore",
    "ClickAction",
    "LiveMapView",
    "ViewFrame",
    "Bounds",
    "DetailLevel",
    "ViewportTracker",
    "detail_level_for_zoom",
    "filter_visible",
]

"""
View composition for the live map.

LiveMapView reduces the flight store to what the map should draw for the
current viewport. It recomputes on every viewport settle and on every
store change, and handles cluster clicks.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from contracts.constants import CLUSTER_FIT_PADDING, CLUSTER_SELECT_MAX_COUNT
from contracts.validation import AircraftState
from tracker.clustering import Cluster, cluster_flights
from tracker.metrics import CLUSTERS_RENDERED, RECOMPUTE_LATENCY
from tracker.store import FlightStore
from tracker.viewport import Bounds, DetailLevel, ViewportState, ViewportTracker
from tracker.visibility import filter_visible

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ViewFrame:
    """Everything the map needs to render one recompute cycle."""
    sequence: int
    viewport: Optional[ViewportState]
    visible: List[AircraftState] = field(default_factory=list)
    clusters: List[Cluster] = field(default_factory=list)
    expanded_cluster_id: Optional[str] = None

    @property
    def detail_level(self) -> Optional[DetailLevel]:
        return self.viewport.detail_level if self.viewport else None

    @property
    def cluster_markers(self) -> List[Cluster]:
        """Multi-member clusters drawn as cluster markers (below high detail)."""
        if self.detail_level is DetailLevel.HIGH:
            return []
        return [c for c in self.clusters if not c.is_singleton]

    @property
    def individual_markers(self) -> List[AircraftState]:
        """Aircraft drawn as individual markers."""
        if self.viewport is None:
            return []
        if self.detail_level is DetailLevel.HIGH:
            return list(self.visible)

        markers = []
        for cluster in self.clusters:
            if cluster.is_singleton or cluster.id == self.expanded_cluster_id:
                markers.extend(cluster.members)
        return markers


class ClickAction(str, Enum):
    SELECT = "select"
    EXPAND = "expand"
    COLLAPSE = "collapse"
    FIT_BOUNDS = "fit_bounds"


@dataclass(frozen=True)
class ClickOutcome:
    action: ClickAction
    cluster_id: str
    flight: Optional[AircraftState] = None
    bounds: Optional[Bounds] = None


class LiveMapView:
    """
    Composes store, viewport, visibility filter and clustering.

    `fly_to_bounds` is the map's animated fit; the map reports the resulting
    settle back through ViewportTracker.on_viewport_settled, which triggers
    the next recompute.
    """

    def __init__(
        self,
        store: FlightStore,
        viewport: ViewportTracker,
        fly_to_bounds: Optional[Callable[[Bounds], None]] = None,
        on_select: Optional[Callable[[AircraftState], None]] = None,
    ):
        self.store = store
        self.viewport = viewport
        self.fly_to_bounds = fly_to_bounds
        self.on_select = on_select
        self.selected_flight_id: Optional[str] = None
        self.expanded_cluster_id: Optional[str] = None
        self._frame = ViewFrame(sequence=0, viewport=None)
        self._frame_listeners: List[Callable[[ViewFrame], None]] = []
        viewport.subscribe(self._on_viewport_settled)

    @property
    def frame(self) -> ViewFrame:
        return self._frame

    def subscribe(self, listener: Callable[[ViewFrame], None]):
        self._frame_listeners.append(listener)

    def _on_viewport_settled(self, state: ViewportState):
        # Grid keys from the previous viewport mean nothing now
        self.expanded_cluster_id = None
        self.recompute()

    def recompute(self) -> ViewFrame:
        """Run visibility then clustering against the current store snapshot."""
        start = time.perf_counter()
        state = self.viewport.state

        if state is None:
            frame = ViewFrame(sequence=self._frame.sequence + 1, viewport=None)
        else:
            visible = filter_visible(self.store.snapshot(), state.bounds)
            clusters = cluster_flights(visible, state.zoom)
            expanded = self.expanded_cluster_id
            if expanded is not None and not any(c.id == expanded for c in clusters):
                expanded = self.expanded_cluster_id = None
            frame = ViewFrame(
                sequence=self._frame.sequence + 1,
                viewport=state,
                visible=visible,
                clusters=clusters,
                expanded_cluster_id=expanded,
            )

        RECOMPUTE_LATENCY.observe(time.perf_counter() - start)
        CLUSTERS_RENDERED.set(len(frame.clusters))
        self._frame = frame
        for listener in self._frame_listeners:
            listener(frame)
        return frame

    def find_cluster(self, cluster_id: str) -> Optional[Cluster]:
        for cluster in self._frame.clusters:
            if cluster.id == cluster_id:
                return cluster
        return None

    def select_flight(self, flight: AircraftState):
        self.selected_flight_id = flight.id
        if self.on_select:
            self.on_select(flight)

    def click_cluster(self, cluster_id: str) -> Optional[ClickOutcome]:
        """
        Handle a click on a cluster from the current frame.

        - up to 3 members: select the first member
        - more, at high detail: toggle the expanded view of the cluster
        - otherwise: fit the map to the padded bounds of the members

        Returns None if the cluster is not part of the current frame.
        """
        cluster = self.find_cluster(cluster_id)
        if cluster is None:
            logger.debug(f"Ignoring click on stale cluster {cluster_id}")
            return None

        if cluster.count <= CLUSTER_SELECT_MAX_COUNT:
            flight = cluster.members[0]
            self.select_flight(flight)
            return ClickOutcome(action=ClickAction.SELECT, cluster_id=cluster_id, flight=flight)

        state = self.viewport.state
        if state is not None and state.detail_level is DetailLevel.HIGH:
            if self.expanded_cluster_id == cluster_id:
                self.expanded_cluster_id = None
                action = ClickAction.COLLAPSE
            else:
                self.expanded_cluster_id = cluster_id
                action = ClickAction.EXPAND
            self.recompute()
            return ClickOutcome(action=action, cluster_id=cluster_id)

        member_bounds = Bounds.around(
            f.coordinates for f in cluster.members if f.coordinates is not None
        )
        if member_bounds is None:
            return None
        target = member_bounds.pad(CLUSTER_FIT_PADDING)
        if self.fly_to_bounds:
            self.fly_to_bounds(target)
        return ClickOutcome(action=ClickAction.FIT_BOUNDS, cluster_id=cluster_id, bounds=target)

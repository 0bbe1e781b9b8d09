"""
Live flight client: the single dispatcher between transport and view.

LiveFlightClient consumes the session's event channel in order, merges
flight batches into the store, recomputes the view after each merge and
keeps the user-facing connectivity flag and notices.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Optional

from contracts.validation import AircraftState
from tracker.config import EVICT_AFTER_MISSED_BATCHES, SessionSettings
from tracker.events import (
    Connected,
    Disconnected,
    FlightsReceived,
    ServerError,
    SessionEvent,
    StatusNotice,
    TerminalFailure,
)
from tracker.session import Connector, TransportSession
from tracker.store import FlightStore
from tracker.view import LiveMapView
from tracker.viewport import Bounds, ViewportTracker

logger = logging.getLogger(__name__)

TERMINAL_FAILURE_MESSAGE = "Lost connection to flight tracking server. Refresh to retry."


@dataclass(frozen=True)
class Notice:
    """User-facing notice (the dashboard shows these as toasts)."""
    level: str  # info, warning, error
    title: str
    message: str
    blocking: bool = False


class LiveFlightClient:
    """Wires TransportSession -> FlightStore -> LiveMapView."""

    def __init__(
        self,
        url: str,
        settings: Optional[SessionSettings] = None,
        connector: Optional[Connector] = None,
        fly_to_bounds: Optional[Callable[[Bounds], None]] = None,
        on_select: Optional[Callable[[AircraftState], None]] = None,
        evict_after_missed_batches: Optional[int] = EVICT_AFTER_MISSED_BATCHES,
        max_notices: int = 50,
    ):
        self.session = TransportSession(url, settings=settings, connector=connector)
        self.store = FlightStore(evict_after_missed_batches=evict_after_missed_batches)
        self.viewport = ViewportTracker()
        self.view = LiveMapView(self.store, self.viewport, fly_to_bounds=fly_to_bounds, on_select=on_select)

        self.is_connected = False
        self.failure: Optional[str] = None
        self.notices: Deque[Notice] = deque(maxlen=max_notices)
        self._notice_listeners: list[Callable[[Notice], None]] = []

    def on_notice(self, listener: Callable[[Notice], None]):
        self._notice_listeners.append(listener)

    async def run(self):
        """Start the session and dispatch its events until it is closed."""
        self.session.start()
        async for event in self.session.events():
            self.dispatch(event)

    async def close(self):
        await self.session.close()
        self.is_connected = False

    async def set_filter(self, flight_filter: str):
        await self.session.set_filter(flight_filter)

    def restart(self):
        """Resume after a terminal failure (the dashboard's refresh)."""
        self.failure = None
        self.session.restart()

    def dispatch(self, event: SessionEvent):
        """Apply one session event. Never raises into the caller."""
        try:
            self._dispatch(event)
        except Exception as e:
            logger.error(f"Failed to handle {type(event).__name__}: {e}")

    def _dispatch(self, event: SessionEvent):
        if isinstance(event, FlightsReceived):
            result = self.store.merge(event.flights)
            if result.changed:
                self.view.recompute()

        elif isinstance(event, Connected):
            self.is_connected = True
            self.failure = None
            self._notify(Notice("info", "Connected", "Real-time flight tracking activated"))

        elif isinstance(event, Disconnected):
            self.is_connected = False
            if event.first:
                self._notify(Notice("warning", "Disconnected", "Lost connection to flight tracking server"))

        elif isinstance(event, TerminalFailure):
            self.is_connected = False
            self.failure = TERMINAL_FAILURE_MESSAGE
            self._notify(Notice("error", "Connection failed", TERMINAL_FAILURE_MESSAGE, blocking=True))

        elif isinstance(event, StatusNotice):
            # Throttling lowers trust in freshness without dropping the transport
            self.is_connected = not event.degraded and self.session.is_open
            if event.degraded:
                self._notify(Notice("warning", "Live data delayed", event.message or event.status))

        elif isinstance(event, ServerError):
            logger.warning(f"Server error: {event.message}")
            self._notify(Notice("warning", "Server error", event.message or "Unknown server error"))

    def _notify(self, notice: Notice):
        self.notices.append(notice)
        for listener in self._notice_listeners:
            listener(notice)

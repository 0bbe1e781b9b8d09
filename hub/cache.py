"""
Latest-batch cache for the feed hub.
"""

import logging
import threading
from typing import Dict, List

from contracts.validation import AircraftState
from hub.metrics import FLIGHTS_CACHED

logger = logging.getLogger(__name__)


class FeedCache:
    """
    Holds the most recently published batch, keyed by aircraft id.

    New clients receive this as their initial snapshot. Publishing replaces
    the whole batch; tracking aircraft across batches is the client's job.
    """

    def __init__(self):
        self._flights: Dict[str, AircraftState] = {}
        self._lock = threading.RLock()
        self._sequence = 0

    def publish(self, flights: List[AircraftState]) -> int:
        """
        Replace the cached batch.

        Returns:
            The new sequence number
        """
        batch = {flight.id: flight for flight in flights}
        with self._lock:
            self._flights = batch
            self._sequence += 1
            FLIGHTS_CACHED.set(len(batch))
            sequence = self._sequence
        logger.debug(f"Cached batch {sequence} with {len(batch)} flights")
        return sequence

    def get_all(self) -> List[AircraftState]:
        with self._lock:
            return list(self._flights.values())

    def get_sequence(self) -> int:
        with self._lock:
            return self._sequence

    def size(self) -> int:
        with self._lock:
            return len(self._flights)

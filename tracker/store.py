"""
Client-side flight state store.

Reconciles incoming batches into a monotonically-extending map of
id -> AircraftState.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from contracts.validation import AircraftState, validate_aircraft_state
from tracker.metrics import BATCHES_MERGED, FLIGHTS_KNOWN

logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    """Outcome of one merge() call."""
    inserted: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    rejected: int = 0
    evicted: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.inserted or self.updated or self.evicted)


class FlightStore:
    """
    In-memory store of every aircraft seen this session.

    A merge replaces each incoming id wholesale and keeps every id the batch
    does not mention. Merges are copy-on-write under a lock, so a reader
    always sees the state before or after a whole batch, never in between.

    Expiry is opt-in: with evict_after_missed_batches=N an id absent from N
    consecutive non-empty batches is dropped. The default (None) never
    evicts.
    """

    def __init__(self, evict_after_missed_batches: Optional[int] = None):
        self.evict_after_missed_batches = evict_after_missed_batches
        self._flights: Dict[str, AircraftState] = {}
        self._missed: Dict[str, int] = {}
        self._lock = threading.RLock()
        self._sequence = 0

    def merge(self, batch: Any) -> MergeResult:
        """
        Merge a batch of aircraft states.

        Entries may be AircraftState instances or raw dicts. Entries that
        fail validation are skipped. An empty or malformed batch is a no-op.
        """
        result = MergeResult()

        if not isinstance(batch, (list, tuple)):
            logger.warning(f"Ignoring malformed batch of type {type(batch).__name__}")
            BATCHES_MERGED.labels(result="malformed").inc()
            return result

        incoming: Dict[str, AircraftState] = {}
        for entry in batch:
            state = self._coerce(entry)
            if state is None:
                result.rejected += 1
                continue
            # Last entry for an id wins within one batch
            incoming[state.id] = state

        if not incoming:
            if batch:
                logger.warning(f"Ignoring batch with no valid entries ({result.rejected} rejected)")
                BATCHES_MERGED.labels(result="malformed").inc()
            else:
                logger.warning("Ignoring empty batch")
                BATCHES_MERGED.labels(result="empty").inc()
            return result

        with self._lock:
            flights = dict(self._flights)
            missed = dict(self._missed)

            for flight_id, state in incoming.items():
                if flight_id in flights:
                    result.updated.append(flight_id)
                else:
                    result.inserted.append(flight_id)
                flights[flight_id] = state
                missed.pop(flight_id, None)

            if self.evict_after_missed_batches:
                for flight_id in list(flights):
                    if flight_id in incoming:
                        continue
                    count = missed.get(flight_id, 0) + 1
                    if count >= self.evict_after_missed_batches:
                        del flights[flight_id]
                        missed.pop(flight_id, None)
                        result.evicted.append(flight_id)
                    else:
                        missed[flight_id] = count

            self._flights = flights
            self._missed = missed
            self._sequence += 1
            FLIGHTS_KNOWN.set(len(flights))

        BATCHES_MERGED.labels(result="applied").inc()
        if result.rejected:
            logger.warning(f"Skipped {result.rejected} invalid entries in batch")
        if result.evicted:
            logger.info(f"Evicted {len(result.evicted)} aircraft missing from recent batches")
        logger.debug(
            f"Merged batch: {len(result.inserted)} new, {len(result.updated)} updated, "
            f"{len(self._flights)} known"
        )
        return result

    def _coerce(self, entry: Any) -> Optional[AircraftState]:
        if isinstance(entry, AircraftState):
            return entry
        is_valid, state, error = validate_aircraft_state(entry)
        if not is_valid:
            logger.debug(f"Rejected aircraft entry: {error}")
            return None
        return state

    def invalidate(self, flight_ids: Iterable[str]) -> List[str]:
        """
        Explicitly remove aircraft from the store.

        Returns:
            List of ids that were present and removed
        """
        removed = []
        with self._lock:
            flights = dict(self._flights)
            missed = dict(self._missed)
            for flight_id in flight_ids:
                if flights.pop(flight_id, None) is not None:
                    missed.pop(flight_id, None)
                    removed.append(flight_id)
            if removed:
                self._flights = flights
                self._missed = missed
                self._sequence += 1
                FLIGHTS_KNOWN.set(len(flights))
        if removed:
            logger.info(f"Invalidated {len(removed)} aircraft")
        return removed

    def snapshot(self) -> List[AircraftState]:
        """All known aircraft. Iteration order is not guaranteed."""
        with self._lock:
            flights = self._flights
        return list(flights.values())

    def get(self, flight_id: str) -> Optional[AircraftState]:
        with self._lock:
            return self._flights.get(flight_id)

    def ids(self) -> set[str]:
        with self._lock:
            return set(self._flights)

    @property
    def sequence(self) -> int:
        """Number of batches applied so far."""
        with self._lock:
            return self._sequence

    def size(self) -> int:
        with self._lock:
            return len(self._flights)

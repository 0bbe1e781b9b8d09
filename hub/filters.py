"""
Per-client subscription filters.

The classification is deliberately coarse: the hub only sees normalized
aircraft state, not provider-side flight categories.
"""

from typing import Iterable, List

from contracts.constants import FILTER_ALL, FILTER_CARGO, FILTER_COMMERCIAL, FILTER_PRIVATE
from contracts.validation import AircraftState


def _airline_name(flight: AircraftState):
    return flight.airline.name if flight.airline else None


def matches_filter(flight: AircraftState, filter_type: str) -> bool:
    if filter_type == FILTER_ALL:
        return True
    if filter_type == FILTER_COMMERCIAL:
        return _airline_name(flight) is not None
    if filter_type == FILTER_PRIVATE:
        return _airline_name(flight) is None
    if filter_type == FILTER_CARGO:
        callsign = (flight.callsign or "").lower()
        airline = (_airline_name(flight) or "").lower()
        return "cargo" in callsign or "cargo" in airline
    return True


def filter_flights(flights: Iterable[AircraftState], filter_type: str) -> List[AircraftState]:
    """Flights visible to a client subscribed with filter_type."""
    return [f for f in flights if matches_filter(f, filter_type)]

"""
Typed events produced by the transport session.

The session pushes these onto a single channel; LiveFlightClient consumes
them in order from one dispatcher loop.
"""

from dataclasses import dataclass
from typing import Any, Optional, Union


@dataclass(frozen=True)
class HeartbeatAck:
    """Decoded pong. Used by the session for liveness; never dispatched."""


@dataclass(frozen=True)
class Connected:
    """Transport reached OPEN. Emitted once per successful open."""
    url: str


@dataclass(frozen=True)
class Disconnected:
    """Transient failure; a reconnect is scheduled when retry_in is set."""
    attempt: int
    retry_in: Optional[float]
    reason: str

    @property
    def first(self) -> bool:
        """True for the first failure of an outage."""
        return self.attempt == 1


@dataclass(frozen=True)
class TerminalFailure:
    """Retry budget exhausted; the session waits for restart()."""
    attempts: int


@dataclass(frozen=True)
class StatusNotice:
    """Server-signaled connection status (throttle, degradation, recovery)."""
    status: str
    message: Optional[str]
    degraded: bool


@dataclass(frozen=True)
class ServerError:
    """Non-fatal error reported by the server."""
    message: Optional[str]


@dataclass(frozen=True)
class FlightsReceived:
    """
    A batch of aircraft states.

    `flights` is the raw batch payload; the store validates each entry.
    """
    kind: str
    flights: Any


SessionEvent = Union[Connected, Disconnected, TerminalFailure, StatusNotice, ServerError, FlightsReceived]

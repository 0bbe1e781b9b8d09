"""
Configuration for the live flight tracker.

Values come from environment variables with defaults matching the
production dashboard. SessionSettings bundles the transport timings so
that a session (or a test) can override them without touching the
environment.
"""

import os
from dataclasses import dataclass
from typing import Optional

from contracts.constants import FILTER_ALL


def _optional_positive_int(value: str) -> Optional[int]:
    """Parse a positive int, treating empty/zero/invalid as disabled."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


TRACKER_WS_URL = os.getenv("TRACKER_WS_URL", "ws://localhost:8000/ws")

CONNECT_TIMEOUT_SECONDS = float(os.getenv("TRACKER_CONNECT_TIMEOUT_SECONDS", "10"))
HEARTBEAT_INTERVAL_SECONDS = float(os.getenv("TRACKER_HEARTBEAT_INTERVAL_SECONDS", "30"))

RECONNECT_BASE_DELAY_SECONDS = float(os.getenv("TRACKER_RECONNECT_BASE_DELAY_SECONDS", "3"))
RECONNECT_MULTIPLIER = float(os.getenv("TRACKER_RECONNECT_MULTIPLIER", "1.5"))
RECONNECT_MAX_DELAY_SECONDS = float(os.getenv("TRACKER_RECONNECT_MAX_DELAY_SECONDS", "30"))
RECONNECT_MAX_ATTEMPTS = int(os.getenv("TRACKER_RECONNECT_MAX_ATTEMPTS", "10"))

DEFAULT_FILTER = os.getenv("TRACKER_DEFAULT_FILTER", FILTER_ALL)

# Disabled by default: aircraft stay known for the whole session
EVICT_AFTER_MISSED_BATCHES = _optional_positive_int(
    os.getenv("TRACKER_EVICT_AFTER_MISSED_BATCHES", "0")
)

METRICS_PORT = int(os.getenv("TRACKER_METRICS_PORT", "8002"))


@dataclass(frozen=True)
class SessionSettings:
    """Transport timings and retry budget for one TransportSession."""
    connect_timeout: float = CONNECT_TIMEOUT_SECONDS
    heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS
    reconnect_base_delay: float = RECONNECT_BASE_DELAY_SECONDS
    reconnect_multiplier: float = RECONNECT_MULTIPLIER
    reconnect_max_delay: float = RECONNECT_MAX_DELAY_SECONDS
    max_reconnect_attempts: int = RECONNECT_MAX_ATTEMPTS
    initial_filter: str = DEFAULT_FILTER

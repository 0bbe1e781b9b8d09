"""
Shared constants for SkyTrack services.

This module provides a single source of truth for:
- Wire message types
- Subscription filter values
- Flight status values
- View-reduction thresholds

The tracker and the hub both import from this module so the two ends of
the websocket agree on the contract.
"""

# Client -> Server message types
WS_MESSAGE_TYPE_PING = "ping"
WS_MESSAGE_TYPE_SET_FILTER = "setFilter"

# Server -> Client message types
WS_MESSAGE_TYPE_PONG = "pong"
WS_MESSAGE_TYPE_CONNECTION_STATUS = "connectionStatus"
WS_MESSAGE_TYPE_ERROR = "error"
WS_MESSAGE_TYPE_FLIGHTS = "flights"
WS_MESSAGE_TYPE_FLIGHT_UPDATE = "flightUpdate"

SERVER_MESSAGE_TYPES = (
    WS_MESSAGE_TYPE_PONG,
    WS_MESSAGE_TYPE_CONNECTION_STATUS,
    WS_MESSAGE_TYPE_ERROR,
    WS_MESSAGE_TYPE_FLIGHTS,
    WS_MESSAGE_TYPE_FLIGHT_UPDATE,
)

# Subscription filters
FILTER_ALL = "all"
FILTER_COMMERCIAL = "commercial"
FILTER_PRIVATE = "private"
FILTER_CARGO = "cargo"

FILTER_TYPES = (FILTER_ALL, FILTER_COMMERCIAL, FILTER_PRIVATE, FILTER_CARGO)

# Flight Status
FLIGHT_STATUS_SCHEDULED = "scheduled"
FLIGHT_STATUS_ACTIVE = "active"
FLIGHT_STATUS_LANDED = "landed"
FLIGHT_STATUS_CANCELLED = "cancelled"
FLIGHT_STATUS_DIVERTED = "diverted"
FLIGHT_STATUS_DELAYED = "delayed"

# Server connection status values
CONNECTION_STATUS_OK = "ok"
CONNECTION_STATUS_THROTTLED = "throttled"
CONNECTION_STATUS_DEGRADED = "degraded"

DEGRADED_CONNECTION_STATUSES = (CONNECTION_STATUS_THROTTLED, CONNECTION_STATUS_DEGRADED)

# Detail levels
DETAIL_LEVEL_HIGH = "high"
DETAIL_LEVEL_MEDIUM = "medium"
DETAIL_LEVEL_LOW = "low"

DETAIL_HIGH_MIN_ZOOM = 10
DETAIL_MEDIUM_MIN_ZOOM = 7

# Clustering
CLUSTER_BYPASS_MIN_ZOOM = 8
CLUSTER_BASE_GRID_DEGREES = 2.0
CLUSTER_SELECT_MAX_COUNT = 3
CLUSTER_FIT_PADDING = 0.3

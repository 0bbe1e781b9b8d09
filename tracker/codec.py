"""
Wire codec for the tracker side of the websocket.

decode_message() turns a raw text frame into a typed event, or None when
the frame must be dropped. Dropping never raises.
"""

import json
import logging
from typing import Optional, Union

from contracts.constants import (
    DEGRADED_CONNECTION_STATUSES,
    SERVER_MESSAGE_TYPES,
)
from contracts.validation import (
    PingMessage,
    SetFilterMessage,
    PongMessage,
    ConnectionStatusMessage,
    ErrorMessage,
    FlightBatchMessage,
    validate_server_message,
)
from tracker.events import FlightsReceived, HeartbeatAck, ServerError, StatusNotice
from tracker.metrics import MESSAGES_DROPPED, MESSAGES_RECEIVED

logger = logging.getLogger(__name__)


def encode_ping() -> str:
    return PingMessage().model_dump_json()


def encode_set_filter(flight_filter: str) -> str:
    """Encode a setFilter request. Raises ValueError on an unknown filter."""
    return SetFilterMessage(filter=flight_filter).model_dump_json()


def decode_message(raw: Union[str, bytes]) -> Optional[object]:
    """
    Decode one server frame.

    Returns:
        HeartbeatAck, StatusNotice, ServerError or FlightsReceived,
        or None if the frame was dropped.
    """
    try:
        data = json.loads(raw)
    except (ValueError, TypeError, RecursionError) as e:
        logger.warning(f"Dropping malformed frame: {e}")
        MESSAGES_DROPPED.labels(reason="invalid_json").inc()
        return None

    if not isinstance(data, dict) or "type" not in data:
        logger.warning("Dropping frame without a message type")
        MESSAGES_DROPPED.labels(reason="missing_type").inc()
        return None

    msg_type = data["type"]
    if msg_type not in SERVER_MESSAGE_TYPES:
        logger.debug(f"Ignoring unrecognized message type: {msg_type!r}")
        MESSAGES_DROPPED.labels(reason="unknown_type").inc()
        return None

    is_valid, message, error = validate_server_message(data)
    if not is_valid:
        logger.warning(f"Dropping invalid {msg_type} message: {error}")
        MESSAGES_DROPPED.labels(reason="schema_validation_failed").inc()
        return None

    MESSAGES_RECEIVED.labels(type=msg_type).inc()

    if isinstance(message, PongMessage):
        return HeartbeatAck()
    if isinstance(message, ConnectionStatusMessage):
        degraded = message.status.lower() in DEGRADED_CONNECTION_STATUSES
        return StatusNotice(status=message.status, message=message.message, degraded=degraded)
    if isinstance(message, ErrorMessage):
        return ServerError(message=message.message)
    if isinstance(message, FlightBatchMessage):
        return FlightsReceived(kind=message.type, flights=message.batch)
    return None

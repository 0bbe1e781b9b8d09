"""
WebSocket handler for the live flight feed.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from contracts.constants import (
    FILTER_ALL,
    WS_MESSAGE_TYPE_FLIGHTS,
    WS_MESSAGE_TYPE_FLIGHT_UPDATE,
)
from contracts.validation import (
    AircraftState,
    ConnectionStatusMessage,
    ErrorMessage,
    FlightBatchMessage,
    PingMessage,
    PongMessage,
    SetFilterMessage,
    validate_client_message,
)
from hub.cache import FeedCache
from hub.filters import filter_flights
from hub.metrics import (
    WEBSOCKET_CONNECTIONS,
    WEBSOCKET_MESSAGES_RECEIVED,
    WEBSOCKET_MESSAGES_SENT,
)

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages WebSocket connections, their filters and broadcasts."""

    def __init__(self, cache: FeedCache):
        self.cache = cache
        self.active_connections: Dict[WebSocket, str] = {}

    async def connect(self, websocket: WebSocket):
        """Accept new WebSocket connection."""
        await websocket.accept()
        self.active_connections[websocket] = FILTER_ALL
        WEBSOCKET_CONNECTIONS.set(len(self.active_connections))
        logger.info(f"WebSocket connected. Total connections: {len(self.active_connections)}")

        # Send initial snapshot
        flights = self.cache.get_all()
        if flights:
            await self._send_flights(websocket, WS_MESSAGE_TYPE_FLIGHTS, flights)

    def disconnect(self, websocket: WebSocket):
        """Remove WebSocket connection."""
        if self.active_connections.pop(websocket, None) is not None:
            WEBSOCKET_CONNECTIONS.set(len(self.active_connections))
            logger.info(f"WebSocket disconnected. Total connections: {len(self.active_connections)}")

    async def _send(self, websocket: WebSocket, message: BaseModel) -> bool:
        """Send one message; drops the connection on failure."""
        try:
            await websocket.send_json(message.model_dump(exclude_none=True))
            WEBSOCKET_MESSAGES_SENT.labels(type=message.type).inc()
            return True
        except Exception as e:
            logger.warning(f"Failed to send {message.type} to connection: {e}")
            self.disconnect(websocket)
            return False

    async def _send_flights(self, websocket: WebSocket, msg_type: str, flights: List[AircraftState]) -> bool:
        filter_type = self.active_connections.get(websocket, FILTER_ALL)
        visible = filter_flights(flights, filter_type)
        message = FlightBatchMessage(
            type=msg_type,
            flights=[flight.to_wire() for flight in visible],
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        sent = await self._send(websocket, message)
        if sent:
            logger.debug(f"Sent {msg_type} with {len(visible)} flights (filter={filter_type})")
        return sent

    async def handle_message(self, websocket: WebSocket, raw: str):
        """Handle one client frame. Invalid frames get an error reply."""
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON from client: {e}")
            WEBSOCKET_MESSAGES_RECEIVED.labels(outcome="rejected").inc()
            await self._send(websocket, ErrorMessage(message="Invalid JSON"))
            return

        is_valid, message, error = validate_client_message(data)
        if not is_valid:
            logger.warning(f"Rejected client message: {error}")
            WEBSOCKET_MESSAGES_RECEIVED.labels(outcome="rejected").inc()
            await self._send(websocket, ErrorMessage(message=f"Unsupported message: {error.splitlines()[0]}"))
            return

        WEBSOCKET_MESSAGES_RECEIVED.labels(outcome=message.type).inc()

        if isinstance(message, PingMessage):
            await self._send(websocket, PongMessage())

        elif isinstance(message, SetFilterMessage):
            if websocket not in self.active_connections:
                return
            self.active_connections[websocket] = message.filter
            logger.info(f"Client filter set to {message.filter}")

            # Send filtered flights
            flights = self.cache.get_all()
            if flights:
                await self._send_flights(websocket, WS_MESSAGE_TYPE_FLIGHTS, flights)

    async def broadcast_flights(self, flights: List[AircraftState]):
        """Send a flightUpdate to every client, filtered per client."""
        if not self.active_connections:
            return

        for connection in list(self.active_connections):
            await self._send_flights(connection, WS_MESSAGE_TYPE_FLIGHT_UPDATE, flights)

        logger.debug(f"Broadcast {len(flights)} flights to {len(self.active_connections)} clients")

    async def broadcast_status(self, status: str, message: Optional[str] = None):
        """Broadcast a connectionStatus notice (e.g. upstream throttling)."""
        notice = ConnectionStatusMessage(status=status, message=message)
        for connection in list(self.active_connections):
            await self._send(connection, notice)
        logger.info(f"Broadcast connection status {status!r}")

    async def handle_client(self, websocket: WebSocket):
        """Handle a WebSocket client connection."""
        await self.connect(websocket)

        try:
            while True:
                raw = await websocket.receive_text()
                await self.handle_message(websocket, raw)

        except WebSocketDisconnect:
            logger.info("Client disconnected")
        except Exception as e:
            logger.error(f"WebSocket error: {e}")
        finally:
            self.disconnect(websocket)

"""
FastAPI feed hub for SkyTrack.

Serves:
- WebSocket endpoint speaking the tracker wire protocol
- REST API to publish flight batches and connection status notices
- Prometheus metrics endpoint
"""

import os
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, List, Optional

from fastapi import FastAPI, WebSocket, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from contracts.validation import validate_aircraft_state
from hub.cache import FeedCache
from hub.metrics import BATCHES_PUBLISHED, ENTRIES_REJECTED, HTTP_REQUESTS, get_metrics
from hub.websocket import ConnectionManager

logger = logging.getLogger(__name__)

# Configuration
HUB_HOST = os.getenv("HUB_HOST", "0.0.0.0")
HUB_PORT = int(os.getenv("HUB_PORT", "8000"))


# Global state
cache: FeedCache = None
connection_manager: ConnectionManager = None


class PublishRequest(BaseModel):
    """Batch of raw aircraft entries; each is validated on its own."""
    flights: List[Any]


class StatusUpdate(BaseModel):
    status: str
    message: Optional[str] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global cache, connection_manager

    logger.info("=" * 50)
    logger.info("SkyTrack Hub - Starting")
    logger.info("=" * 50)

    cache = FeedCache()
    logger.info("FeedCache initialized")

    connection_manager = ConnectionManager(cache)
    logger.info("WebSocket connection manager ready")

    yield

    logger.info("Shutting down...")
    cache = None
    connection_manager = None
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="SkyTrack Hub API",
    description="Live flight feed hub",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Middleware to track HTTP requests."""
    response = await call_next(request)
    HTTP_REQUESTS.labels(
        method=request.method,
        path=request.url.path,
        status=response.status_code
    ).inc()
    return response


def _not_ready() -> JSONResponse:
    return JSONResponse(status_code=503, content={"error": "Service not ready"})


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "SkyTrack Hub",
        "version": "1.0.0",
        "endpoints": {
            "websocket": "/ws",
            "flights": "/flights",
            "status": "/status",
            "health": "/health",
            "metrics": "/metrics"
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "cache_size": cache.size() if cache else 0,
        "sequence": cache.get_sequence() if cache else 0,
        "connections": len(connection_manager.active_connections) if connection_manager else 0
    }


@app.get("/flights")
async def get_flights():
    """Latest published batch, in wire format."""
    if not cache:
        return _not_ready()

    flights = [flight.to_wire() for flight in cache.get_all()]
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "sequence": cache.get_sequence(),
        "count": len(flights),
        "flights": flights
    }


@app.post("/flights")
async def publish_flights(request: PublishRequest):
    """
    Publish a flight batch.

    Invalid entries are rejected individually; the valid remainder replaces
    the cached batch and is broadcast as a flightUpdate to every client.
    """
    if not cache or not connection_manager:
        return _not_ready()

    accepted = []
    rejected = 0
    for entry in request.flights:
        is_valid, state, error = validate_aircraft_state(entry)
        if is_valid:
            accepted.append(state)
        else:
            rejected += 1
            logger.warning(f"Rejected aircraft entry: {error.splitlines()[0]}")

    if rejected:
        ENTRIES_REJECTED.inc(rejected)

    sequence = cache.publish(accepted)
    BATCHES_PUBLISHED.inc()
    await connection_manager.broadcast_flights(accepted)
    logger.info(f"Published batch {sequence}: {len(accepted)} accepted, {rejected} rejected")

    return {
        "sequence": sequence,
        "accepted": len(accepted),
        "rejected": rejected
    }


@app.post("/status")
async def publish_status(update: StatusUpdate):
    """Broadcast a connectionStatus notice (e.g. upstream throttling)."""
    if not connection_manager:
        return _not_ready()

    await connection_manager.broadcast_status(update.status, update.message)
    return {
        "status": update.status,
        "clients": len(connection_manager.active_connections)
    }


@app.websocket("/ws")
async def websocket_feed(websocket: WebSocket):
    """
    WebSocket endpoint for live flight data.

    Protocol:
    - On connect: sends a "flights" snapshot if any flights are cached
    - {"type": "ping"} is answered with {"type": "pong"}
    - {"type": "setFilter", "filter": ...} re-sends the snapshot filtered
    - Published batches arrive as "flightUpdate", filtered per client
    """
    if not connection_manager:
        await websocket.close(code=1013, reason="Service not ready")
        return

    await connection_manager.handle_client(websocket)


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return await get_metrics()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    uvicorn.run(
        "hub.main:app",
        host=HUB_HOST,
        port=HUB_PORT,
        log_level="info"
    )

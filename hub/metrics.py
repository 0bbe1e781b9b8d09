"""
Prometheus metrics for the feed hub.
"""

import os
from fastapi.responses import Response
from prometheus_client import Counter, Gauge, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.multiprocess import MultiProcessCollector
from prometheus_client.registry import CollectorRegistry


FLIGHTS_CACHED = Gauge(
    'hub_flights_cached',
    'Aircraft in the latest published batch'
)

WEBSOCKET_CONNECTIONS = Gauge(
    'hub_websocket_connections',
    'Active WebSocket connections'
)

WEBSOCKET_MESSAGES_SENT = Counter(
    'hub_websocket_messages_sent_total',
    'Messages sent by type',
    ['type']  # flights, flightUpdate, pong, connectionStatus, error
)

WEBSOCKET_MESSAGES_RECEIVED = Counter(
    'hub_websocket_messages_received_total',
    'Client messages received by outcome',
    ['outcome']  # ping, setFilter, rejected
)

BATCHES_PUBLISHED = Counter(
    'hub_batches_published_total',
    'Flight batches published to the hub'
)

ENTRIES_REJECTED = Counter(
    'hub_entries_rejected_total',
    'Aircraft entries rejected on publish'
)

HTTP_REQUESTS = Counter(
    'hub_http_requests_total',
    'HTTP requests',
    ['method', 'path', 'status']
)


async def get_metrics():
    """FastAPI handler for /metrics endpoint."""
    if 'PROMETHEUS_MULTIPROC_DIR' in os.environ:
        # Multi-process mode (for production)
        registry = CollectorRegistry()
        MultiProcessCollector(registry)
        output = generate_latest(registry)
    else:
        # Single-process mode (for development)
        output = generate_latest()

    return Response(content=output, media_type=CONTENT_TYPE_LATEST)

"""
Prometheus metrics for the tracker.
"""

from prometheus_client import Counter, Gauge, Histogram


MESSAGES_RECEIVED = Counter(
    'tracker_messages_received_total',
    'Decoded server messages by type',
    ['type']  # pong, connectionStatus, error, flights, flightUpdate
)

MESSAGES_DROPPED = Counter(
    'tracker_messages_dropped_total',
    'Server messages dropped before dispatch',
    ['reason']  # invalid_json, missing_type, unknown_type, schema_validation_failed
)

CONNECTION_ATTEMPTS = Counter(
    'tracker_connection_attempts_total',
    'Transport connection attempts by outcome',
    ['outcome']  # opened, timeout, error
)

SESSION_FAILURES = Counter(
    'tracker_session_failures_total',
    'Transport failures by kind',
    ['kind']  # transient, terminal
)

BATCHES_MERGED = Counter(
    'tracker_batches_merged_total',
    'Flight batches merged into the store',
    ['result']  # applied, empty, malformed
)

FLIGHTS_KNOWN = Gauge(
    'tracker_flights_known',
    'Aircraft currently held in the flight store'
)

CLUSTERS_RENDERED = Gauge(
    'tracker_clusters_rendered',
    'Clusters produced by the last recompute'
)

RECOMPUTE_LATENCY = Histogram(
    'tracker_view_recompute_seconds',
    'Visibility + clustering recompute duration',
    buckets=[0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25]
)

"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Attendance metrics
attendance_mutations = Counter(
    'attendance_mutations_total',
    'Join/leave attempts against event attendee sets',
    ['action', 'result']  # join/leave, success/already_member/not_member/not_found/conflict
)

attendance_retries = Counter(
    'attendance_retry_attempts_total',
    'Attendance retry attempts due to event version conflicts'
)

# Realtime metrics
broadcast_messages = Counter(
    'broadcast_messages_total',
    'Realtime messages fanned out',
    ['type', 'scope']  # scope: global, room
)

broadcast_failures = Counter(
    'broadcast_send_failures_total',
    'Realtime sends that failed and dropped the socket'
)

websocket_connections = Gauge(
    'websocket_connections',
    'Number of open realtime connections'
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )

# Convenience functions for instrumentation
def record_attendance(action: str, result: str):
    """Record a join/leave outcome."""
    attendance_mutations.labels(action=action, result=result).inc()

def record_broadcast(message_type: str, scope: str):
    """Record a fan-out. Scope: global, room"""
    broadcast_messages.labels(type=message_type, scope=scope).inc()

def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()

"""Prometheus metric inventory.

Every metric the service exports is declared here; the modules that own
the behavior import the metric and increment it at the point of action.
Counters only go up, so tests assert on deltas.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Ledger metrics
# ---------------------------------------------------------------------------

BADGE_OPERATIONS = Counter(
    "badge_operations_total",
    "Ledger operations by operation and outcome",
    # operation: award|propose|claim|return|set_metadata
    # outcome: ok or the error class name (AlreadyHeldError, ...)
    ["operation", "outcome"],
)

HOOK_FAILURES = Counter(
    "badge_hook_failures_total",
    "Hook handler failures by handler name and criticality",
    ["hook", "critical"],  # critical: "true" aborted the operation
)

NOTIFICATIONS = Counter(
    "badge_notifications_total",
    "Recipient notification attempts by result",
    ["result"],  # delivered|no_target|unsupported|failed
)

DELEGATE_QUERIES = Counter(
    "badge_delegate_queries_total",
    "Authorization delegate queries by result",
    ["result"],  # granted|denied|fallback
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)

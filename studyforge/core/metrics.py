"""Application metrics (Prometheus).

Single inventory of everything the service measures.  Modules import the
metric they own and increment/observe it at the point of action; the
/metrics endpoint exposes the default registry.

Counters only go up, so tests assert on deltas (see tests/middleware).
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
# Rate limiting and cache
# ---------------------------------------------------------------------------

RATE_LIMIT_HITS = Counter(
    "rate_limit_hits_total",
    "Requests rejected by rate limiting",
    ["operation"],  # course-generation|study-content|assignment|general
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # "hit", "miss" or "discard"
)

# ---------------------------------------------------------------------------
# Background jobs
# ---------------------------------------------------------------------------

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)

JOB_RUNS = Counter(
    "jobs_total",
    "Finished job deliveries by event and outcome",
    ["event", "outcome"],  # succeeded|failed|fatal|retried
)

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Wall time of a single handler attempt",
    ["event"],
    # AI calls dominate: seconds, not milliseconds
    buckets=[0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
)

# ---------------------------------------------------------------------------
# Domain
# ---------------------------------------------------------------------------

LEDGER_ENTRIES = Counter(
    "ledger_entries_total",
    "Credit transactions appended",
    ["type"],  # grant|debit
)

STORAGE_RETRIES = Counter(
    "storage_retries_total",
    "Storage calls retried after a transient failure",
)

NOTIFICATION_FAILURES = Counter(
    "notification_failures_total",
    "Notifications that could not be delivered",
    ["kind"],
)

"""Application metrics using the Prometheus client library.

All metrics live here so there is one inventory of what the service
measures.  Other modules import a metric and increment/observe it at
the point of action.

Counters only go up (transitions, XP awarded, failures); gauges go up
and down (in-flight requests, queue depth); histograms bucket
observations (request latency).  Prometheus scrapes GET /metrics and
derives rates and percentiles on its side:

  rate(ledger_conflicts_total[5m])       # contention on hot records
  rate(side_effect_failures_total[5m])   # certificate / audit health
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
# Course lifecycle
# ---------------------------------------------------------------------------

COURSE_TRANSITIONS = Counter(
    "course_transitions_total",
    "Course lifecycle operations by action and outcome",
    ["action", "result"],  # result: "ok" or "rejected"
)

# ---------------------------------------------------------------------------
# Progress ledger
# ---------------------------------------------------------------------------

ATTEMPTS_STARTED = Counter(
    "attempts_started_total",
    "Course attempts started",
)

ATTEMPTS_COMPLETED = Counter(
    "attempts_completed_total",
    "Attempt completion requests by outcome",
    ["result"],  # "accepted", "policy_violation", "no_active_attempt"
)

XP_AWARDED = Counter(
    "xp_awarded_total",
    "Experience points awarded by completed attempts",
)

LEDGER_CONFLICTS = Counter(
    "ledger_conflicts_total",
    "Progress record writes that lost a version check and were recomputed",
)

SIDE_EFFECT_FAILURES = Counter(
    "side_effect_failures_total",
    "Best-effort side effects that failed after a committed write",
    ["effect"],  # "certificate", "achievements", "audit", ...
)

# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # "hit", "miss" or "error"
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)

"""Prometheus metric inventory.

Every metric the service exports is declared here; the owning modules
import and increment them at the point of action. /metrics serves the
default registry.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP (MetricsMiddleware)
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
# Authorization and gating
# ---------------------------------------------------------------------------

AUTHZ_DENIALS = Counter(
    "authz_denials_total",
    "Requests rejected by an authorization guard or subscription gate",
    ["guard"],
)

# ---------------------------------------------------------------------------
# Supporting infrastructure
# ---------------------------------------------------------------------------

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache operations by result",
    ["operation"],  # hit | miss | error | invalidate
)

TOKEN_BLACKLIST_CHECKS = Counter(
    "token_blacklist_checks_total",
    "Token blacklist lookups by result",
    ["result"],  # revoked | valid
)

RATE_LIMIT_HITS = Counter(
    "rate_limit_hits_total",
    "Requests rejected by the rate limiter",
    ["key_type"],  # user | ip
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)

# ---------------------------------------------------------------------------
# Trial lifecycle
# ---------------------------------------------------------------------------

TRIAL_SWEEP_TRANSITIONS = Counter(
    "trial_sweep_transitions_total",
    "Organizations moved from trialing to past_due by the sweep",
)

TRIAL_SWEEP_NOTIFICATIONS = Counter(
    "trial_sweep_notifications_total",
    "Trial notifications queued by the sweep",
    ["kind"],  # warning | expired
)

TRIAL_SWEEP_FAILURES = Counter(
    "trial_sweep_failures_total",
    "Organizations the sweep failed to process",
)

"""Prometheus metric inventory.

Every metric the service exports is declared here; the modules that own
the behaviour import and increment them.  Keeping the list in one file
makes it easy to see what dashboards can rely on.

HTTP metrics are fed by MetricsMiddleware.  The domain counters answer
the questions operators actually ask of this service:

  - How often is access granted, and through which path?
      sum by (access_type) (rate(access_decisions_total[5m]))
  - Are provider webhooks failing (and so being retried)?
      rate(webhook_events_total{outcome="failed"}[5m])
  - Are invitation batches partially failing?
      invitations_issued_total{result="failed"}
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
    # Access checks fan out to two or three provider calls, so the
    # interesting range is wider than for a purely local service.
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Domain metrics
# ---------------------------------------------------------------------------

ACCESS_DECISIONS = Counter(
    "access_decisions_total",
    "Course access verdicts by access path",
    ["access_type"],  # "organization", "individual", "none", "error"
)

WEBHOOK_EVENTS = Counter(
    "webhook_events_total",
    "Provider webhook events by source, type, and outcome",
    # outcome: processed|skipped|duplicate|failed|rejected
    ["source", "event_type", "outcome"],
)

INVITATIONS_ISSUED = Counter(
    "invitations_issued_total",
    "Organization invitations by per-address result",
    ["result"],  # "created", "failed", "email_failed"
)

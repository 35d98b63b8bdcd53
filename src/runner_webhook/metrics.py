"""Prometheus metrics for the runner webhook.

Metrics are exposed at the `/metrics` endpoint in Prometheus format.

Metrics Defined:
- runner_webhook_requests_total: Counter of deliveries by event type and
  response status
- runner_webhook_dispatches_total: Counter of runner dispatch attempts by
  result
- runner_webhook_job_queued_seconds: Histogram of time jobs waited for a
  runner (from in_progress events)
- runner_webhook_job_run_seconds: Histogram of job run time (from
  completed events)
"""

from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Covers range from 1 second to 6 hours, the GitHub-hosted job time limit
DEFAULT_DURATION_BUCKETS = (
    1.0,
    5.0,
    15.0,
    30.0,
    60.0,
    120.0,
    300.0,
    600.0,
    1800.0,
    3600.0,
    7200.0,
    21600.0,
)

DISPATCH_RESULTS = ("started", "exchange_failed", "build_failed")

# Event types with their own request label value; all others count as "other"
TRACKED_EVENT_TYPES = ("workflow_job", "ping")


class WebhookMetrics:
    """Container for all runner webhook Prometheus metrics.

    Supports custom registries for testing.

    Attributes:
        registry: The Prometheus registry for these metrics.
        requests_total: Counter for webhook deliveries.
        dispatches_total: Counter for runner dispatch attempts.
        job_queued_seconds: Histogram for time spent queued.
        job_run_seconds: Histogram for job run time.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize webhook metrics.

        Args:
            registry: Optional Prometheus registry. If None, uses the
                      default REGISTRY. Pass a custom registry for testing.
        """
        self.registry = registry or REGISTRY

        self.requests_total = Counter(
            "runner_webhook_requests_total",
            "Total number of webhook deliveries handled",
            labelnames=["event_type", "status_code"],
            registry=self.registry,
        )

        self.dispatches_total = Counter(
            "runner_webhook_dispatches_total",
            "Total number of JIT runner dispatch attempts",
            labelnames=["result"],
            registry=self.registry,
        )

        self.job_queued_seconds = Histogram(
            "runner_webhook_job_queued_seconds",
            "Time workflow jobs spent queued before a runner picked them up",
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

        self.job_run_seconds = Histogram(
            "runner_webhook_job_run_seconds",
            "Time workflow jobs spent running",
            labelnames=["conclusion"],
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

        for result in DISPATCH_RESULTS:
            self.dispatches_total.labels(result=result)

    def record_request(self, event_type: Optional[str], status_code: int) -> None:
        """Record a handled delivery.

        Args:
            event_type: The X-GitHub-Event header value, if any.
            status_code: The HTTP status returned.
        """
        self.requests_total.labels(
            event_type=event_type_label(event_type),
            status_code=str(status_code),
        ).inc()

    def record_dispatch(self, result: str) -> None:
        """Record a dispatch attempt with one of DISPATCH_RESULTS."""
        self.dispatches_total.labels(result=result).inc()

    def observe_queued_duration(self, seconds: float) -> None:
        self.job_queued_seconds.observe(max(0.0, seconds))

    def observe_run_duration(self, seconds: float, conclusion: Optional[str]) -> None:
        self.job_run_seconds.labels(
            conclusion=conclusion or "unknown",
        ).observe(max(0.0, seconds))


def event_type_label(event_type: Optional[str]) -> str:
    """Map an X-GitHub-Event header value onto a bounded label value."""
    if not event_type:
        return "unknown"
    if event_type in TRACKED_EVENT_TYPES:
        return event_type
    return "other"


_default_metrics: Optional[WebhookMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> WebhookMetrics:
    """Get or create the webhook metrics instance.

    Args:
        registry: Optional Prometheus registry. If None, returns the
                  global metrics instance for the default registry.

    Returns:
        WebhookMetrics: The metrics instance.
    """
    global _default_metrics

    if registry is not None:
        return WebhookMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = WebhookMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Generate Prometheus metrics output for the /metrics endpoint."""
    target_registry = registry or REGISTRY
    return generate_latest(target_registry)

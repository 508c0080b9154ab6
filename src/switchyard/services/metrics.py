"""Prometheus metrics for Switchyard."""

from prometheus_client import Counter, Gauge, Histogram, Info

from switchyard.services.router import ExecutionMetrics

# Library info
APP_INFO = Info("switchyard", "Switchyard backend router information")

# Backend attempts
ATTEMPTS_TOTAL = Counter(
    "switchyard_backend_attempts_total",
    "Total number of backend attempts",
    ["backend", "model", "status"],
)

ATTEMPT_DURATION_SECONDS = Histogram(
    "switchyard_backend_attempt_duration_seconds",
    "Backend attempt duration in seconds",
    ["backend", "model"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

# Block state
BLOCKS_TOTAL = Counter(
    "switchyard_backend_blocks_total",
    "Total number of times a backend was blocked",
    ["namespace", "backend"],
)

BACKOFF_SECONDS = Gauge(
    "switchyard_backend_backoff_seconds",
    "Length of the current backoff window (0 when unblocked)",
    ["namespace", "backend"],
)

SKIPS_TOTAL = Counter(
    "switchyard_backend_skips_total",
    "Total number of times a blocked backend was skipped",
    ["namespace", "backend"],
)

NO_BACKENDS_AVAILABLE_TOTAL = Counter(
    "switchyard_no_backends_available_total",
    "Total number of requests that found every backend blocked",
    ["namespace"],
)


class MetricsCollector:
    """Facade over the Prometheus collectors.

    Args:
        enabled: When False every call is a no-op.
        version: Library version reported in the info metric.
    """

    def __init__(self, enabled: bool = True, version: str | None = None) -> None:
        self.enabled = enabled
        if enabled and version is not None:
            APP_INFO.info({"version": version})

    def record_attempt(self, metrics: ExecutionMetrics) -> None:
        """Record one backend attempt."""
        if not self.enabled:
            return
        ATTEMPTS_TOTAL.labels(
            backend=metrics.backend, model=metrics.model, status=metrics.status
        ).inc()
        ATTEMPT_DURATION_SECONDS.labels(
            backend=metrics.backend, model=metrics.model
        ).observe(metrics.latency_ms / 1000)

    def record_block(self, namespace: str, backend: str, backoff_ms: int) -> None:
        """Record that a backend was blocked."""
        if not self.enabled:
            return
        BLOCKS_TOTAL.labels(namespace=namespace, backend=backend).inc()
        BACKOFF_SECONDS.labels(namespace=namespace, backend=backend).set(
            backoff_ms / 1000
        )

    def record_unblock(self, namespace: str, backend: str) -> None:
        """Record that a backend's block state was cleared."""
        if not self.enabled:
            return
        BACKOFF_SECONDS.labels(namespace=namespace, backend=backend).set(0)

    def record_skip(self, namespace: str, backend: str) -> None:
        """Record that a blocked backend was skipped."""
        if not self.enabled:
            return
        SKIPS_TOTAL.labels(namespace=namespace, backend=backend).inc()

    def record_no_backends_available(self, namespace: str) -> None:
        """Record a request that found no usable backend."""
        if not self.enabled:
            return
        NO_BACKENDS_AVAILABLE_TOTAL.labels(namespace=namespace).inc()

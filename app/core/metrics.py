"""Request metrics on a per-application Prometheus registry."""

import time
from collections import defaultdict

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

METRIC_PREFIX = "saas"

DEFAULT_BUCKETS: tuple[float, ...] = (0.1, 0.3, 0.5, 0.7, 1, 3, 5, 7, 10)

UNKNOWN = "unknown"


class MetricsRegistry:
    """Every metric the service records, keyed by a fixed set of labels.

    Each instance owns its ``CollectorRegistry`` so several apps (or tests)
    never collide on the process-wide default registry.
    """

    def __init__(self, prefix: str = METRIC_PREFIX) -> None:
        self.prefix = prefix
        self.started_at = time.time()
        self.registry = CollectorRegistry()
        self.http_requests = Counter(
            f"{prefix}_http_requests_total",
            "Total number of HTTP requests",
            ("method", "route", "status_code", "tenant_id"),
            registry=self.registry,
        )
        self.http_duration = Histogram(
            f"{prefix}_http_request_duration_seconds",
            "Duration of HTTP requests in seconds",
            ("method", "route", "tenant_id"),
            buckets=DEFAULT_BUCKETS,
            registry=self.registry,
        )
        self.errors = Counter(
            f"{prefix}_errors_total",
            "Total number of errors",
            ("error_type", "tenant_id", "endpoint"),
            registry=self.registry,
        )
        self.tenant_operations = Counter(
            f"{prefix}_tenant_operations_total",
            "Total number of operations per tenant",
            ("tenant_id", "operation_type", "resource"),
            registry=self.registry,
        )
        self.auth_attempts = Counter(
            f"{prefix}_auth_attempts_total",
            "Total number of authentication attempts",
            ("status", "method"),
            registry=self.registry,
        )
        self.cache_hits = Counter(
            f"{prefix}_cache_hits_total", "Response cache hits", ("route",), registry=self.registry
        )
        self.cache_misses = Counter(
            f"{prefix}_cache_misses_total", "Response cache misses", ("route",), registry=self.registry
        )

    # ── Recording ────────────────────────────────────────────

    def increment_http_requests(
        self, method: str, route: str, status_code: int, tenant_id: str | None = None
    ) -> None:
        self.http_requests.labels(
            method=method,
            route=route,
            status_code=str(status_code),
            tenant_id=tenant_id or UNKNOWN,
        ).inc()

    def observe_http_duration(
        self, method: str, route: str, duration: float, tenant_id: str | None = None
    ) -> None:
        self.http_duration.labels(
            method=method, route=route, tenant_id=tenant_id or UNKNOWN
        ).observe(duration)

    def increment_errors(
        self, error_type: str, tenant_id: str | None = None, endpoint: str | None = None
    ) -> None:
        self.errors.labels(
            error_type=error_type,
            tenant_id=tenant_id or UNKNOWN,
            endpoint=endpoint or UNKNOWN,
        ).inc()

    def increment_tenant_operations(self, tenant_id: str, operation_type: str, resource: str) -> None:
        self.tenant_operations.labels(
            tenant_id=tenant_id, operation_type=operation_type, resource=resource
        ).inc()

    def increment_auth_attempts(self, status: str, method: str = "jwt") -> None:
        self.auth_attempts.labels(status=status, method=method).inc()

    def increment_cache(self, hit: bool, route: str) -> None:
        counter = self.cache_hits if hit else self.cache_misses
        counter.labels(route=route).inc()

    # ── Reading ──────────────────────────────────────────────

    def sample(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Current value of sample ``<prefix>_<name>``; 0 when never recorded."""
        value = self.registry.get_sample_value(f"{self.prefix}_{name}", labels or {})
        return value or 0.0

    @staticmethod
    def total(counter: Counter, **labels: str) -> float:
        """Sum of a counter across every label set matching ``labels``."""
        return sum(
            sample.value
            for metric in counter.collect()
            for sample in metric.samples
            if sample.name.endswith("_total")
            and all(sample.labels.get(name) == value for name, value in labels.items())
        )

    def tenant_usage(self, tenant_id: str) -> dict[str, dict[str, float]]:
        """Operation counts of one tenant, grouped by operation type and resource."""
        by_operation: dict[str, float] = defaultdict(float)
        by_resource: dict[str, float] = defaultdict(float)
        for metric in self.tenant_operations.collect():
            for sample in metric.samples:
                if not sample.name.endswith("_total") or sample.labels["tenant_id"] != tenant_id:
                    continue
                by_operation[sample.labels["operation_type"]] += sample.value
                by_resource[sample.labels["resource"]] += sample.value
        return {"by_operation": dict(by_operation), "by_resource": dict(by_resource)}

    def render(self) -> bytes:
        return generate_latest(self.registry)

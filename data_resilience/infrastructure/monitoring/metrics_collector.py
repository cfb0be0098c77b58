#!/usr/bin/env python3
"""
Metrics Collector with Prometheus Integration

Prometheus-compatible metrics for the data-access layer:
- Cache hits, misses, evictions and discarded writes
- Deduplicated (joined) requests
- Circuit breaker states and failures
- Retry attempts
- Recovery results by source
- Network status
- Background refresh outcomes
- Redirect denials

Architectural Decision: one CollectorRegistry per collector
- The layer is constructed explicitly (no ambient singletons), so several
  instances may live in one process (tests, multiple backends). A private
  registry keeps their metric names from colliding.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
from prometheus_client import CONTENT_TYPE_LATEST

from data_resilience.core.logging.logger import get_logger

logger = get_logger(__name__)

_CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}
_NETWORK_STATUS_VALUES = {"online": 0, "degraded": 1, "offline": 2}


class MetricsCollector:
    """
    Convenience wrapper around the layer's Prometheus metrics.

    STAGE-M: Metrics collection

    Usage:
        metrics = MetricsCollector()
        metrics.record_cache_hit("clients")
        output = metrics.get_prometheus_metrics()
    """

    def __init__(self, registry: CollectorRegistry | None = None, namespace: str = "data_access"):
        self.registry = registry or CollectorRegistry()
        ns = namespace

        # Cache metrics
        self.cache_hits = Counter(
            f"{ns}_cache_hits_total", "Total cache hits", ["resource"], registry=self.registry
        )
        self.cache_misses = Counter(
            f"{ns}_cache_misses_total", "Total cache misses", ["resource"], registry=self.registry
        )
        self.cache_evictions = Counter(
            f"{ns}_cache_evictions_total",
            "Entries evicted to stay within budget",
            ["priority"],
            registry=self.registry,
        )
        self.cache_discarded_writes = Counter(
            f"{ns}_cache_discarded_writes_total",
            "Out-of-order writes discarded by the cache store",
            registry=self.registry,
        )
        self.cache_size_bytes = Gauge(
            f"{ns}_cache_size_bytes", "Estimated cache payload size", registry=self.registry
        )
        self.cache_entries = Gauge(
            f"{ns}_cache_entries", "Number of cache entries", registry=self.registry
        )

        # Deduplication metrics
        self.dedup_joins = Counter(
            f"{ns}_dedup_joined_requests_total",
            "Requests that joined an in-flight call instead of starting one",
            registry=self.registry,
        )
        self.in_flight = Gauge(
            f"{ns}_in_flight_requests", "Backend calls currently in flight", registry=self.registry
        )

        # Circuit breaker metrics
        self.circuit_state = Gauge(
            f"{ns}_circuit_breaker_state",
            "Circuit breaker state (0=closed, 1=half_open, 2=open)",
            ["scope"],
            registry=self.registry,
        )
        self.circuit_failures = Counter(
            f"{ns}_circuit_breaker_failures_total",
            "Failures recorded by circuit breakers",
            ["scope"],
            registry=self.registry,
        )

        # Retry metrics
        self.retry_attempts = Counter(
            f"{ns}_retry_attempts_total",
            "Retry attempts (attempts beyond the first)",
            ["label"],
            registry=self.registry,
        )

        # Recovery metrics
        self.recovery_results = Counter(
            f"{ns}_recovery_results_total",
            "Results returned by execute_query, by source",
            ["source", "error_type"],
            registry=self.registry,
        )
        self.query_duration = Histogram(
            f"{ns}_query_duration_seconds",
            "execute_query duration",
            ["source"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=self.registry,
        )

        # Network metrics
        self.network_status = Gauge(
            f"{ns}_network_status",
            "Network status (0=online, 1=degraded, 2=offline)",
            registry=self.registry,
        )
        self.probe_latency = Histogram(
            f"{ns}_network_probe_latency_seconds",
            "Health probe latency",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
            registry=self.registry,
        )

        # Background refresh metrics
        self.refreshes = Counter(
            f"{ns}_background_refreshes_total",
            "Background refresh outcomes",
            ["resource", "outcome"],
            registry=self.registry,
        )

        # Redirect guard metrics
        self.redirect_denials = Counter(
            f"{ns}_redirect_denials_total",
            "Redirects denied by the redirect guard",
            ["reason"],
            registry=self.registry,
        )

        logger.debug("Metrics collector initialized", stage="M.0", namespace=ns)

    # =========================================================================
    # Cache
    # =========================================================================

    def record_cache_hit(self, resource: str) -> None:
        self.cache_hits.labels(resource=resource).inc()

    def record_cache_miss(self, resource: str) -> None:
        self.cache_misses.labels(resource=resource).inc()

    def record_cache_eviction(self, priority: str) -> None:
        self.cache_evictions.labels(priority=priority).inc()

    def record_discarded_write(self) -> None:
        self.cache_discarded_writes.inc()

    def set_cache_size(self, entries: int, size_bytes: int) -> None:
        self.cache_entries.set(entries)
        self.cache_size_bytes.set(size_bytes)

    # =========================================================================
    # Deduplication
    # =========================================================================

    def record_dedup_join(self) -> None:
        self.dedup_joins.inc()

    def set_in_flight(self, count: int) -> None:
        self.in_flight.set(count)

    # =========================================================================
    # Circuit Breaker
    # =========================================================================

    def set_circuit_state(self, scope: str, state: str) -> None:
        self.circuit_state.labels(scope=scope).set(_CIRCUIT_STATE_VALUES.get(state, 0))

    def record_circuit_failure(self, scope: str) -> None:
        self.circuit_failures.labels(scope=scope).inc()

    # =========================================================================
    # Retry
    # =========================================================================

    def record_retry_attempt(self, label: str) -> None:
        self.retry_attempts.labels(label=label).inc()

    # =========================================================================
    # Recovery
    # =========================================================================

    def record_recovery_result(
        self, source: str, error_type: str | None, duration_seconds: float
    ) -> None:
        self.recovery_results.labels(source=source, error_type=error_type or "none").inc()
        self.query_duration.labels(source=source).observe(duration_seconds)

    # =========================================================================
    # Network
    # =========================================================================

    def set_network_status(self, status: str) -> None:
        self.network_status.set(_NETWORK_STATUS_VALUES.get(status, 0))

    def record_probe_latency(self, latency_seconds: float) -> None:
        self.probe_latency.observe(latency_seconds)

    # =========================================================================
    # Background Refresh
    # =========================================================================

    def record_refresh(self, resource: str, outcome: str) -> None:
        """outcome is one of: success, failure, skipped."""
        self.refreshes.labels(resource=resource, outcome=outcome).inc()

    # =========================================================================
    # Redirect Guard
    # =========================================================================

    def record_redirect_denied(self, reason: str) -> None:
        self.redirect_denials.labels(reason=reason).inc()

    # =========================================================================
    # Export
    # =========================================================================

    def get_prometheus_metrics(self) -> bytes:
        """Prometheus text format of this collector's registry."""
        return generate_latest(self.registry)

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def get_sample_value(self, name: str, labels: dict[str, str] | None = None) -> float | None:
        """Read one sample back (mainly for tests and diagnostics)."""
        return self.registry.get_sample_value(name, labels or {})

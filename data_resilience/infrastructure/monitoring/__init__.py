"""Monitoring infrastructure: Prometheus metrics and the network status monitor."""

from data_resilience.infrastructure.monitoring.metrics_collector import MetricsCollector
from data_resilience.infrastructure.monitoring.network_monitor import (
    HttpHealthProbe,
    NetworkStatus,
    NetworkStatusMonitor,
    ProbeOutcome,
)

__all__ = [
    "HttpHealthProbe",
    "MetricsCollector",
    "NetworkStatus",
    "NetworkStatusMonitor",
    "ProbeOutcome",
]

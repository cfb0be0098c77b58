"""
Pytest Configuration and Shared Test Fixtures

This module provides pytest configuration and reusable fixtures for all tests.
All fixtures defined here are automatically available to all test files.

Time is always injected: components receive a `FakeClock` and the retry
engine a `RecordingSleep`, so freshness windows, breaker timeouts and
backoff delays are tested without real waiting.
"""

import asyncio
import os
import random
import sys

import pytest

# Add project root to sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))


# ============================================================================
# Time Doubles
# ============================================================================


class FakeClock:
    """Manually advanced clock (seconds)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records requested delays and only yields."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def rng():
    return random.Random(7)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def settings():
    """
    Settings tuned for tests: zero retry delays, small breaker threshold,
    one-second minimum refresh interval, no persistence.
    """
    from data_resilience.core.config.settings import (
        CircuitBreakerSettings,
        PersistenceSettings,
        RefreshSchedulerSettings,
        RetrySettings,
        Settings,
    )

    return Settings(
        ENVIRONMENT="test",
        retry=RetrySettings(
            RETRY_MAX_ATTEMPTS=3, RETRY_BASE_DELAY=0.0, RETRY_JITTER_FRACTION=0.0
        ),
        circuit_breaker=CircuitBreakerSettings(CB_FAILURE_THRESHOLD=3, CB_RECOVERY_TIMEOUT=30.0),
        refresh=RefreshSchedulerSettings(
            REFRESH_MIN_INTERVAL=1.0, REFRESH_MAX_ATTEMPTS=1, REFRESH_BASE_DELAY=0.0
        ),
        persistence=PersistenceSettings(PERSISTENCE_BACKEND="none"),
    )


# ============================================================================
# Component Fixtures
# ============================================================================


@pytest.fixture
def metrics():
    from data_resilience.infrastructure.monitoring.metrics_collector import MetricsCollector

    return MetricsCollector()


@pytest.fixture
def cache_store(settings, clock, metrics):
    from data_resilience.infrastructure.cache.cache_store import CacheStore

    return CacheStore(settings.cache, clock=clock, metrics=metrics)


@pytest.fixture
def breakers(settings, clock, metrics):
    from data_resilience.core.resilience.circuit_breaker import CircuitBreakerRegistry

    return CircuitBreakerRegistry(settings.circuit_breaker, clock=clock, metrics=metrics)


@pytest.fixture
def network_monitor(settings, clock, metrics):
    """Monitor without a probe: platform signals are applied directly."""
    from data_resilience.infrastructure.monitoring.network_monitor import NetworkStatusMonitor

    return NetworkStatusMonitor(settings=settings.network, clock=clock, metrics=metrics)


@pytest.fixture
def deduplicator(metrics):
    from data_resilience.infrastructure.cache.deduplicator import RequestDeduplicator

    return RequestDeduplicator(metrics=metrics)


@pytest.fixture
def orchestrator(
    settings, clock, recording_sleep, rng, metrics, cache_store, breakers, network_monitor,
    deduplicator,
):
    from data_resilience.application.services.recovery_orchestrator import RecoveryOrchestrator
    from data_resilience.core.resilience.retry import RetryEngine

    return RecoveryOrchestrator(
        cache=cache_store,
        deduplicator=deduplicator,
        breakers=breakers,
        retry_engine=RetryEngine(sleep=recording_sleep, rng=rng, metrics=metrics),
        network_monitor=network_monitor,
        settings=settings,
        clock=clock,
        rng=rng,
        metrics=metrics,
    )


@pytest.fixture
def scheduler(settings, clock, metrics, orchestrator, breakers, network_monitor):
    from data_resilience.application.services.refresh_scheduler import BackgroundRefreshScheduler

    return BackgroundRefreshScheduler(
        orchestrator=orchestrator,
        breakers=breakers,
        network_monitor=network_monitor,
        settings=settings.refresh,
        clock=clock,
        metrics=metrics,
    )


@pytest.fixture
def in_memory_persistence():
    from data_resilience.infrastructure.cache.persistence import InMemoryCachePersistence

    return InMemoryCachePersistence()


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def customers_key():
    from data_resilience.infrastructure.cache.cache_keys import CacheKey

    return CacheKey(resource="customers", params={"page": 1}, tenant_id="clinic-1")


@pytest.fixture
def short_config():
    """10s stale window, 100s expire window."""
    from data_resilience.infrastructure.cache.strategies import CacheConfig

    return CacheConfig(stale_time=10, expire_time=100)


@pytest.fixture
def sample_rows():
    return [{"id": 1, "name": "Ada"}, {"id": 2, "name": "Grace"}]

"""
Outage and Recovery Scenario

Drives one DataAccessLayer through a backend outage: cached data keeps
being served, the circuit opens, offline queries skip the backend, and the
first successful probe closes the circuit again.
"""

import pytest

from data_resilience.application import DataAccessLayer
from data_resilience.core.config.constants import (
    CircuitState,
    ErrorType,
    NetworkStatusLevel,
    ResultSource,
)
from data_resilience.core.exceptions import BackendNetworkError
from data_resilience.infrastructure.cache.cache_keys import CacheKey
from data_resilience.infrastructure.cache.strategies import CacheConfig

CONFIG = CacheConfig(stale_time=10, expire_time=100)


class SwitchableBackend:
    """Returns rows while up, raises a network error while down."""

    def __init__(self, rows):
        self.rows = rows
        self.down = False
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.down:
            raise BackendNetworkError("connection reset by peer")
        return self.rows


@pytest.mark.integration
@pytest.mark.asyncio
async def test_outage_and_recovery(settings, clock, recording_sleep, rng, sample_rows):
    layer = DataAccessLayer(settings, persistence=None, clock=clock, sleep=recording_sleep, rng=rng)
    key = CacheKey(resource="customers", params={"page": 1}, tenant_id="clinic-1")
    backend = SwitchableBackend(sample_rows)
    changes = []
    layer.on_status_change(lambda status: changes.append(status.status))

    async with layer:
        result = await layer.execute_query(backend, key, config=CONFIG)
        assert result.source == ResultSource.NETWORK
        assert backend.calls == 1

        # Outage starts: fresh-window data, then older data
        backend.down = True
        clock.advance(5)
        result = await layer.execute_query(backend, key, config=CONFIG)
        assert result.source == ResultSource.CACHE_STALE
        assert result.data == sample_rows

        clock.advance(1)
        await layer.execute_query(backend, key, config=CONFIG)

        clock.advance(14)
        result = await layer.execute_query(backend, key, config=CONFIG)
        assert result.source == ResultSource.CACHE_EXPIRED
        assert backend.calls == 10
        assert layer.breakers.get_breaker("customers").state == CircuitState.OPEN

        # Offline with an open circuit: the backend is not called at all
        await layer.report_platform_signal(False)
        clock.advance(1)
        result = await layer.execute_query(backend, key, config=CONFIG)
        assert result.source == ResultSource.CACHE_EXPIRED
        assert result.error.error_type == ErrorType.CIRCUIT_OPEN
        assert backend.calls == 10

        # Connectivity returns and the reset timeout elapses: one probe closes the circuit
        await layer.report_platform_signal(True)
        backend.down = False
        clock.advance(29)
        result = await layer.execute_query(backend, key, config=CONFIG)
        assert result.source == ResultSource.NETWORK
        assert backend.calls == 11
        assert layer.breakers.get_breaker("customers").state == CircuitState.CLOSED

        status = layer.get_status()
        assert status["recovery"]["active_recoveries"] == 0
        assert status["recovery"]["recent_recoveries"] == 1
        assert layer.cache.peek(key.render()).stored_at == clock()

    assert changes == [NetworkStatusLevel.OFFLINE, NetworkStatusLevel.ONLINE]
    assert recording_sleep.delays == [0.0] * 6


@pytest.mark.integration
@pytest.mark.asyncio
async def test_cold_start_outage_offers_retry(settings, clock, recording_sleep, rng):
    backend = SwitchableBackend([])
    backend.down = True

    async with DataAccessLayer(
        settings, persistence=None, clock=clock, sleep=recording_sleep, rng=rng
    ) as layer:
        result = await layer.execute_query(backend, CacheKey(resource="appointments"))

    assert result.source == ResultSource.OFFLINE
    assert result.retryable
    assert result.retry_delay == 10.0
    assert result.data is None

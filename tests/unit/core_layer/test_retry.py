"""
Unit Tests for RetryEngine

Tests attempt counting, the backoff formula (with and without jitter),
non-retryable short-circuiting and retry metrics. Sleeps are recorded, never
awaited for real.
"""

import random

import pytest

from data_resilience.core.config.settings import RetrySettings
from data_resilience.core.exceptions import (
    BackendNetworkError,
    BackendPermissionError,
    BackendSchemaError,
    CircuitBreakerOpenError,
)
from data_resilience.core.resilience.retry import RetryEngine, RetryPolicy
from tests.test_fixtures import BackendTestFactory


@pytest.fixture
def engine(recording_sleep, metrics):
    return RetryEngine(sleep=recording_sleep, rng=random.Random(1), metrics=metrics)


def _policy(**overrides) -> RetryPolicy:
    values = {"max_attempts": 3, "base_delay": 1.0, "backoff_multiplier": 2.0, "jitter_fraction": 0.0}
    values.update(overrides)
    return RetryPolicy(**values)


@pytest.mark.unit
class TestRetryPolicy:
    def test_from_settings(self):
        policy = RetryPolicy.from_settings(
            RetrySettings(RETRY_MAX_ATTEMPTS=5, RETRY_BASE_DELAY=0.5, RETRY_MAX_DELAY=4.0)
        )
        assert policy.max_attempts == 5
        assert policy.base_delay == 0.5
        assert policy.max_delay == 4.0

    @pytest.mark.parametrize(
        "overrides",
        [
            {"max_attempts": 0},
            {"base_delay": -1.0},
            {"backoff_multiplier": 0.5},
            {"jitter_fraction": 1.5},
        ],
    )
    def test_invalid_policies_rejected(self, overrides):
        with pytest.raises(ValueError):
            _policy(**overrides)


@pytest.mark.unit
class TestRetryEngine:
    @pytest.mark.asyncio
    async def test_first_success_does_not_sleep(self, engine, recording_sleep):
        backend = BackendTestFactory.succeeding("rows")
        assert await engine.execute_with_retry(backend, _policy()) == "rows"
        assert backend.calls == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_until_success(self, engine, recording_sleep):
        backend = BackendTestFactory.flaky(BackendNetworkError("reset"), failures=2, data="rows")
        assert await engine.execute_with_retry(backend, _policy()) == "rows"
        assert backend.calls == 3
        assert recording_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_last_error(self, engine, recording_sleep):
        error = BackendNetworkError("reset")
        backend = BackendTestFactory.failing(error)

        with pytest.raises(BackendNetworkError) as exc_info:
            await engine.execute_with_retry(backend, _policy(max_attempts=4))

        assert exc_info.value is error
        assert backend.calls == 4
        assert recording_sleep.delays == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            BackendPermissionError("forbidden"),
            BackendSchemaError("column does not exist"),
            CircuitBreakerOpenError("open"),
        ],
    )
    async def test_non_retryable_errors_stop_immediately(self, engine, recording_sleep, error):
        backend = BackendTestFactory.failing(error)
        with pytest.raises(type(error)):
            await engine.execute_with_retry(backend, _policy())
        assert backend.calls == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_delay_capped_at_max_delay(self, engine, recording_sleep):
        backend = BackendTestFactory.failing(BackendNetworkError("reset"))
        with pytest.raises(BackendNetworkError):
            await engine.execute_with_retry(
                backend, _policy(base_delay=5.0, backoff_multiplier=10.0, max_delay=8.0)
            )
        assert recording_sleep.delays == [5.0, 8.0]

    @pytest.mark.asyncio
    async def test_jitter_stays_within_fraction(self, engine, recording_sleep):
        backend = BackendTestFactory.failing(BackendNetworkError("reset"))
        with pytest.raises(BackendNetworkError):
            await engine.execute_with_retry(
                backend, _policy(max_attempts=6, base_delay=1.0, backoff_multiplier=1.0,
                                 jitter_fraction=0.5)
            )
        assert len(recording_sleep.delays) == 5
        assert all(0.5 <= d <= 1.5 for d in recording_sleep.delays)

    @pytest.mark.asyncio
    async def test_custom_predicate(self, engine):
        backend = BackendTestFactory.failing(ValueError("nope"))
        policy = _policy(is_retryable=lambda e: False)
        with pytest.raises(ValueError):
            await engine.execute_with_retry(backend, policy)
        assert backend.calls == 1

    @pytest.mark.asyncio
    async def test_retry_attempts_counted(self, engine, metrics):
        backend = BackendTestFactory.failing(BackendNetworkError("reset"))
        with pytest.raises(BackendNetworkError):
            await engine.execute_with_retry(backend, _policy(), label="customers")
        assert metrics.get_sample_value(
            "data_access_retry_attempts_total", {"label": "customers"}
        ) == 2.0

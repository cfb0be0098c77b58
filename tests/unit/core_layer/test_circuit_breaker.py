"""
Unit Tests for CircuitBreaker

Tests state transitions (closed -> open -> half-open -> closed), the single
probe rule, timeout backoff after a failed probe, neutral errors, and the
per-scope registry.
"""

import asyncio

import pytest

from data_resilience.core.config.constants import CircuitState
from data_resilience.core.exceptions import (
    BackendNetworkError,
    BackendPermissionError,
    CircuitBreakerOpenError,
)
from data_resilience.core.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry


async def _fail():
    raise BackendNetworkError("connection reset")


async def _ok():
    return "ok"


@pytest.fixture
def breaker(clock, metrics):
    return CircuitBreaker(
        "customers",
        failure_threshold=3,
        reset_timeout=10.0,
        timeout_multiplier=2.0,
        max_reset_timeout=25.0,
        clock=clock,
        metrics=metrics,
    )


async def _trip(breaker: CircuitBreaker) -> None:
    for _ in range(breaker.failure_threshold):
        with pytest.raises(BackendNetworkError):
            await breaker.call(_fail)


@pytest.mark.unit
class TestCircuitBreakerTransitions:
    @pytest.mark.asyncio
    async def test_starts_closed_and_passes_calls(self, breaker):
        assert breaker.state == CircuitState.CLOSED
        assert await breaker.call(_ok) == "ok"
        assert breaker.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_opens_at_threshold(self, breaker):
        for expected in (1, 2):
            with pytest.raises(BackendNetworkError):
                await breaker.call(_fail)
            assert breaker.consecutive_failures == expected
            assert breaker.state == CircuitState.CLOSED

        with pytest.raises(BackendNetworkError):
            await breaker.call(_fail)

        assert breaker.state == CircuitState.OPEN
        assert breaker.is_open()

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, breaker):
        with pytest.raises(BackendNetworkError):
            await breaker.call(_fail)
        await breaker.call(_ok)
        assert breaker.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast_without_calling(self, breaker):
        await _trip(breaker)
        calls = 0

        async def counted():
            nonlocal calls
            calls += 1
            return "ok"

        with pytest.raises(CircuitBreakerOpenError):
            await breaker.call(counted)
        assert calls == 0

    @pytest.mark.asyncio
    async def test_probe_after_timeout_closes_on_success(self, breaker, clock):
        await _trip(breaker)
        clock.advance(9.9)
        assert not breaker.should_allow_request()

        clock.advance(0.1)
        assert await breaker.call(_ok) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_only_one_probe_while_half_open(self, breaker, clock):
        await _trip(breaker)
        clock.advance(10.0)

        gate = asyncio.Event()

        async def slow_probe():
            await gate.wait()
            return "probe"

        probe = asyncio.create_task(breaker.call(slow_probe))
        await asyncio.sleep(0)
        assert breaker.state == CircuitState.HALF_OPEN

        with pytest.raises(CircuitBreakerOpenError):
            await breaker.call(_ok)

        gate.set()
        assert await probe == "probe"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_failed_probe_reopens_with_longer_timeout(self, breaker, clock):
        await _trip(breaker)
        clock.advance(10.0)

        with pytest.raises(BackendNetworkError):
            await breaker.call(_fail)

        assert breaker.state == CircuitState.OPEN
        assert breaker.reset_timeout == 20.0
        assert breaker.seconds_until_probe() == pytest.approx(20.0)

        clock.advance(20.0)
        with pytest.raises(BackendNetworkError):
            await breaker.call(_fail)
        # Capped at max_reset_timeout
        assert breaker.reset_timeout == 25.0

    @pytest.mark.asyncio
    async def test_successful_probe_restores_base_timeout(self, breaker, clock):
        await _trip(breaker)
        clock.advance(10.0)
        with pytest.raises(BackendNetworkError):
            await breaker.call(_fail)
        clock.advance(20.0)

        await breaker.call(_ok)
        assert breaker.reset_timeout == 10.0


@pytest.mark.unit
class TestCircuitBreakerNeutralErrors:
    @pytest.mark.asyncio
    async def test_permission_errors_do_not_count(self, breaker):
        async def denied():
            raise BackendPermissionError("JWT expired")

        for _ in range(5):
            with pytest.raises(BackendPermissionError):
                await breaker.call(denied)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_record_failures_false_never_opens(self, breaker):
        for _ in range(5):
            with pytest.raises(BackendNetworkError):
                await breaker.call(_fail, record_failures=False)
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_failed_half_open_call_reopens_even_without_recording(self, breaker, clock):
        await _trip(breaker)
        clock.advance(10.0)

        with pytest.raises(BackendNetworkError):
            await breaker.call(_fail, record_failures=False)

        assert breaker.state == CircuitState.OPEN
        assert breaker.reset_timeout == 20.0
        with pytest.raises(CircuitBreakerOpenError):
            await breaker.call(_ok, record_failures=False)

    @pytest.mark.asyncio
    async def test_neutral_probe_failure_releases_probe_slot(self, breaker, clock):
        await _trip(breaker)
        clock.advance(10.0)

        async def denied():
            raise BackendPermissionError("forbidden")

        with pytest.raises(BackendPermissionError):
            await breaker.call(denied)

        assert breaker.state == CircuitState.HALF_OPEN
        assert not breaker.snapshot().probe_in_flight
        assert await breaker.call(_ok) == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_cancelled_probe_releases_probe_slot(self, breaker, clock):
        await _trip(breaker)
        clock.advance(10.0)

        probe = asyncio.create_task(breaker.call(lambda: asyncio.sleep(10)))
        await asyncio.sleep(0)
        probe.cancel()
        with pytest.raises(asyncio.CancelledError):
            await probe

        assert not breaker.snapshot().probe_in_flight


@pytest.mark.unit
class TestCircuitBreakerManualControl:
    def test_force_open_and_reset(self, breaker, clock):
        breaker.force_open()
        assert breaker.state == CircuitState.OPEN
        assert breaker.consecutive_failures >= breaker.failure_threshold
        assert breaker.seconds_until_probe() == pytest.approx(10.0)

        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.seconds_until_probe() == 0.0

    def test_invalid_threshold_rejected(self):
        with pytest.raises(ValueError):
            CircuitBreaker("x", failure_threshold=0)

    def test_state_gauge_follows_transitions(self, breaker, metrics):
        breaker.force_open()
        assert metrics.get_sample_value(
            "data_access_circuit_breaker_state", {"scope": "customers"}
        ) == 2.0
        breaker.reset()
        assert metrics.get_sample_value(
            "data_access_circuit_breaker_state", {"scope": "customers"}
        ) == 0.0


@pytest.mark.unit
class TestCircuitBreakerRegistry:
    def test_one_breaker_per_scope(self, breakers):
        first = breakers.get_breaker("customers")
        assert breakers.get_breaker("customers") is first
        assert breakers.get_breaker("clinicians") is not first

    def test_breaker_uses_settings(self, breakers, settings):
        breaker = breakers.get_breaker("customers")
        assert breaker.failure_threshold == settings.circuit_breaker.CB_FAILURE_THRESHOLD
        assert breaker.reset_timeout == settings.circuit_breaker.CB_RECOVERY_TIMEOUT

    def test_is_open_for_unknown_scope_is_false(self, breakers):
        assert not breakers.is_open("nothing")
        assert not breakers.has_breaker("nothing")

    def test_get_stats_and_reset_all(self, breakers):
        breakers.get_breaker("customers").force_open()
        breakers.get_breaker("clinicians")

        stats = breakers.get_stats()
        assert stats["customers"]["state"] == "open"
        assert stats["clinicians"]["state"] == "closed"

        breakers.reset_all()
        assert not breakers.is_open("customers")

    def test_registry_scopes_are_independent(self):
        registry = CircuitBreakerRegistry()
        registry.get_breaker("a").force_open()
        assert registry.is_open("a")
        assert not registry.is_open("b")

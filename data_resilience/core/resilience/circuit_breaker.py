"""
Circuit Breaker for Backend Scopes.

This module implements an in-process circuit breaker keyed per logical scope
(a resource, or the backend as a whole), so one failing resource does not
starve unrelated ones.

MECHANISM OF ACTION:
-------------------
1.  **CLOSED**: Calls pass through.
    - On Failure: `consecutive_failures` increments.
    - On Success: `consecutive_failures` resets to 0.
    - Threshold Reached: state transitions to OPEN and `opened_at` is recorded.

2.  **OPEN**: Calls fail fast with `CircuitBreakerOpenError` without touching
    the network. Once `reset_timeout` has elapsed since `opened_at`, the next
    call is let through as a probe and the state becomes HALF_OPEN.

3.  **HALF_OPEN**: Exactly one probe in flight.
    - On Success: CLOSED, counters and timeout reset.
    - On Failure: OPEN again with `reset_timeout` multiplied (capped) to
      avoid probe storms against a backend that is still down.

Errors that say nothing about backend health (permission, schema) are
neutral: they neither count as failures nor close a probing circuit.
"""

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from data_resilience.core.config.constants import CircuitState, Stage
from data_resilience.core.config.settings import CircuitBreakerSettings, get_settings
from data_resilience.core.exceptions import CircuitBreakerOpenError
from data_resilience.core.logging.logger import get_logger, log_stage
from data_resilience.core.resilience.error_classification import classify_error

logger = get_logger(__name__)


@dataclass(frozen=True)
class CircuitSnapshot:
    """Point-in-time view of one breaker."""

    scope: str
    state: CircuitState
    consecutive_failures: int
    last_failure_at: float | None
    opened_at: float | None
    reset_timeout: float
    probe_in_flight: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope": self.scope,
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "last_failure_at": self.last_failure_at,
            "opened_at": self.opened_at,
            "reset_timeout": self.reset_timeout,
            "probe_in_flight": self.probe_in_flight,
        }


class CircuitBreaker:
    """
    A lightweight, asyncio-friendly circuit breaker for one scope.

    All state lives on the instance and is only mutated through its methods.
    Because the layer runs on a single event loop and none of the state
    transitions await, every transition is atomic with respect to other tasks.
    """

    def __init__(
        self,
        scope: str,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        timeout_multiplier: float = 2.0,
        max_reset_timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        metrics=None,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")

        self.scope = scope
        self._failure_threshold = failure_threshold
        self._base_reset_timeout = reset_timeout
        self._timeout_multiplier = timeout_multiplier
        self._max_reset_timeout = max(max_reset_timeout, reset_timeout)
        self._clock = clock
        self._metrics = metrics

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_at: float | None = None
        self._opened_at: float | None = None
        self._reset_timeout = reset_timeout
        self._probe_in_flight = False

    # ------------------------------------------------------------------
    # State inspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_threshold(self) -> int:
        return self._failure_threshold

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def reset_timeout(self) -> float:
        return self._reset_timeout

    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    def seconds_until_probe(self) -> float:
        """Time left before an OPEN circuit lets a probe through (0 otherwise)."""
        if self._state != CircuitState.OPEN:
            return 0.0
        elapsed = self._clock() - (self._opened_at or 0.0)
        return max(0.0, self._reset_timeout - elapsed)

    def snapshot(self) -> CircuitSnapshot:
        return CircuitSnapshot(
            scope=self.scope,
            state=self._state,
            consecutive_failures=self._consecutive_failures,
            last_failure_at=self._last_failure_at,
            opened_at=self._opened_at,
            reset_timeout=self._reset_timeout,
            probe_in_flight=self._probe_in_flight,
        )

    def _set_state(self, state: CircuitState) -> None:
        if state == self._state:
            return
        previous = self._state
        self._state = state
        log_stage(
            logger,
            Stage.CIRCUIT_BREAKER,
            f"Circuit '{self.scope}' changed state to {state.value}",
            level="warning" if state == CircuitState.OPEN else "info",
            scope=self.scope,
            previous=previous.value,
            consecutive_failures=self._consecutive_failures,
            reset_timeout=self._reset_timeout,
        )
        if self._metrics:
            self._metrics.set_circuit_state(self.scope, state.value)

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------

    def should_allow_request(self) -> bool:
        """
        Decide whether a call may proceed.

        Logic:
        1. CLOSED -> allow.
        2. OPEN -> allow (as the single probe, entering HALF_OPEN) once
           reset_timeout has elapsed since opened_at, otherwise block.
        3. HALF_OPEN -> block while the probe is in flight.
        """
        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            elapsed = self._clock() - (self._opened_at or 0.0)
            if elapsed < self._reset_timeout:
                return False
            self._set_state(CircuitState.HALF_OPEN)
            self._probe_in_flight = True
            log_stage(logger, Stage.CIRCUIT_BREAKER, f"Circuit '{self.scope}' probe allowed")
            return True

        # HALF_OPEN
        if self._probe_in_flight:
            return False
        self._probe_in_flight = True
        return True

    # ------------------------------------------------------------------
    # Outcome recording
    # ------------------------------------------------------------------

    def record_success(self) -> None:
        """Close the circuit (if probing) and reset the failure counter."""
        if self._state != CircuitState.CLOSED:
            log_stage(
                logger, Stage.CIRCUIT_BREAKER, f"Circuit '{self.scope}' recovered, closing"
            )
        self._consecutive_failures = 0
        self._probe_in_flight = False
        self._reset_timeout = self._base_reset_timeout
        self._opened_at = None
        self._set_state(CircuitState.CLOSED)

    def record_failure(self) -> None:
        """Count a failure; open (or re-open with a longer timeout) when due."""
        now = self._clock()
        self._consecutive_failures += 1
        self._last_failure_at = now

        if self._metrics:
            self._metrics.record_circuit_failure(self.scope)

        if self._state == CircuitState.HALF_OPEN:
            self._probe_in_flight = False
            self._reset_timeout = min(
                self._reset_timeout * self._timeout_multiplier, self._max_reset_timeout
            )
            # Keep the OPEN invariant even after a manual reset into HALF_OPEN
            self._consecutive_failures = max(self._consecutive_failures, self._failure_threshold)
            self._opened_at = now
            self._set_state(CircuitState.OPEN)
            return

        log_stage(
            logger,
            Stage.CIRCUIT_BREAKER,
            f"Circuit '{self.scope}' recorded failure "
            f"({self._consecutive_failures}/{self._failure_threshold})",
            level="debug",
        )

        if self._state == CircuitState.CLOSED and (
            self._consecutive_failures >= self._failure_threshold
        ):
            self._opened_at = now
            self._set_state(CircuitState.OPEN)

    def release_probe(self) -> None:
        """
        Release a probe slot without deciding the circuit's fate.

        Used when the probe was cancelled or ended in a neutral error, so the
        next caller may probe instead of the circuit staying blocked forever.
        """
        self._probe_in_flight = False

    # ------------------------------------------------------------------
    # Manual control
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Force the circuit CLOSED and clear all counters."""
        self._consecutive_failures = 0
        self._last_failure_at = None
        self._opened_at = None
        self._probe_in_flight = False
        self._reset_timeout = self._base_reset_timeout
        self._set_state(CircuitState.CLOSED)
        log_stage(logger, Stage.CIRCUIT_BREAKER, f"Circuit '{self.scope}' manually reset")

    def force_open(self) -> None:
        """Force the circuit OPEN starting now."""
        self._consecutive_failures = max(self._consecutive_failures, self._failure_threshold)
        self._opened_at = self._clock()
        self._probe_in_flight = False
        self._set_state(CircuitState.OPEN)
        log_stage(
            logger, Stage.CIRCUIT_BREAKER, f"Circuit '{self.scope}' forced open", level="warning"
        )

    # ------------------------------------------------------------------
    # Call wrapper
    # ------------------------------------------------------------------

    async def call(
        self,
        func: Callable[[], Awaitable[Any]],
        record_failures: bool = True,
    ) -> Any:
        """
        Run `func` behind the breaker gate.

        Computes: Gate -> Execution -> State Update

        Args:
            func: Zero-argument coroutine function (usually a retry loop)
            record_failures: When False, failures while CLOSED never count
                against the circuit. A failed HALF_OPEN probe always re-opens
                it.

        Raises:
            CircuitBreakerOpenError: when the gate is closed
            Whatever `func` raises
        """
        if not self.should_allow_request():
            raise CircuitBreakerOpenError(
                message=f"Circuit open for {self.scope}",
                details={"scope": self.scope, "reset_timeout": self._reset_timeout},
            )
        probing = self._state == CircuitState.HALF_OPEN

        try:
            result = await func()
        except Exception as e:
            classified = classify_error(e)
            if classified.trips_breaker and (record_failures or probing):
                self.record_failure()
            else:
                self.release_probe()
            raise
        except BaseException:
            self.release_probe()
            raise

        self.record_success()
        return result


# ============================================================================
# Registry
# ============================================================================


class CircuitBreakerRegistry:
    """Creates and holds one breaker per scope."""

    def __init__(
        self,
        settings: CircuitBreakerSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
        metrics=None,
    ):
        self.settings = settings or get_settings().circuit_breaker
        self._clock = clock
        self._metrics = metrics
        self._breakers: dict[str, CircuitBreaker] = {}

    def get_breaker(self, scope: str) -> CircuitBreaker:
        if scope not in self._breakers:
            self._breakers[scope] = CircuitBreaker(
                scope,
                failure_threshold=self.settings.CB_FAILURE_THRESHOLD,
                reset_timeout=self.settings.CB_RECOVERY_TIMEOUT,
                timeout_multiplier=self.settings.CB_TIMEOUT_MULTIPLIER,
                max_reset_timeout=self.settings.CB_MAX_RECOVERY_TIMEOUT,
                clock=self._clock,
                metrics=self._metrics,
            )
        return self._breakers[scope]

    def has_breaker(self, scope: str) -> bool:
        return scope in self._breakers

    def is_open(self, scope: str) -> bool:
        breaker = self._breakers.get(scope)
        return breaker is not None and breaker.is_open()

    def get_stats(self) -> dict[str, dict[str, Any]]:
        return {scope: breaker.snapshot().to_dict() for scope, breaker in self._breakers.items()}

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()

"""
Retry Engine

Re-issues failed backend calls with bounded, jittered exponential backoff.

Algorithm:
    attempt 1 runs immediately
    attempt n (n > 1) waits base_delay * backoff_multiplier ** (n - 2)
    scaled by a random factor in [1 - jitter_fraction, 1 + jitter_fraction]
    and capped at max_delay

A non-retryable error (per `policy.is_retryable`) stops immediately. When the
attempts are exhausted the last error is re-raised unchanged: callers see the
backend's error, never a retry-specific wrapper.

Built on tenacity's AsyncRetrying with a custom wait strategy so the exact
backoff formula and an injectable sleep (for tests) are both available.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from data_resilience.core.config.constants import Stage
from data_resilience.core.config.settings import RetrySettings
from data_resilience.core.logging.logger import get_logger, log_stage
from data_resilience.core.resilience.error_classification import is_retryable_error

logger = get_logger(__name__)

# Tenacity needs a stdlib logger for before_sleep_log
std_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Parameters of one retry loop.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Seconds to wait before the second attempt
        backoff_multiplier: Growth factor between consecutive delays
        jitter_fraction: Relative jitter applied to every delay (0 disables)
        max_delay: Upper bound for a single delay
        is_retryable: Predicate deciding whether an error may be retried
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    backoff_multiplier: float = 2.0
    jitter_fraction: float = 0.1
    max_delay: float = 10.0
    is_retryable: Callable[[BaseException], bool] = field(default=is_retryable_error)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")
        if not 0 <= self.jitter_fraction <= 1:
            raise ValueError("jitter_fraction must be within [0, 1]")

    @classmethod
    def from_settings(
        cls,
        settings: RetrySettings,
        is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    ) -> "RetryPolicy":
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY,
            backoff_multiplier=settings.RETRY_BACKOFF_MULTIPLIER,
            jitter_fraction=settings.RETRY_JITTER_FRACTION,
            max_delay=settings.RETRY_MAX_DELAY,
            is_retryable=is_retryable,
        )


class wait_backoff_with_jitter(wait_base):
    """Tenacity wait strategy implementing the RetryPolicy backoff formula."""

    def __init__(self, policy: RetryPolicy, rng: random.Random | None = None):
        self._policy = policy
        self._rng = rng or random.Random()

    def __call__(self, retry_state: RetryCallState) -> float:
        # attempt_number counts attempts already made; the upcoming attempt is n + 1
        exponent = max(retry_state.attempt_number - 1, 0)
        delay = self._policy.base_delay * (self._policy.backoff_multiplier ** exponent)

        if self._policy.jitter_fraction:
            jitter = self._rng.uniform(-self._policy.jitter_fraction, self._policy.jitter_fraction)
            delay *= 1 + jitter

        return max(0.0, min(delay, self._policy.max_delay))


class RetryEngine:
    """
    Executes async operations under a RetryPolicy.

    Usage:
        engine = RetryEngine()
        data = await engine.execute_with_retry(fetch_clients, RetryPolicy(max_attempts=3))
    """

    def __init__(
        self,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
        metrics=None,
    ):
        self._sleep = sleep
        self._rng = rng
        self._metrics = metrics

    @staticmethod
    def _retry_predicate(policy: RetryPolicy) -> Callable[[BaseException], bool]:
        # CancelledError and other BaseExceptions are never retried
        def predicate(error: BaseException) -> bool:
            return isinstance(error, Exception) and policy.is_retryable(error)

        return predicate

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[Any]],
        policy: RetryPolicy,
        label: str = "operation",
    ) -> Any:
        """
        Run `operation` until it succeeds, fails non-retryably, or attempts run out.

        STAGE-R: Retry loop

        Args:
            operation: Zero-argument coroutine function
            policy: Retry policy to apply
            label: Name used in logs and metrics

        Returns:
            The operation's result

        Raises:
            The last error raised by `operation`
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_backoff_with_jitter(policy, self._rng),
            retry=retry_if_exception(self._retry_predicate(policy)),
            before_sleep=before_sleep_log(std_logger, logging.WARNING),
            reraise=True,
            sleep=self._sleep,
        )

        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempts += 1
                    if attempts > 1 and self._metrics:
                        self._metrics.record_retry_attempt(label)
                    result = await operation()
        except Exception as e:
            log_stage(
                logger,
                Stage.RETRY,
                "Retry loop gave up",
                level="warning",
                label=label,
                attempts=attempts,
                max_attempts=policy.max_attempts,
                error_type=type(e).__name__,
            )
            raise

        if attempts > 1:
            log_stage(logger, Stage.RETRY, "Succeeded after retry", label=label, attempts=attempts)
        return result

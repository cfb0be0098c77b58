"""
Resilience primitives: error classification, retry engine, circuit breaker
and the cancellable ticker used by background loops.
"""

from data_resilience.core.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitSnapshot,
)
from data_resilience.core.resilience.error_classification import (
    ClassifiedError,
    classify_error,
    classify_error_type,
    is_retryable_error,
)
from data_resilience.core.resilience.retry import RetryEngine, RetryPolicy
from data_resilience.core.resilience.ticker import Ticker

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitSnapshot",
    "ClassifiedError",
    "RetryEngine",
    "RetryPolicy",
    "Ticker",
    "classify_error",
    "classify_error_type",
    "is_retryable_error",
]

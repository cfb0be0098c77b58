"""
Circuit Breaker Exceptions
"""

from data_resilience.core.exceptions.base import DataAccessError


class CircuitBreakerError(DataAccessError):
    """Base exception for circuit breaker errors."""
    pass


class CircuitBreakerOpenError(CircuitBreakerError):
    """
    Raised when the circuit breaker for a scope is open (fail fast).

    Synthetic: no network call was attempted. The recovery orchestrator
    treats it as an immediate fallback trigger and never retries it.
    """
    pass

"""
Exception Module

Structured exception hierarchy for the data-access layer, organized by theme.

Module Structure:
-----------------
- **base.py**: DataAccessError base class + ConfigurationError
- **backend.py**: Backend failures (network, timeout, permission, schema)
- **circuit_breaker.py**: Circuit breaker exceptions
- **cache.py**: Cache store and persistence exceptions
- **scheduler.py**: Background refresh scheduler exceptions

Usage:
------
```python
from data_resilience.core.exceptions import BackendTimeoutError, CircuitBreakerOpenError
```
"""

from data_resilience.core.exceptions.backend import (
    BackendError,
    BackendNetworkError,
    BackendPermissionError,
    BackendSchemaError,
    BackendTimeoutError,
)
from data_resilience.core.exceptions.base import ConfigurationError, DataAccessError
from data_resilience.core.exceptions.cache import (
    CacheError,
    CacheKeyError,
    CachePersistenceError,
    CacheSerializationError,
)
from data_resilience.core.exceptions.circuit_breaker import (
    CircuitBreakerError,
    CircuitBreakerOpenError,
)
from data_resilience.core.exceptions.scheduler import SchedulerError, UnknownScheduleError

__all__ = [
    "BackendError",
    "BackendNetworkError",
    "BackendPermissionError",
    "BackendSchemaError",
    "BackendTimeoutError",
    "CacheError",
    "CacheKeyError",
    "CachePersistenceError",
    "CacheSerializationError",
    "CircuitBreakerError",
    "CircuitBreakerOpenError",
    "ConfigurationError",
    "DataAccessError",
    "SchedulerError",
    "UnknownScheduleError",
]

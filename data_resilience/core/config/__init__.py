"""
Configuration Module

Centralized, type-safe configuration for the data-access layer.

Components:
-----------
- **settings.py**: Pydantic-based configuration with environment variable loading
- **constants.py**: Enums (Stage, CircuitState, CachePriority, ErrorType, ...),
  user-facing messages and retry hints

Usage:
------
```python
from data_resilience.core.config import get_settings
from data_resilience.core.config.constants import CircuitState

settings = get_settings()
threshold = settings.circuit_breaker.CB_FAILURE_THRESHOLD
```
"""

from data_resilience.core.config.settings import Settings, get_settings, reload_settings

__all__ = ["Settings", "get_settings", "reload_settings"]

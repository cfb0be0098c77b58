"""
Cache-Related Exceptions
"""

from data_resilience.core.exceptions.base import DataAccessError


class CacheError(DataAccessError):
    """Base exception for cache-related errors."""
    pass


class CacheSerializationError(CacheError):
    """
    Raised when a payload cannot be stored because it is not serializable.

    Payloads are validated with orjson at the boundary where data enters
    the cache, so the size estimate and the persistence mirror always work.
    """
    pass


class CachePersistenceError(CacheError):
    """
    Raised by persistence mirrors when the durable store is unusable.

    The cache store logs these and keeps serving from memory.
    """
    pass


class CacheKeyError(CacheError):
    """Raised when a cache key cannot be built from the given parts."""
    pass

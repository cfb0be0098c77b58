"""
Cache infrastructure: typed keys, per-resource strategies, the in-memory
store with its persistence mirrors, and the request deduplicator.
"""

from data_resilience.infrastructure.cache.cache_keys import CacheKey, resource_prefix
from data_resilience.infrastructure.cache.cache_store import (
    CacheEntry,
    CacheLookup,
    CacheMetrics,
    CacheStore,
)
from data_resilience.infrastructure.cache.deduplicator import InFlightRequest, RequestDeduplicator
from data_resilience.infrastructure.cache.persistence import (
    InMemoryCachePersistence,
    RedisCachePersistence,
    create_persistence,
)
from data_resilience.infrastructure.cache.strategies import (
    CACHE_STRATEGIES,
    CacheConfig,
    get_cache_config,
)

__all__ = [
    "CACHE_STRATEGIES",
    "CacheConfig",
    "CacheEntry",
    "CacheKey",
    "CacheLookup",
    "CacheMetrics",
    "CacheStore",
    "InFlightRequest",
    "InMemoryCachePersistence",
    "RedisCachePersistence",
    "RequestDeduplicator",
    "create_persistence",
    "get_cache_config",
    "resource_prefix",
]

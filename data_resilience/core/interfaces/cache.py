"""
Cache Persistence Protocol

Abstract protocol for durable mirrors of cache entries, enabling entries
(session and role caches in particular) to survive process restarts.

Architectural Decision: Protocol-based abstraction
- Redis-backed mirror in production, in-memory mirror for tests/development
- The cache store only depends on this interface
- Values are opaque serialized CacheEntry documents (bytes)
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class CachePersistence(Protocol):
    """
    Interface for durable cache mirrors.

    Implementations:
    - RedisCachePersistence: redis.asyncio-backed mirror
    - InMemoryCachePersistence: process-local mirror for tests

    Implementations raise `CachePersistenceError` when the underlying store
    is unusable; the cache store catches and logs those.
    """

    async def connect(self) -> None:
        """Open the underlying connection (no-op when not needed)."""
        ...

    async def close(self) -> None:
        """Release the underlying connection."""
        ...

    async def save(self, key: str, document: bytes) -> None:
        """
        Store a serialized entry under `key`, replacing any previous one.
        """
        ...

    async def load(self, key: str) -> bytes | None:
        """
        Return the serialized entry stored under `key`, or None.
        """
        ...

    async def delete(self, key: str) -> None:
        """Remove the entry stored under `key` (missing keys are ignored)."""
        ...

    async def load_all(self) -> dict[str, bytes]:
        """Return every stored entry keyed by cache key."""
        ...

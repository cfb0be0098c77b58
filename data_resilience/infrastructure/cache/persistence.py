#!/usr/bin/env python3
"""
Cache Persistence Mirrors

Durable copies of cache entries flagged `persist` (session and settings data),
so they can be restored after a restart.

- RedisCachePersistence: redis.asyncio with a connection pool and per-key TTL
- InMemoryCachePersistence: dict-backed, for tests and development

Both satisfy the `CachePersistence` protocol and raise
`CachePersistenceError` when the store is unusable.
"""

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError

from data_resilience.core.config.constants import PERSISTENCE_KEY_PREFIX, Stage
from data_resilience.core.config.settings import PersistenceSettings, get_settings
from data_resilience.core.exceptions import CachePersistenceError, ConfigurationError
from data_resilience.core.interfaces.cache import CachePersistence
from data_resilience.core.logging.logger import get_logger, log_stage

logger = get_logger(__name__)


class InMemoryCachePersistence:
    """Process-local mirror. Survives `CacheStore.clear()`, not the process."""

    def __init__(self):
        self._documents: dict[str, bytes] = {}
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    async def save(self, key: str, document: bytes) -> None:
        self._documents[key] = document

    async def load(self, key: str) -> bytes | None:
        return self._documents.get(key)

    async def delete(self, key: str) -> None:
        self._documents.pop(key, None)

    async def load_all(self) -> dict[str, bytes]:
        return dict(self._documents)


class RedisCachePersistence:
    """
    Redis-backed mirror.

    STAGE-P: Cache persistence

    Keys are `<key_prefix>:<cache key>` and expire after `ttl` seconds, so
    abandoned entries never accumulate.
    """

    def __init__(
        self,
        url: str | None = None,
        ttl: int | None = None,
        key_prefix: str = PERSISTENCE_KEY_PREFIX,
        client: redis.Redis | None = None,
    ):
        settings = get_settings().persistence if url is None or ttl is None else None
        self._url = url or settings.REDIS_URL
        self._ttl = ttl or settings.PERSISTENCE_KEY_TTL
        self._prefix = key_prefix.rstrip(":") + ":"
        self._pool: ConnectionPool | None = None
        self._client: redis.Redis | None = client

    def _key(self, key: str) -> str:
        return self._prefix + key

    def _require_client(self) -> redis.Redis:
        if self._client is None:
            raise CachePersistenceError("Redis persistence used before connect()")
        return self._client

    async def connect(self) -> None:
        """
        Create the pool and verify it with PING.

        Raises:
            CachePersistenceError: Redis is unreachable
        """
        if self._client is None:
            self._pool = ConnectionPool.from_url(self._url)
            self._client = redis.Redis(connection_pool=self._pool)
        try:
            await self._client.ping()
        except RedisError as e:
            logger.error("Failed to connect to Redis", stage=Stage.PERSISTENCE.value, error=str(e))
            raise CachePersistenceError(
                f"Failed to connect to Redis: {e}", details={"url": self._url}
            ) from e
        log_stage(logger, Stage.PERSISTENCE, "Redis persistence connected", ttl=self._ttl)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None

    async def save(self, key: str, document: bytes) -> None:
        try:
            await self._require_client().set(self._key(key), document, ex=self._ttl)
        except RedisError as e:
            raise CachePersistenceError(f"Redis save failed: {e}", details={"key": key}) from e

    async def load(self, key: str) -> bytes | None:
        try:
            return await self._require_client().get(self._key(key))
        except RedisError as e:
            raise CachePersistenceError(f"Redis load failed: {e}", details={"key": key}) from e

    async def delete(self, key: str) -> None:
        try:
            await self._require_client().delete(self._key(key))
        except RedisError as e:
            raise CachePersistenceError(f"Redis delete failed: {e}", details={"key": key}) from e

    async def load_all(self) -> dict[str, bytes]:
        client = self._require_client()
        documents: dict[str, bytes] = {}
        try:
            async for raw_key in client.scan_iter(match=self._prefix + "*"):
                name = raw_key.decode() if isinstance(raw_key, bytes) else raw_key
                document = await client.get(raw_key)
                if document is not None:
                    documents[name[len(self._prefix):]] = document
        except RedisError as e:
            raise CachePersistenceError(f"Redis scan failed: {e}") from e
        return documents


def create_persistence(settings: PersistenceSettings | None = None) -> CachePersistence | None:
    """Build the mirror selected by PERSISTENCE_BACKEND (None when disabled)."""
    settings = settings or get_settings().persistence
    backend = settings.PERSISTENCE_BACKEND

    if backend == "none":
        return None
    if backend == "memory":
        return InMemoryCachePersistence()
    if backend == "redis":
        return RedisCachePersistence(url=settings.REDIS_URL, ttl=settings.PERSISTENCE_KEY_TTL)
    raise ConfigurationError(f"Unknown persistence backend: {backend}")

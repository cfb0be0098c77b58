#!/usr/bin/env python3
"""
Cache Store

In-memory store of previously fetched backend results with lazy staleness,
per-entry priority and a size budget.

Architecture:
    CacheStore (Public API)
        ├── entries: dict[key, CacheEntry]   (immutable entries, replaced atomically)
        ├── protection counts               (keys serving an active recovery)
        ├── CacheMetrics                     (hits, misses, evictions, ...)
        └── CachePersistence (optional)      (durable mirror of `persist` entries)

Freshness is computed at read time from `now - stored_at`; no sweep is needed
for correctness. `sweep_expired()` only bounds memory.

Eviction runs when the entry count or the estimated payload size exceeds the
budget: lowest priority first, then oldest `stored_at`. Protected keys are
never evicted.
"""

import asyncio
import copy
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any

import orjson

from data_resilience.core.config.constants import SWEEP_EXPIRED_FACTOR, CachePriority, Stage
from data_resilience.core.config.settings import CacheSettings, get_settings
from data_resilience.core.exceptions import CachePersistenceError, CacheSerializationError
from data_resilience.core.interfaces.cache import CachePersistence
from data_resilience.core.logging.logger import get_logger, log_stage
from data_resilience.infrastructure.cache.cache_keys import resource_from_key
from data_resilience.infrastructure.cache.strategies import CacheConfig

logger = get_logger(__name__)


# =============================================================================
# Entries
# =============================================================================


@dataclass(frozen=True)
class CacheEntry:
    """
    One cached result. Never mutated; a refresh stores a new entry.

    `stale_after` and `expires_after` are durations (seconds) from `stored_at`.
    `payload` is the store's own decoded copy; readers get a deep copy.
    """

    key: str
    payload: Any
    stored_at: float
    stale_after: float
    expires_after: float
    priority: CachePriority
    size_estimate: int
    source_metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not 0 <= self.stale_after <= self.expires_after:
            raise ValueError("expected 0 <= stale_after <= expires_after")

    def age(self, now: float) -> float:
        return max(0.0, now - self.stored_at)

    def is_stale(self, now: float) -> bool:
        return self.age(now) > self.stale_after

    def is_expired(self, now: float) -> bool:
        return self.age(now) > self.expires_after

    def to_document(self) -> bytes:
        """Serialized form used by persistence mirrors."""
        return orjson.dumps(
            {
                "key": self.key,
                "payload": self.payload,
                "stored_at": self.stored_at,
                "stale_after": self.stale_after,
                "expires_after": self.expires_after,
                "priority": int(self.priority),
                "size_estimate": self.size_estimate,
                "source_metadata": self.source_metadata,
            },
            option=orjson.OPT_NON_STR_KEYS,
        )

    @classmethod
    def from_document(cls, document: bytes | str) -> "CacheEntry":
        try:
            raw = orjson.loads(document)
            return cls(
                key=raw["key"],
                payload=raw["payload"],
                stored_at=float(raw["stored_at"]),
                stale_after=float(raw["stale_after"]),
                expires_after=float(raw["expires_after"]),
                priority=CachePriority(raw["priority"]),
                size_estimate=int(raw["size_estimate"]),
                source_metadata=raw.get("source_metadata") or {},
            )
        except (orjson.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise CacheSerializationError(
                f"Invalid persisted cache entry: {e}", details={"error_type": type(e).__name__}
            ) from e


@dataclass(frozen=True)
class CacheLookup:
    """Result of `CacheStore.get`."""

    hit: bool
    data: Any = None
    is_stale: bool = False
    is_expired: bool = False
    age: float | None = None
    entry: CacheEntry | None = field(default=None, repr=False)

    @classmethod
    def miss(cls) -> "CacheLookup":
        return cls(hit=False)


@dataclass
class CacheMetrics:
    """Counters and gauges describing the store."""

    hits: int = 0
    misses: int = 0
    total_entries: int = 0
    total_size_bytes: int = 0
    evictions: int = 0
    discarded_writes: int = 0
    stale_entries: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "total_entries": self.total_entries,
            "total_size_bytes": self.total_size_bytes,
            "evictions": self.evictions,
            "discarded_writes": self.discarded_writes,
            "stale_entries": self.stale_entries,
            "hit_rate": round(self.hit_rate, 4),
        }


def encode_payload(payload: Any) -> bytes:
    """
    Validate that `payload` can be cached and return its encoding.

    Raises:
        CacheSerializationError: payload is not JSON serializable
    """
    try:
        return orjson.dumps(payload, option=orjson.OPT_NON_STR_KEYS)
    except TypeError as e:
        raise CacheSerializationError(
            f"Payload cannot be cached: {e}",
            details={"payload_type": type(payload).__name__},
        ) from e


# =============================================================================
# Store
# =============================================================================


class CacheStore:
    """
    Async cache store shared by foreground queries and background refreshes.

    STAGE-1: Cache lookup / STAGE-5: Cache write

    Usage:
        store = CacheStore()
        await store.set(key, rows, get_cache_config("clients"))
        lookup = await store.get(key)
        if lookup.hit and not lookup.is_stale:
            return lookup.data
    """

    def __init__(
        self,
        settings: CacheSettings | None = None,
        persistence: CachePersistence | None = None,
        clock: Callable[[], float] = time.time,
        metrics=None,
    ):
        self.settings = settings or get_settings().cache
        self._max_entries = self.settings.CACHE_MAX_ENTRIES
        self._max_size_bytes = self.settings.CACHE_MAX_SIZE_BYTES
        self._persistence = persistence
        self._clock = clock
        self._metrics = metrics

        self._entries: dict[str, CacheEntry] = {}
        self._persisted_keys: set[str] = set()
        self._protected: dict[str, int] = {}
        self._total_size = 0
        self._stats = CacheMetrics()
        self._lock = asyncio.Lock()

    @property
    def persistence(self) -> CachePersistence | None:
        return self._persistence

    def detach_persistence(self) -> None:
        """Stop mirroring (used when the durable store is unreachable at start-up)."""
        self._persistence = None

    def now(self) -> float:
        return self._clock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, key: str) -> CacheLookup:
        """
        Look up `key` and compute its freshness.

        Present entries are always returned (hit=True), even when expired;
        the caller decides whether expired data is still acceptable. `data` is
        a copy, so callers may mutate it freely.
        """
        async with self._lock:
            entry = self._entries.get(key)
            resource = resource_from_key(key)

            if entry is None:
                self._stats.misses += 1
                if self._metrics:
                    self._metrics.record_cache_miss(resource)
                return CacheLookup.miss()

            self._stats.hits += 1
            if self._metrics:
                self._metrics.record_cache_hit(resource)

            now = self._clock()
            return CacheLookup(
                hit=True,
                data=copy.deepcopy(entry.payload),
                is_stale=entry.is_stale(now),
                is_expired=entry.is_expired(now),
                age=entry.age(now),
                entry=entry,
            )

    def peek(self, key: str) -> CacheEntry | None:
        """Return the entry for `key` without touching hit/miss counters."""
        return self._entries.get(key)

    def keys(self) -> list[str]:
        return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def set(
        self,
        key: str,
        data: Any,
        config: CacheConfig,
        metadata: dict[str, Any] | None = None,
        stored_at: float | None = None,
    ) -> bool:
        """
        Store `data` under `key`, replacing any existing entry.

        Args:
            key: Rendered cache key
            data: JSON-serializable payload
            config: Freshness policy for the entry
            metadata: Source metadata (resource, params, scope)
            stored_at: When the data was requested. Writes older than the
                current entry are discarded so a slow response cannot
                overwrite a newer one. Defaults to now.

        Returns:
            False if the write was discarded as out of order, True otherwise

        Raises:
            CacheSerializationError: payload is not JSON serializable
        """
        encoded = encode_payload(data)
        stored_at = self._clock() if stored_at is None else stored_at

        async with self._lock:
            existing = self._entries.get(key)
            if existing is not None and existing.stored_at > stored_at:
                self._stats.discarded_writes += 1
                if self._metrics:
                    self._metrics.record_discarded_write()
                log_stage(
                    logger,
                    Stage.CACHE_WRITE,
                    "Discarded out-of-order cache write",
                    level="debug",
                    cache_key=key,
                    existing_stored_at=existing.stored_at,
                    write_stored_at=stored_at,
                )
                return False

            entry = CacheEntry(
                key=key,
                payload=orjson.loads(encoded),
                stored_at=stored_at,
                stale_after=config.stale_time,
                expires_after=config.expire_time,
                priority=config.priority,
                size_estimate=len(encoded),
                source_metadata=dict(metadata or {}),
            )

            if existing is not None:
                self._total_size -= existing.size_estimate
            self._entries[key] = entry
            self._total_size += entry.size_estimate
            if config.persist:
                self._persisted_keys.add(key)
            else:
                self._persisted_keys.discard(key)

            self._enforce_budget(incoming=key)
            self._publish_size()

        log_stage(
            logger,
            Stage.CACHE_WRITE,
            "Cache entry stored",
            level="debug",
            cache_key=key,
            size_bytes=entry.size_estimate,
            priority=entry.priority.name,
        )

        # Evicted entries stay in the mirror until their TTL runs out
        if self._persistence is not None and config.persist:
            await self._mirror_save(entry)
        return True

    async def invalidate(self, target: str, prefix: bool = False) -> int:
        """
        Remove one key, or every key starting with `target` when `prefix`.

        Returns:
            Number of entries removed
        """
        async with self._lock:
            if prefix:
                keys = [k for k in self._entries if k.startswith(target)]
            else:
                keys = [target] if target in self._entries else []

            mirrored = []
            for key in keys:
                self._remove(key)
                if key in self._persisted_keys:
                    self._persisted_keys.discard(key)
                    mirrored.append(key)
            self._publish_size()

        for key in mirrored:
            await self._mirror_delete(key)

        log_stage(
            logger,
            Stage.CACHE_WRITE,
            "Cache invalidated",
            target=target,
            prefix=prefix,
            removed=len(keys),
        )
        return len(keys)

    async def clear(self) -> None:
        """Drop every in-memory entry (the persistence mirror is left alone)."""
        async with self._lock:
            self._entries.clear()
            self._persisted_keys.clear()
            self._total_size = 0
            self._publish_size()

    # ------------------------------------------------------------------
    # Protection & eviction
    # ------------------------------------------------------------------

    @contextmanager
    def protect(self, key: str) -> Iterator[None]:
        """
        Keep `key` out of eviction for the duration of the block.

        Used by the recovery orchestrator while an entry may be the only
        fallback for an active recovery. Nestable.
        """
        self._protected[key] = self._protected.get(key, 0) + 1
        try:
            yield
        finally:
            remaining = self._protected[key] - 1
            if remaining:
                self._protected[key] = remaining
            else:
                del self._protected[key]

    def is_protected(self, key: str) -> bool:
        return key in self._protected

    def _over_budget(self) -> bool:
        return (
            len(self._entries) > self._max_entries or self._total_size > self._max_size_bytes
        )

    def _enforce_budget(self, incoming: str | None = None) -> list[str]:
        """Evict until within budget. Must be called with the lock held."""
        if not self._over_budget():
            return []

        candidates = sorted(
            (
                entry
                for key, entry in self._entries.items()
                if key not in self._protected and key != incoming
            ),
            key=lambda e: (e.priority, e.stored_at),
        )

        evicted: list[str] = []
        for entry in candidates:
            if not self._over_budget():
                break
            self._remove(entry.key)
            self._stats.evictions += 1
            evicted.append(entry.key)
            if self._metrics:
                self._metrics.record_cache_eviction(entry.priority.name)

        if self._over_budget():
            logger.warning(
                "Cache still over budget after eviction",
                stage=Stage.EVICTION.value,
                total_entries=len(self._entries),
                total_size_bytes=self._total_size,
            )

        if evicted:
            log_stage(
                logger,
                Stage.EVICTION,
                "Evicted cache entries",
                evicted=len(evicted),
                total_entries=len(self._entries),
                total_size_bytes=self._total_size,
            )
            for key in evicted:
                self._persisted_keys.discard(key)
        return evicted

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._total_size -= entry.size_estimate

    async def sweep_expired(self) -> int:
        """
        Remove entries older than `expires_after * SWEEP_EXPIRED_FACTOR`.

        Memory bounding only: expired entries stay usable as last-resort
        fallbacks until they are swept.
        """
        async with self._lock:
            now = self._clock()
            doomed = [
                key
                for key, entry in self._entries.items()
                if key not in self._protected
                and entry.age(now) > entry.expires_after * SWEEP_EXPIRED_FACTOR
            ]
            mirrored = []
            for key in doomed:
                self._remove(key)
                if key in self._persisted_keys:
                    self._persisted_keys.discard(key)
                    mirrored.append(key)
            self._publish_size()

        for key in mirrored:
            await self._mirror_delete(key)

        if doomed:
            log_stage(logger, Stage.EVICTION, "Swept expired cache entries", removed=len(doomed))
        return len(doomed)

    # ------------------------------------------------------------------
    # Persistence mirror
    # ------------------------------------------------------------------

    async def restore(self) -> int:
        """
        Reload mirrored entries from persistence (call once at start-up).

        Corrupt documents and entries past the sweep horizon are skipped.
        Entries already in memory with a newer `stored_at` win.

        Returns:
            Number of entries restored
        """
        if self._persistence is None:
            return 0

        try:
            documents = await self._persistence.load_all()
        except CachePersistenceError as e:
            logger.error(
                "Failed to restore persisted cache entries",
                stage=Stage.PERSISTENCE.value,
                error=str(e),
            )
            return 0

        restored = 0
        async with self._lock:
            now = self._clock()
            for key, document in documents.items():
                try:
                    entry = CacheEntry.from_document(document)
                except CacheSerializationError as e:
                    logger.warning(
                        "Skipping corrupt persisted cache entry",
                        stage=Stage.PERSISTENCE.value,
                        cache_key=key,
                        error=str(e),
                    )
                    continue

                if entry.age(now) > entry.expires_after * SWEEP_EXPIRED_FACTOR:
                    continue
                existing = self._entries.get(entry.key)
                if existing is not None and existing.stored_at >= entry.stored_at:
                    continue

                if existing is not None:
                    self._total_size -= existing.size_estimate
                self._entries[entry.key] = entry
                self._total_size += entry.size_estimate
                self._persisted_keys.add(entry.key)
                restored += 1

            self._enforce_budget()
            self._publish_size()

        log_stage(logger, Stage.PERSISTENCE, "Restored persisted cache entries", restored=restored)
        return restored

    async def _mirror_save(self, entry: CacheEntry) -> None:
        try:
            await self._persistence.save(entry.key, entry.to_document())
        except CachePersistenceError as e:
            logger.error(
                "Failed to mirror cache entry",
                stage=Stage.PERSISTENCE.value,
                cache_key=entry.key,
                error=str(e),
            )

    async def _mirror_delete(self, key: str) -> None:
        if self._persistence is None:
            return
        try:
            await self._persistence.delete(key)
        except CachePersistenceError as e:
            logger.error(
                "Failed to delete mirrored cache entry",
                stage=Stage.PERSISTENCE.value,
                cache_key=key,
                error=str(e),
            )

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def _publish_size(self) -> None:
        self._stats.total_entries = len(self._entries)
        self._stats.total_size_bytes = self._total_size
        if self._metrics:
            self._metrics.set_cache_size(len(self._entries), self._total_size)

    def get_metrics(self) -> CacheMetrics:
        """Snapshot of the store's counters."""
        now = self._clock()
        return replace(
            self._stats,
            total_entries=len(self._entries),
            total_size_bytes=self._total_size,
            stale_entries=sum(1 for e in self._entries.values() if e.is_stale(now)),
        )

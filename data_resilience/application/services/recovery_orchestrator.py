"""
Progressive Recovery Orchestrator
=================================

The single entry point for reading through the layer. `execute_query` always
returns a `RecoveryResult`; callers never see a raw backend exception.

THE QUERY LIFECYCLE:
--------------------

┌─────────────────────────────────────────────────────────────────┐
│ STAGE 1: CACHE LOOKUP (only with prefer_cache=True)             │
│ - A fresh entry is served without touching the network          │
└─────────────────────────────────────────────────────────────────┘
                            ↓
┌─────────────────────────────────────────────────────────────────┐
│ STAGE 3: CIRCUIT CHECK                                          │
│ - Breaker OPEN and network OFFLINE: skip straight to fallback   │
└─────────────────────────────────────────────────────────────────┘
                            ↓
┌─────────────────────────────────────────────────────────────────┐
│ STAGE 2/4: DEDUPLICATION + BACKEND CALL                         │
│ - One in-flight call per key, shared by every caller            │
│ - Breaker gate around a retry loop around the operation         │
└─────────────────────────────────────────────────────────────────┘
                            ↓
┌─────────────────────────────────────────────────────────────────┐
│ STAGE 5: CACHE WRITE                                            │
│ - Write-through with stored_at = request start time             │
└─────────────────────────────────────────────────────────────────┘
                            ↓ (on failure)
┌─────────────────────────────────────────────────────────────────┐
│ STAGE 6: FALLBACK LADDER                                        │
│ 1 CACHE_STALE           entry still within its stale window     │
│ 2 CACHE_EXPIRED         entry past its stale window             │
│ 3 OFFLINE_MODE          connectivity failure, no data           │
│ 4 GRACEFUL_DEGRADATION  caller placeholder                      │
└─────────────────────────────────────────────────────────────────┘

Permission errors never reach the ladder: serving cached data after an
authorization change would show data the user may no longer see. Schema
errors skip expired entries, which were stored under the old contract.
"""

import asyncio
import random
import time
import uuid
from collections import deque
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from data_resilience.core.config.constants import (
    DEGRADED_MESSAGE_DEFAULT,
    DEGRADED_MESSAGES,
    MESSAGE_CACHE_EXPIRED,
    MESSAGE_CACHE_FRESH,
    MESSAGE_CACHE_STALE,
    MESSAGE_OFFLINE,
    RECENT_RECOVERY_WINDOW_SECONDS,
    RETRY_HINT_DEGRADED_BASE,
    RETRY_HINT_DEGRADED_MAX,
    RETRY_HINT_EXPIRED,
    RETRY_HINT_JITTER_MAX,
    RETRY_HINT_OFFLINE,
    RETRY_HINT_STALE,
    ErrorType,
    FallbackLevel,
    ResultSource,
    Stage,
)
from data_resilience.core.config.settings import Settings, get_settings
from data_resilience.core.exceptions import CacheSerializationError, CircuitBreakerOpenError
from data_resilience.core.interfaces.backend import BackendOperation, unwrap_response
from data_resilience.core.logging.logger import clear_query_id, get_logger, log_stage, set_query_id
from data_resilience.core.resilience.circuit_breaker import CircuitBreakerRegistry
from data_resilience.core.resilience.error_classification import ClassifiedError, classify_error
from data_resilience.core.resilience.retry import RetryEngine, RetryPolicy
from data_resilience.infrastructure.cache.cache_keys import CacheKey, resource_from_key
from data_resilience.infrastructure.cache.cache_store import CacheLookup, CacheStore
from data_resilience.infrastructure.cache.deduplicator import RequestDeduplicator
from data_resilience.infrastructure.cache.strategies import CacheConfig, get_cache_config
from data_resilience.infrastructure.monitoring.network_monitor import NetworkStatusMonitor

logger = get_logger(__name__)

# Connectivity failures end in OFFLINE_MODE, everything else in GRACEFUL_DEGRADATION
_OFFLINE_ERROR_TYPES = frozenset(
    {ErrorType.NETWORK_ERROR, ErrorType.TIMEOUT_ERROR, ErrorType.CIRCUIT_OPEN}
)


class RecoveryError(BaseModel):
    """Serializable description of the failure behind a fallback result."""

    model_config = ConfigDict(frozen=True)

    error_type: ErrorType
    message: str


class RecoveryResult(BaseModel):
    """
    The only value returned by `execute_query`.

    UI code renders from `source`, `fallback_level` and `user_message` and
    offers a retry action when `retryable` is set.
    """

    model_config = ConfigDict(frozen=True)

    data: Any = None
    error: RecoveryError | None = None
    source: ResultSource
    fallback_level: FallbackLevel = FallbackLevel.NONE
    user_message: str | None = None
    retryable: bool = False
    retry_delay: float | None = Field(default=None, description="Suggested seconds before retry")
    cache_age: float | None = Field(default=None, description="Age of served cache data")
    query_id: str | None = None

    @property
    def is_fallback(self) -> bool:
        return self.fallback_level != FallbackLevel.NONE

    @property
    def has_data(self) -> bool:
        return self.data is not None


class RecoveryOrchestrator:
    """
    Façade combining cache, deduplicator, circuit breakers, retry engine and
    network monitor.

    All collaborators are injected; `DataAccessLayer` wires the defaults.
    """

    def __init__(
        self,
        cache: CacheStore,
        deduplicator: RequestDeduplicator,
        breakers: CircuitBreakerRegistry,
        retry_engine: RetryEngine,
        network_monitor: NetworkStatusMonitor | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
        metrics=None,
    ):
        self.settings = settings or get_settings()
        self._cache = cache
        self._dedup = deduplicator
        self._breakers = breakers
        self._retry = retry_engine
        self._network = network_monitor
        self._clock = clock
        self._rng = rng or random.Random()
        self._metrics = metrics
        self._default_policy = RetryPolicy.from_settings(self.settings.retry)

        # cache key -> consecutive failed queries (drives the degraded hint)
        self._recovery_attempts: dict[str, int] = {}
        self._recent_recoveries: deque[tuple[str, float]] = deque()
        self._total_attempts = 0
        self._in_progress = 0

    @property
    def cache(self) -> CacheStore:
        return self._cache

    # ========================================================================
    # Public API
    # ========================================================================

    async def execute_query(
        self,
        operation: BackendOperation,
        cache_key: CacheKey | str,
        *,
        scope: str | None = None,
        config: CacheConfig | None = None,
        metadata: dict[str, Any] | None = None,
        degraded_placeholder: Any = None,
        prefer_cache: bool = False,
        retry_policy: RetryPolicy | None = None,
    ) -> RecoveryResult:
        """
        Run `operation` through the layer and describe what was served.

        Args:
            operation: Zero-argument coroutine function returning data, a
                BackendResponse or a ``{data, error}`` mapping
            cache_key: Typed key (preferred) or an already rendered key
            scope: Circuit breaker scope (defaults to the resource name)
            config: Freshness policy (defaults to the resource strategy)
            metadata: Source metadata stored with the entry
            degraded_placeholder: Data returned with GRACEFUL_DEGRADATION
            prefer_cache: Serve a fresh cache entry without a network call
            retry_policy: Overrides the configured foreground retry policy

        Returns:
            RecoveryResult (never raises, except for the caller's own
            cancellation)
        """
        key, resource, default_metadata = self._resolve_key(cache_key)
        scope = scope or resource
        config = config or get_cache_config(resource, self.settings.cache)
        metadata = metadata if metadata is not None else default_metadata

        query_id = uuid.uuid4().hex[:12]
        set_query_id(query_id)
        started = time.perf_counter()
        self._in_progress += 1
        try:
            with self._cache.protect(key):
                result = await self._execute(
                    operation,
                    key,
                    resource,
                    scope,
                    config,
                    metadata,
                    degraded_placeholder,
                    prefer_cache,
                    retry_policy or self._default_policy,
                    query_id,
                )
        finally:
            self._in_progress -= 1
            clear_query_id()

        if self._metrics:
            self._metrics.record_recovery_result(
                result.source.value,
                result.error.error_type.value if result.error else None,
                time.perf_counter() - started,
            )
        return result

    async def fetch(
        self,
        operation: BackendOperation,
        key: str,
        *,
        scope: str,
        config: CacheConfig,
        metadata: dict[str, Any] | None = None,
        policy: RetryPolicy | None = None,
        record_failures: bool = True,
    ) -> Any:
        """
        Shared network path: deduplicator -> breaker -> retry -> operation -> cache.

        Used by `execute_query` and by the background refresh scheduler, so a
        refresh and a foreground query for the same key make one call.

        Raises:
            CircuitBreakerOpenError: the breaker for `scope` blocked the call
            Whatever the operation raised after retries
        """
        policy = policy or self._default_policy
        breaker = self._breakers.get_breaker(scope)

        async def attempt() -> Any:
            return unwrap_response(await operation())

        async def produce() -> Any:
            requested_at = self._clock()
            log_stage(logger, Stage.BACKEND_CALL, "Calling backend", cache_key=key, scope=scope)
            data = await breaker.call(
                lambda: self._retry.execute_with_retry(attempt, policy, label=scope),
                record_failures=record_failures,
            )
            try:
                await self._cache.set(key, data, config, metadata, stored_at=requested_at)
            except CacheSerializationError as e:
                logger.error(
                    "Backend data could not be cached",
                    stage=Stage.CACHE_WRITE.value,
                    cache_key=key,
                    error=str(e),
                )
            return data

        return await self._dedup.acquire(key, produce)

    def get_recovery_stats(self) -> dict[str, Any]:
        """Active recoveries, recoveries completed in the last 5 minutes, attempts."""
        self._prune_recent()
        return {
            "active_recoveries": len(self._recovery_attempts),
            "recent_recoveries": len(self._recent_recoveries),
            "total_attempts": self._total_attempts,
            "queries_in_progress": self._in_progress,
            "recovering_keys": sorted(self._recovery_attempts),
        }

    # ========================================================================
    # Lifecycle steps
    # ========================================================================

    async def _execute(
        self,
        operation: BackendOperation,
        key: str,
        resource: str,
        scope: str,
        config: CacheConfig,
        metadata: dict[str, Any] | None,
        placeholder: Any,
        prefer_cache: bool,
        policy: RetryPolicy,
        query_id: str,
    ) -> RecoveryResult:
        self._total_attempts += 1

        # STAGE 1: fresh cache short-circuit
        if prefer_cache:
            lookup = await self._cache.get(key)
            if lookup.hit and not lookup.is_stale:
                log_stage(logger, Stage.CACHE_LOOKUP, "Serving fresh cache entry", cache_key=key)
                return RecoveryResult(
                    data=lookup.data,
                    source=ResultSource.CACHE_FRESH,
                    fallback_level=FallbackLevel.NONE,
                    user_message=MESSAGE_CACHE_FRESH,
                    cache_age=lookup.age,
                    query_id=query_id,
                )

        # STAGE 3: no point calling a backend that is known down while offline
        breaker = self._breakers.get_breaker(scope)
        if breaker.is_open() and self._network is not None and self._network.is_offline():
            log_stage(
                logger,
                Stage.CIRCUIT_CHECK,
                "Circuit open and network offline, skipping backend",
                cache_key=key,
                scope=scope,
            )
            classified = classify_error(
                CircuitBreakerOpenError(
                    f"Circuit open for {scope} while offline", details={"scope": scope}
                )
            )
            return await self._fallback(key, resource, classified, placeholder, query_id)

        # STAGE 2/4/5: shared network path
        try:
            data = await self.fetch(
                operation, key, scope=scope, config=config, metadata=metadata, policy=policy
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            classified = classify_error(e)
            log_stage(
                logger,
                Stage.BACKEND_CALL,
                "Backend call failed",
                level="warning",
                cache_key=key,
                scope=scope,
                error_type=classified.error_type.value,
                error=classified.message,
            )
            return await self._fallback(key, resource, classified, placeholder, query_id)

        self._mark_recovered(key)
        return RecoveryResult(
            data=data,
            source=ResultSource.NETWORK,
            fallback_level=FallbackLevel.NONE,
            query_id=query_id,
        )

    async def _fallback(
        self,
        key: str,
        resource: str,
        classified: ClassifiedError,
        placeholder: Any,
        query_id: str,
    ) -> RecoveryResult:
        """STAGE 6: walk the ladder; the first level that yields a result wins."""
        attempts = self._recovery_attempts.get(key, 0) + 1
        self._recovery_attempts[key] = attempts
        error = RecoveryError(error_type=classified.error_type, message=classified.message)

        if classified.error_type == ErrorType.PERMISSION_ERROR:
            log_stage(
                logger,
                Stage.FALLBACK,
                "Permission denied, cache fallback skipped",
                level="warning",
                cache_key=key,
            )
            return self._degraded(resource, error, None, attempts, query_id, retryable=False)

        lookup: CacheLookup = await self._cache.get(key)

        # Level 1: entry still inside its stale window
        if lookup.hit and not lookup.is_stale:
            return self._from_cache(
                lookup,
                error,
                ResultSource.CACHE_STALE,
                FallbackLevel.CACHE_STALE,
                MESSAGE_CACHE_STALE,
                RETRY_HINT_STALE,
                key,
                query_id,
            )

        # Level 2: older entry, not trusted after a contract error
        if lookup.hit and classified.error_type != ErrorType.SCHEMA_OR_DATA_ERROR:
            return self._from_cache(
                lookup,
                error,
                ResultSource.CACHE_EXPIRED,
                FallbackLevel.CACHE_EXPIRED,
                MESSAGE_CACHE_EXPIRED,
                RETRY_HINT_EXPIRED,
                key,
                query_id,
            )

        # Level 3: connectivity failure without cached data
        if classified.error_type in _OFFLINE_ERROR_TYPES:
            log_stage(logger, Stage.FALLBACK, "Offline result", level="warning", cache_key=key)
            return RecoveryResult(
                data=None,
                error=error,
                source=ResultSource.OFFLINE,
                fallback_level=FallbackLevel.OFFLINE_MODE,
                user_message=MESSAGE_OFFLINE,
                retryable=True,
                retry_delay=RETRY_HINT_OFFLINE,
                query_id=query_id,
            )

        # Level 4: caller placeholder
        return self._degraded(
            resource, error, placeholder, attempts, query_id, retryable=classified.retryable
        )

    def _from_cache(
        self,
        lookup: CacheLookup,
        error: RecoveryError,
        source: ResultSource,
        level: FallbackLevel,
        message: str,
        retry_delay: float,
        key: str,
        query_id: str,
    ) -> RecoveryResult:
        log_stage(
            logger,
            Stage.FALLBACK,
            f"Serving {source.value} data",
            cache_key=key,
            cache_age=lookup.age,
            error_type=error.error_type.value,
        )
        return RecoveryResult(
            data=lookup.data,
            error=error,
            source=source,
            fallback_level=level,
            user_message=message,
            retryable=True,
            retry_delay=retry_delay,
            cache_age=lookup.age,
            query_id=query_id,
        )

    def _degraded(
        self,
        resource: str,
        error: RecoveryError,
        placeholder: Any,
        attempts: int,
        query_id: str,
        retryable: bool,
    ) -> RecoveryResult:
        message = DEGRADED_MESSAGES.get(
            error.error_type, DEGRADED_MESSAGE_DEFAULT.format(resource=resource)
        )
        log_stage(
            logger,
            Stage.FALLBACK,
            "Degraded result",
            level="warning",
            resource=resource,
            error_type=error.error_type.value,
            attempts=attempts,
        )
        return RecoveryResult(
            data=placeholder,
            error=error,
            source=ResultSource.DEGRADED,
            fallback_level=FallbackLevel.GRACEFUL_DEGRADATION,
            user_message=message,
            retryable=retryable,
            retry_delay=self._degraded_delay(attempts) if retryable else None,
            query_id=query_id,
        )

    # ========================================================================
    # Helpers
    # ========================================================================

    def _degraded_delay(self, attempts: int) -> float:
        """2s doubling with each consecutive failure, capped at 30s, plus up to 1s jitter."""
        delay = min(RETRY_HINT_DEGRADED_BASE * (2 ** (attempts - 1)), RETRY_HINT_DEGRADED_MAX)
        return delay + self._rng.uniform(0, RETRY_HINT_JITTER_MAX)

    def _mark_recovered(self, key: str) -> None:
        if self._recovery_attempts.pop(key, None) is not None:
            self._recent_recoveries.append((key, self._clock()))
            log_stage(logger, Stage.FALLBACK, "Recovered from fallback", cache_key=key)

    def _prune_recent(self) -> None:
        horizon = self._clock() - RECENT_RECOVERY_WINDOW_SECONDS
        while self._recent_recoveries and self._recent_recoveries[0][1] < horizon:
            self._recent_recoveries.popleft()

    @staticmethod
    def _resolve_key(cache_key: CacheKey | str) -> tuple[str, str, dict[str, Any]]:
        if isinstance(cache_key, CacheKey):
            return cache_key.render(), cache_key.resource, cache_key.metadata()
        resource = resource_from_key(cache_key)
        return cache_key, resource, {"resource": resource}

#!/usr/bin/env python3
"""
Data Access Layer - Composition Root

Builds and wires every component from one `Settings` object. Nothing in the
layer is a module-level singleton: each `DataAccessLayer` owns its own cache,
breakers, deduplicator and metrics registry, so tests can run isolated
copies side by side.

Lifecycle:

    layer = DataAccessLayer()
    await layer.start()     # restore persisted entries, start background loops
    result = await layer.execute_query(fetch_clients, CacheKey(resource="customers"))
    await layer.stop()      # stop loops, cancel in-flight calls, close connections

or `async with DataAccessLayer() as layer: ...`
"""

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from typing import Any

from data_resilience.application.services.recovery_orchestrator import (
    RecoveryOrchestrator,
    RecoveryResult,
)
from data_resilience.application.services.redirect_guard import RedirectGuard
from data_resilience.application.services.refresh_scheduler import BackgroundRefreshScheduler
from data_resilience.core.config.constants import Stage
from data_resilience.core.config.settings import Settings, get_settings
from data_resilience.core.events import Subscription
from data_resilience.core.exceptions import CachePersistenceError
from data_resilience.core.interfaces.backend import BackendOperation
from data_resilience.core.interfaces.cache import CachePersistence
from data_resilience.core.logging.logger import get_logger, log_stage, setup_logging
from data_resilience.core.resilience.circuit_breaker import CircuitBreakerRegistry
from data_resilience.core.resilience.retry import RetryEngine
from data_resilience.core.resilience.ticker import Ticker
from data_resilience.infrastructure.cache.cache_keys import CacheKey
from data_resilience.infrastructure.cache.cache_store import CacheStore
from data_resilience.infrastructure.cache.deduplicator import RequestDeduplicator
from data_resilience.infrastructure.cache.persistence import create_persistence
from data_resilience.infrastructure.cache.strategies import CacheConfig
from data_resilience.infrastructure.monitoring.metrics_collector import MetricsCollector
from data_resilience.infrastructure.monitoring.network_monitor import (
    HealthProbe,
    NetworkStatus,
    NetworkStatusMonitor,
)

logger = get_logger(__name__)

_FROM_SETTINGS = object()


class DataAccessLayer:
    """
    Resilient façade in front of one backend connection.

    Args:
        settings: Configuration (defaults to `get_settings()`)
        probe: Health probe for the network monitor. Defaults to an HTTP
            HEAD probe against NETWORK_PROBE_URL when that is set.
        persistence: Durable mirror for `persist` entries. Defaults to the
            backend named by PERSISTENCE_BACKEND; pass None to disable.
        clock: Wall clock shared by cache, breakers, scheduler and monitor
        sleep: Sleep used between retries
        rng: Random source for retry jitter and retry hints
        configure_logging: Call `setup_logging()` from `start()`
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        probe: HealthProbe | None = None,
        persistence: CachePersistence | None | object = _FROM_SETTINGS,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
        configure_logging: bool = False,
    ):
        self.settings = settings or get_settings()
        self._configure_logging = configure_logging
        self._started = False

        if persistence is _FROM_SETTINGS:
            persistence = create_persistence(self.settings.persistence)

        self.metrics = MetricsCollector()
        self.cache = CacheStore(
            self.settings.cache, persistence=persistence, clock=clock, metrics=self.metrics
        )
        self.deduplicator = RequestDeduplicator(metrics=self.metrics)
        self.breakers = CircuitBreakerRegistry(
            self.settings.circuit_breaker, clock=clock, metrics=self.metrics
        )
        self.retry_engine = RetryEngine(sleep=sleep, rng=rng, metrics=self.metrics)

        if probe is not None:
            self.network = NetworkStatusMonitor(
                probe=probe, settings=self.settings.network, clock=clock, metrics=self.metrics
            )
        else:
            self.network = NetworkStatusMonitor.from_settings(
                self.settings.network, clock=clock, metrics=self.metrics
            )

        self.orchestrator = RecoveryOrchestrator(
            cache=self.cache,
            deduplicator=self.deduplicator,
            breakers=self.breakers,
            retry_engine=self.retry_engine,
            network_monitor=self.network,
            settings=self.settings,
            clock=clock,
            rng=rng,
            metrics=self.metrics,
        )
        self.scheduler = BackgroundRefreshScheduler(
            orchestrator=self.orchestrator,
            breakers=self.breakers,
            network_monitor=self.network,
            settings=self.settings.refresh,
            clock=clock,
            metrics=self.metrics,
        )
        self.redirect_guard = RedirectGuard(self.settings.redirect, metrics=self.metrics)
        self._sweeper = Ticker(
            "cache-sweep",
            self.settings.cache.CACHE_SWEEP_INTERVAL,
            self._sweep,
            run_immediately=False,
        )

    # ========================================================================
    # Lifecycle
    # ========================================================================

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """
        Restore persisted entries and start the background loops.

        STAGE-0: Initialization

        A persistence mirror that cannot connect is detached and logged; the
        layer keeps working from memory.
        """
        if self._started:
            return

        if self._configure_logging:
            setup_logging(self.settings.logging.LOG_LEVEL, self.settings.logging.LOG_FORMAT)

        log_stage(
            logger,
            Stage.INITIALIZATION,
            "Starting data access layer",
            app=self.settings.APP_NAME,
            environment=self.settings.ENVIRONMENT,
        )

        persistence = self.cache.persistence
        if persistence is not None:
            try:
                await persistence.connect()
            except CachePersistenceError as e:
                logger.error(
                    "Cache persistence unavailable, continuing in memory",
                    stage=Stage.PERSISTENCE.value,
                    error=str(e),
                )
                self.cache.detach_persistence()
            else:
                await self.cache.restore()

        self.network.start()
        self.scheduler.start()
        self._sweeper.start()
        self._started = True

        log_stage(logger, Stage.INITIALIZATION, "Data access layer started")

    async def stop(self) -> None:
        """Stop background loops, cancel in-flight calls and close connections."""
        if not self._started:
            return

        await self._sweeper.stop()
        await self.scheduler.stop()
        await self.network.stop()
        await self.deduplicator.cancel_all()

        persistence = self.cache.persistence
        if persistence is not None:
            await persistence.close()

        self._started = False
        log_stage(logger, Stage.INITIALIZATION, "Data access layer stopped")

    async def __aenter__(self) -> "DataAccessLayer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _sweep(self) -> None:
        await self.cache.sweep_expired()

    # ========================================================================
    # Queries
    # ========================================================================

    async def execute_query(
        self,
        operation: BackendOperation,
        cache_key: CacheKey | str,
        **options: Any,
    ) -> RecoveryResult:
        """See `RecoveryOrchestrator.execute_query`."""
        return await self.orchestrator.execute_query(operation, cache_key, **options)

    async def invalidate(self, target: CacheKey | str, prefix: bool = False) -> int:
        key = target.render() if isinstance(target, CacheKey) else target
        return await self.cache.invalidate(key, prefix=prefix)

    def register_refresher(
        self,
        resource_name: str,
        operation: BackendOperation,
        *,
        cache_key: CacheKey | None = None,
        config: CacheConfig | None = None,
        scope: str | None = None,
    ) -> None:
        self.scheduler.register_refresher(
            resource_name, operation, cache_key=cache_key, config=config, scope=scope
        )

    # ========================================================================
    # Network & navigation
    # ========================================================================

    def on_status_change(self, listener: Callable[[NetworkStatus], object]) -> Subscription:
        return self.network.on_status_change(listener)

    async def report_platform_signal(self, online: bool) -> NetworkStatus:
        return await self.network.report_platform_signal(online)

    def can_redirect(self, path: str, reason: str | None = None) -> bool:
        return self.redirect_guard.can_redirect(path, reason)

    def force_unblock(self) -> None:
        self.redirect_guard.force_unblock()

    # ========================================================================
    # Diagnostics
    # ========================================================================

    def get_status(self) -> dict[str, Any]:
        """Aggregated diagnostics of every component."""
        return {
            "started": self._started,
            "network": self.network.get_status().to_dict(),
            "cache": self.cache.get_metrics().to_dict(),
            "deduplicator": self.deduplicator.get_stats(),
            "circuit_breakers": self.breakers.get_stats(),
            "scheduler": self.scheduler.get_metrics(),
            "recovery": self.orchestrator.get_recovery_stats(),
            "redirect_guard": {
                "blocked": self.redirect_guard.is_blocked,
                "denied": self.redirect_guard.denied_count,
                "history": [r.to_dict() for r in self.redirect_guard.get_history()],
            },
        }

    def prometheus_metrics(self) -> bytes:
        return self.metrics.get_prometheus_metrics()

"""
Background Refresh Scheduler

Keeps frequently used resources warm without blocking foreground queries.

One ticker loop wakes on the shortest enabled interval. Each tick collects
the schedules that are due (`last_run_at + interval <= now`), orders them
CRITICAL first and refreshes them through the orchestrator's shared network
path, so a refresh and a concurrent foreground query for the same key make
a single backend call.

A schedule is skipped (and retried on the next tick) when:
- the network monitor reports OFFLINE
- its scope's circuit breaker is OPEN and not yet ready for a probe

A PERMISSION_ERROR suspends the schedule instead: retrying cannot fix
credentials. It resumes once a foreground query stores a newer entry for
the same key, or on an explicit `enable()`.

Failed refreshes leave the cached entry untouched, so stale data keeps
being served, and are recorded in the scheduler metrics. Whether they also
count against the circuit breaker is controlled by
REFRESH_FAILURES_TRIP_BREAKER; successes always count.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from data_resilience.application.services.recovery_orchestrator import RecoveryOrchestrator
from data_resilience.core.config.constants import CachePriority, CircuitState, ErrorType, Stage
from data_resilience.core.config.settings import RefreshSchedulerSettings, get_settings
from data_resilience.core.exceptions import CircuitBreakerOpenError, UnknownScheduleError
from data_resilience.core.interfaces.backend import BackendOperation
from data_resilience.core.logging.logger import get_logger, log_stage
from data_resilience.core.resilience.circuit_breaker import CircuitBreakerRegistry
from data_resilience.core.resilience.error_classification import classify_error
from data_resilience.core.resilience.retry import RetryPolicy
from data_resilience.core.resilience.ticker import Ticker
from data_resilience.infrastructure.cache.cache_keys import CacheKey
from data_resilience.infrastructure.cache.strategies import CacheConfig, get_cache_config
from data_resilience.infrastructure.monitoring.network_monitor import NetworkStatusMonitor

logger = get_logger(__name__)

# resource -> (interval seconds, priority)
DEFAULT_REFRESH_SCHEDULES: dict[str, tuple[float, CachePriority]] = {
    "clinicians": (60.0, CachePriority.HIGH),
    "customers": (120.0, CachePriority.MEDIUM),
    "settings": (600.0, CachePriority.CRITICAL),
    "treatment_approaches": (1800.0, CachePriority.HIGH),
    "appointments": (30.0, CachePriority.MEDIUM),
}


@dataclass
class RefreshSchedule:
    """How often one resource is refreshed. Mutable at runtime."""

    resource_name: str
    interval: float
    priority: CachePriority = CachePriority.MEDIUM
    enabled: bool = True
    last_run_at: float | None = None
    suspended_at: float | None = None
    suspended_reason: str | None = None

    @property
    def suspended(self) -> bool:
        return self.suspended_at is not None

    def suspend(self, reason: str, now: float) -> None:
        self.suspended_at = now
        self.suspended_reason = reason

    def resume(self) -> None:
        self.suspended_at = None
        self.suspended_reason = None

    def next_run_at(self) -> float:
        if self.last_run_at is None:
            return 0.0
        return self.last_run_at + self.interval

    def is_due(self, now: float) -> bool:
        return self.enabled and not self.suspended and self.next_run_at() <= now

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_name": self.resource_name,
            "interval": self.interval,
            "priority": self.priority.name,
            "enabled": self.enabled,
            "last_run_at": self.last_run_at,
            "next_run_at": self.next_run_at() if self.last_run_at is not None else None,
            "suspended_reason": self.suspended_reason,
        }


@dataclass
class RefreshTarget:
    """What a refresh of one resource fetches and where it is stored."""

    operation: BackendOperation
    key: str
    scope: str
    config: CacheConfig
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ResourceRefreshMetrics:
    refresh_count: int = 0
    successes: int = 0
    failures: int = 0
    skipped: int = 0
    average_time: float = 0.0
    last_refresh_at: float | None = None
    last_error: str | None = None

    @property
    def success_rate(self) -> float:
        return self.successes / self.refresh_count if self.refresh_count else 0.0


class BackgroundRefreshScheduler:
    """
    Priority-ordered refresh loop.

    STAGE-B: Background refresh

    Usage:
        scheduler = BackgroundRefreshScheduler(orchestrator, breakers)
        scheduler.register_refresher("clinicians", fetch_clinicians)
        scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        orchestrator: RecoveryOrchestrator,
        breakers: CircuitBreakerRegistry,
        network_monitor: NetworkStatusMonitor | None = None,
        settings: RefreshSchedulerSettings | None = None,
        clock: Callable[[], float] = time.time,
        seed_defaults: bool = True,
        metrics=None,
    ):
        self.settings = settings or get_settings().refresh
        self._orchestrator = orchestrator
        self._breakers = breakers
        self._network = network_monitor
        self._clock = clock
        self._metrics = metrics
        self._min_interval = self.settings.REFRESH_MIN_INTERVAL
        self._semaphore = asyncio.Semaphore(self.settings.REFRESH_MAX_CONCURRENT)
        self._policy = RetryPolicy(
            max_attempts=self.settings.REFRESH_MAX_ATTEMPTS,
            base_delay=self.settings.REFRESH_BASE_DELAY,
        )

        self._schedules: dict[str, RefreshSchedule] = {}
        self._targets: dict[str, RefreshTarget] = {}
        self._active: set[str] = set()
        self._ticker: Ticker | None = None

        self._total = 0
        self._successful = 0
        self._failed = 0
        self._skipped = 0
        self._average_time = 0.0
        self._per_resource: dict[str, ResourceRefreshMetrics] = {}

        if seed_defaults and self.settings.REFRESH_ENABLED:
            for resource, (interval, priority) in DEFAULT_REFRESH_SCHEDULES.items():
                self.set_schedule(resource, interval, priority)

    # ========================================================================
    # Schedules
    # ========================================================================

    def set_schedule(
        self,
        resource_name: str,
        interval: float,
        priority: CachePriority = CachePriority.MEDIUM,
        enabled: bool = True,
    ) -> RefreshSchedule:
        """Add or replace the schedule of `resource_name` (keeps its last run)."""
        if interval < self._min_interval:
            logger.warning(
                "Refresh interval below minimum, clamping",
                stage=Stage.REFRESH.value,
                resource=resource_name,
                requested=interval,
                minimum=self._min_interval,
            )
            interval = self._min_interval

        previous = self._schedules.get(resource_name)
        schedule = RefreshSchedule(
            resource_name=resource_name,
            interval=interval,
            priority=priority,
            enabled=enabled,
            last_run_at=previous.last_run_at if previous else None,
            suspended_at=previous.suspended_at if previous else None,
            suspended_reason=previous.suspended_reason if previous else None,
        )
        self._schedules[resource_name] = schedule
        self._wake()
        return schedule

    def remove_schedule(self, resource_name: str) -> None:
        if self._schedules.pop(resource_name, None) is None:
            raise UnknownScheduleError(
                f"No refresh schedule for {resource_name}", details={"resource": resource_name}
            )

    def enable(self, resource_name: str) -> None:
        """Enable the schedule and lift any suspension."""
        schedule = self._require(resource_name)
        schedule.enabled = True
        schedule.resume()
        self._wake()

    def disable(self, resource_name: str) -> None:
        self._require(resource_name).enabled = False

    def get_schedule(self, resource_name: str) -> RefreshSchedule | None:
        return self._schedules.get(resource_name)

    def list_schedules(self) -> list[RefreshSchedule]:
        """All schedules, CRITICAL first."""
        return sorted(
            self._schedules.values(), key=lambda s: (-s.priority, s.resource_name)
        )

    def _require(self, resource_name: str) -> RefreshSchedule:
        schedule = self._schedules.get(resource_name)
        if schedule is None:
            raise UnknownScheduleError(
                f"No refresh schedule for {resource_name}", details={"resource": resource_name}
            )
        return schedule

    def register_refresher(
        self,
        resource_name: str,
        operation: BackendOperation,
        *,
        cache_key: CacheKey | None = None,
        config: CacheConfig | None = None,
        scope: str | None = None,
    ) -> None:
        """
        Declare how `resource_name` is refreshed.

        Only schedules with a registered refresher ever run. The key must
        match the one foreground queries use for the same data, otherwise
        the refresh warms an entry nobody reads.
        """
        cache_key = cache_key or CacheKey(resource=resource_name)
        self._targets[resource_name] = RefreshTarget(
            operation=operation,
            key=cache_key.render(),
            scope=scope or cache_key.resource,
            config=config or get_cache_config(cache_key.resource),
            metadata=cache_key.metadata(),
        )
        self._wake()

    # ========================================================================
    # Execution
    # ========================================================================

    def _due(self, now: float) -> list[RefreshSchedule]:
        self._resume_refreshed()
        due = [
            s
            for s in self._schedules.values()
            if s.resource_name in self._targets
            and s.resource_name not in self._active
            and s.is_due(now)
        ]
        return sorted(due, key=lambda s: (-s.priority, s.next_run_at(), s.resource_name))

    def _resume_refreshed(self) -> None:
        for schedule in self._schedules.values():
            target = self._targets.get(schedule.resource_name)
            if not schedule.suspended or target is None:
                continue
            entry = self._orchestrator.cache.peek(target.key)
            if entry is not None and entry.stored_at > schedule.suspended_at:
                log_stage(
                    logger,
                    Stage.REFRESH,
                    "Resuming suspended refresh",
                    resource=schedule.resource_name,
                    reason=schedule.suspended_reason,
                )
                schedule.resume()

    async def run_due(self) -> dict[str, str]:
        """
        Run one tick: refresh every due schedule, CRITICAL first.

        Returns:
            resource name -> outcome ("success", "failure" or "skipped")
        """
        due = self._due(self._clock())
        if not due:
            return {}

        log_stage(
            logger,
            Stage.REFRESH,
            "Running due refreshes",
            resources=[s.resource_name for s in due],
        )
        outcomes = await asyncio.gather(*(self._run(schedule) for schedule in due))
        return {s.resource_name: outcome for s, outcome in zip(due, outcomes)}

    async def _run(self, schedule: RefreshSchedule) -> str:
        name = schedule.resource_name
        target = self._targets[name]

        skip_reason = self._skip_reason(target)
        if skip_reason:
            log_stage(
                logger, Stage.REFRESH, "Refresh skipped", level="debug", resource=name,
                reason=skip_reason,
            )
            self._record(name, "skipped")
            return "skipped"

        self._active.add(name)
        schedule.last_run_at = self._clock()
        try:
            async with self._semaphore:
                started = time.perf_counter()
                try:
                    await self._orchestrator.fetch(
                        target.operation,
                        target.key,
                        scope=target.scope,
                        config=target.config,
                        metadata=target.metadata,
                        policy=self._policy,
                        record_failures=self.settings.REFRESH_FAILURES_TRIP_BREAKER,
                    )
                except asyncio.CancelledError:
                    raise
                except CircuitBreakerOpenError:
                    self._record(name, "skipped")
                    return "skipped"
                except Exception as e:
                    classified = classify_error(e)
                    logger.warning(
                        "Background refresh failed",
                        stage=Stage.REFRESH.value,
                        resource=name,
                        error_type=classified.error_type.value,
                        error=classified.message,
                    )
                    if classified.error_type == ErrorType.PERMISSION_ERROR:
                        schedule.suspend(classified.error_type.value, self._clock())
                        logger.warning(
                            "Background refresh suspended",
                            stage=Stage.REFRESH.value,
                            resource=name,
                            reason=schedule.suspended_reason,
                        )
                    self._record(name, "failure", time.perf_counter() - started, classified.message)
                    return "failure"

                self._record(name, "success", time.perf_counter() - started)
                log_stage(logger, Stage.REFRESH, "Background refresh completed", resource=name)
                return "success"
        finally:
            self._active.discard(name)

    def _skip_reason(self, target: RefreshTarget) -> str | None:
        if self._network is not None and self._network.is_offline():
            return "network_offline"
        breaker = self._breakers.get_breaker(target.scope)
        if breaker.seconds_until_probe() > 0:
            return "circuit_open"
        if breaker.state == CircuitState.HALF_OPEN and breaker.snapshot().probe_in_flight:
            return "circuit_probing"
        return None

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def tick_interval(self) -> float:
        """Shortest enabled interval among runnable schedules."""
        intervals = [
            s.interval
            for s in self._schedules.values()
            if s.enabled and not s.suspended and s.resource_name in self._targets
        ]
        return min(intervals) if intervals else self._min_interval

    @property
    def running(self) -> bool:
        return self._ticker is not None and self._ticker.running

    def start(self) -> None:
        if not self.settings.REFRESH_ENABLED:
            log_stage(logger, Stage.REFRESH, "Background refresh disabled by configuration")
            return
        if self.running:
            return
        self._ticker = Ticker("background-refresh", self.tick_interval, self._tick)
        self._ticker.start()

    async def _tick(self) -> None:
        await self.run_due()

    async def stop(self) -> None:
        if self._ticker is not None:
            await self._ticker.stop()
            self._ticker = None

    def _wake(self) -> None:
        if self._ticker is not None:
            self._ticker.wake()

    # ========================================================================
    # Metrics
    # ========================================================================

    def _record(
        self, name: str, outcome: str, duration: float | None = None, error: str | None = None
    ) -> None:
        stats = self._per_resource.setdefault(name, ResourceRefreshMetrics())
        if self._metrics:
            self._metrics.record_refresh(name, outcome)

        if outcome == "skipped":
            self._skipped += 1
            stats.skipped += 1
            return

        self._total += 1
        stats.refresh_count += 1
        stats.last_refresh_at = self._clock()
        if duration is not None:
            self._average_time += (duration - self._average_time) / self._total
            stats.average_time += (duration - stats.average_time) / stats.refresh_count

        if outcome == "success":
            self._successful += 1
            stats.successes += 1
            stats.last_error = None
        else:
            self._failed += 1
            stats.failures += 1
            stats.last_error = error

    def get_metrics(self) -> dict[str, Any]:
        return {
            "total_refreshes": self._total,
            "successful_refreshes": self._successful,
            "failed_refreshes": self._failed,
            "skipped_refreshes": self._skipped,
            "average_refresh_time": round(self._average_time, 6),
            "active": sorted(self._active),
            "running": self.running,
            "resources": {
                name: {
                    "refresh_count": m.refresh_count,
                    "successes": m.successes,
                    "failures": m.failures,
                    "skipped": m.skipped,
                    "success_rate": round(m.success_rate, 4),
                    "average_time": round(m.average_time, 6),
                    "last_refresh_at": m.last_refresh_at,
                    "last_error": m.last_error,
                }
                for name, m in self._per_resource.items()
            },
        }

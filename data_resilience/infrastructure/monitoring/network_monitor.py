#!/usr/bin/env python3
"""
Network Status Monitor

Tracks whether the backend is reachable, combining two signals:

1. Platform connectivity hints (`report_platform_signal`) - best effort and
   often wrong, so an "offline" hint only triggers an immediate probe.
2. A periodic health probe (default: HTTP HEAD against the backend).

Status rules:
- OFFLINE only after NETWORK_OFFLINE_THRESHOLD consecutive probe failures
- ONLINE after a single successful probe
- DEGRADED when the probe succeeds slower than NETWORK_DEGRADED_LATENCY_MS

Listeners registered with `on_status_change` are called only when the status
actually changes.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx

from data_resilience.core.config.constants import NetworkStatusLevel, Stage
from data_resilience.core.config.settings import NetworkMonitorSettings, get_settings
from data_resilience.core.events import EventChannel, Subscription
from data_resilience.core.logging.logger import get_logger, log_stage
from data_resilience.core.resilience.ticker import Ticker

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProbeOutcome:
    """Result of one health probe."""

    ok: bool
    latency_ms: float | None = None
    error: str | None = None


HealthProbe = Callable[[], Awaitable[ProbeOutcome]]


@dataclass(frozen=True)
class NetworkStatus:
    """Snapshot published to listeners and returned by `get_status()`."""

    status: NetworkStatusLevel
    last_probe_at: float | None = None
    consecutive_probe_failures: int = 0
    last_latency_ms: float | None = None

    @property
    def is_online(self) -> bool:
        return self.status != NetworkStatusLevel.OFFLINE

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "last_probe_at": self.last_probe_at,
            "consecutive_probe_failures": self.consecutive_probe_failures,
            "last_latency_ms": self.last_latency_ms,
        }


class HttpHealthProbe:
    """
    HEAD request against the backend health endpoint.

    Any response below 500 counts as reachable: the probe measures
    connectivity, not authorization.
    """

    def __init__(self, url: str, timeout: float = 3.0, client: httpx.AsyncClient | None = None):
        self.url = url
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def __call__(self) -> ProbeOutcome:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))

        started = time.perf_counter()
        try:
            response = await self._client.head(self.url)
        except httpx.HTTPError as e:
            return ProbeOutcome(ok=False, error=f"{type(e).__name__}: {e}")

        latency_ms = (time.perf_counter() - started) * 1000
        if response.status_code >= 500:
            return ProbeOutcome(
                ok=False, latency_ms=latency_ms, error=f"HTTP {response.status_code}"
            )
        return ProbeOutcome(ok=True, latency_ms=latency_ms)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class NetworkStatusMonitor:
    """
    Connectivity state machine fed by probes and platform hints.

    STAGE-N: Network monitoring

    Usage:
        monitor = NetworkStatusMonitor(probe=HttpHealthProbe(url))
        subscription = monitor.on_status_change(lambda s: print(s.status))
        monitor.start()
        ...
        subscription.unsubscribe()
        await monitor.stop()
    """

    def __init__(
        self,
        probe: HealthProbe | None = None,
        settings: NetworkMonitorSettings | None = None,
        clock: Callable[[], float] = time.time,
        metrics=None,
    ):
        self.settings = settings or get_settings().network
        self._probe = probe
        self._clock = clock
        self._metrics = metrics
        self._offline_threshold = self.settings.NETWORK_OFFLINE_THRESHOLD
        self._degraded_latency_ms = self.settings.NETWORK_DEGRADED_LATENCY_MS

        self._status = NetworkStatus(status=NetworkStatusLevel.ONLINE)
        self._changes: EventChannel[NetworkStatus] = EventChannel("network-status")
        self._probe_lock = asyncio.Lock()
        self._ticker: Ticker | None = None

    @classmethod
    def from_settings(
        cls, settings: NetworkMonitorSettings, clock: Callable[[], float] = time.time, metrics=None
    ) -> "NetworkStatusMonitor":
        """Monitor probing NETWORK_PROBE_URL over HTTP (no probe when unset)."""
        probe = None
        if settings.NETWORK_PROBE_URL:
            probe = HttpHealthProbe(
                settings.NETWORK_PROBE_URL, timeout=settings.NETWORK_PROBE_TIMEOUT
            )
        return cls(probe=probe, settings=settings, clock=clock, metrics=metrics)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> NetworkStatusLevel:
        return self._status.status

    def get_status(self) -> NetworkStatus:
        return self._status

    def is_offline(self) -> bool:
        return self._status.status == NetworkStatusLevel.OFFLINE

    def on_status_change(self, listener: Callable[[NetworkStatus], object]) -> Subscription:
        """Register `listener`; it is called with the new NetworkStatus on every change."""
        return self._changes.subscribe(listener)

    def _update(self, status: NetworkStatus) -> None:
        previous = self._status.status
        self._status = status
        if status.status == previous:
            return

        log_stage(
            logger,
            Stage.NETWORK,
            f"Network status changed to {status.status.value}",
            level="warning" if status.status == NetworkStatusLevel.OFFLINE else "info",
            previous=previous.value,
            consecutive_probe_failures=status.consecutive_probe_failures,
            latency_ms=status.last_latency_ms,
        )
        if self._metrics:
            self._metrics.set_network_status(status.status.value)
        self._changes.publish(status)

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    async def probe_once(self) -> NetworkStatus:
        """
        Run the health probe once and apply the status rules.

        Probe errors and timeouts count as failed probes.
        """
        if self._probe is None:
            return self._status

        async with self._probe_lock:
            try:
                outcome = await asyncio.wait_for(
                    self._probe(), timeout=self.settings.NETWORK_PROBE_TIMEOUT
                )
            except asyncio.TimeoutError:
                outcome = ProbeOutcome(ok=False, error="probe timed out")
            except Exception as e:
                outcome = ProbeOutcome(ok=False, error=f"{type(e).__name__}: {e}")

            self._apply(outcome)
            return self._status

    def _apply(self, outcome: ProbeOutcome) -> None:
        now = self._clock()
        current = self._status

        if outcome.ok:
            if self._metrics and outcome.latency_ms is not None:
                self._metrics.record_probe_latency(outcome.latency_ms / 1000)
            slow = outcome.latency_ms is not None and outcome.latency_ms > self._degraded_latency_ms
            self._update(
                NetworkStatus(
                    status=NetworkStatusLevel.DEGRADED if slow else NetworkStatusLevel.ONLINE,
                    last_probe_at=now,
                    consecutive_probe_failures=0,
                    last_latency_ms=outcome.latency_ms,
                )
            )
            return

        failures = current.consecutive_probe_failures + 1
        level = NetworkStatusLevel.OFFLINE if failures >= self._offline_threshold else current.status
        log_stage(
            logger,
            Stage.NETWORK,
            "Health probe failed",
            level="debug",
            consecutive_probe_failures=failures,
            error=outcome.error,
        )
        self._update(
            NetworkStatus(
                status=level,
                last_probe_at=now,
                consecutive_probe_failures=failures,
                last_latency_ms=current.last_latency_ms,
            )
        )

    async def report_platform_signal(self, online: bool) -> NetworkStatus:
        """
        Feed a platform connectivity hint.

        With a probe configured the hint only triggers an immediate probe.
        Without one, the hint is the only signal available and is applied
        directly.
        """
        log_stage(logger, Stage.NETWORK, "Platform connectivity signal", online=online)

        if self._probe is None:
            self._update(
                NetworkStatus(
                    status=NetworkStatusLevel.ONLINE if online else NetworkStatusLevel.OFFLINE,
                    last_probe_at=self._status.last_probe_at,
                    consecutive_probe_failures=0,
                    last_latency_ms=self._status.last_latency_ms,
                )
            )
            return self._status

        return await self.probe_once()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._ticker is not None and self._ticker.running

    def start(self) -> None:
        """Start periodic probing (no-op without a probe)."""
        if self._probe is None or self.running:
            return
        self._ticker = Ticker(
            "network-probe", self.settings.NETWORK_PROBE_INTERVAL, self._tick
        )
        self._ticker.start()

    async def _tick(self) -> None:
        await self.probe_once()

    async def stop(self) -> None:
        if self._ticker is not None:
            await self._ticker.stop()
            self._ticker = None
        close = getattr(self._probe, "close", None)
        if close is not None:
            await close()

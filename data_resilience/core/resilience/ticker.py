"""
Cancellable Ticker

A small scheduled-task abstraction used by every timer-driven loop in the
layer (network probes, background refresh, cache sweeps):

    ticker = Ticker("network-probe", interval=5.0, callback=monitor.probe_once)
    ticker.start()
    ...
    await ticker.stop()

The loop runs `callback`, then waits `interval` seconds (re-read every
iteration, so it may be a callable) or until `stop()`/`wake()` is called.
Errors raised by the callback are logged and the loop keeps going; only
`stop()` ends it.
"""

import asyncio
from collections.abc import Awaitable, Callable

from data_resilience.core.logging.logger import get_logger

logger = get_logger(__name__)

IntervalSource = float | Callable[[], float]


class Ticker:
    """Runs an async callback periodically on the current event loop."""

    def __init__(
        self,
        name: str,
        interval: IntervalSource,
        callback: Callable[[], Awaitable[None]],
        run_immediately: bool = True,
        error_backoff: float = 1.0,
    ):
        self.name = name
        self._interval = interval
        self._callback = callback
        self._run_immediately = run_immediately
        self._error_backoff = error_backoff
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self._wake_event = asyncio.Event()
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def current_interval(self) -> float:
        interval = self._interval() if callable(self._interval) else self._interval
        return max(float(interval), 0.0)

    def start(self) -> None:
        """Start the loop. Calling start on a running ticker is a no-op."""
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._wake_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=f"ticker:{self.name}")
        logger.info("Ticker started", ticker=self.name)

    def wake(self) -> None:
        """Cut the current wait short so the next tick happens now."""
        self._wake_event.set()

    async def stop(self, timeout: float = 5.0) -> None:
        """Signal the loop to stop and wait for it, cancelling after `timeout`."""
        if self._task is None:
            return

        self._stop_event.set()
        self._wake_event.set()
        task, self._task = self._task, None

        try:
            await asyncio.wait_for(task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Ticker stop timed out, cancelling", ticker=self.name)
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        logger.info("Ticker stopped", ticker=self.name, ticks=self.ticks)

    async def _run(self) -> None:
        if not self._run_immediately:
            await self._wait(self.current_interval())

        while not self._stop_event.is_set():
            delay = self.current_interval()
            try:
                await self._callback()
                self.ticks += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Ticker callback failed, backing off",
                    ticker=self.name,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                delay = max(delay, self._error_backoff)

            await self._wait(delay)

    async def _wait(self, delay: float) -> None:
        if self._stop_event.is_set():
            return
        # A wake() raised while the callback ran is still pending here
        try:
            await asyncio.wait_for(self._wake_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
        self._wake_event.clear()

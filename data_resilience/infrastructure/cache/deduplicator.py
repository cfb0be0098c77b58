"""
Request Deduplicator

Collapses concurrent requests for the same cache key into one backend call.

    first caller  -> starts producer() as a task and registers it
    later callers -> await the same task
    settlement    -> every waiter gets the same value or the same error,
                     the registration is removed

Waiters await the task through `asyncio.shield`, so a caller that is
cancelled (e.g. a view that went away) stops waiting without cancelling the
shared call; the remaining waiters and the cache still get its result.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from data_resilience.core.config.constants import Stage
from data_resilience.core.logging.logger import get_logger, log_stage

logger = get_logger(__name__)


@dataclass
class InFlightRequest:
    """One shared backend call."""

    key: str
    task: asyncio.Task
    started_at: float
    subscriber_count: int = 1
    labels: dict[str, Any] = field(default_factory=dict)


class RequestDeduplicator:
    """
    Single-flight registry keyed by cache key.

    STAGE-2: Deduplication
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, metrics=None):
        self._clock = clock
        self._metrics = metrics
        self._in_flight: dict[str, InFlightRequest] = {}
        self._started = 0
        self._joined = 0

    async def acquire(self, key: str, producer: Callable[[], Awaitable[Any]]) -> Any:
        """
        Return the result of the in-flight call for `key`, starting one if needed.

        Args:
            key: Cache key identifying the request
            producer: Zero-argument coroutine function, only called when no
                request for `key` is in flight

        Returns:
            The producer's result (shared by all concurrent callers)

        Raises:
            Whatever the producer raised (shared by all concurrent callers)
        """
        request = self._in_flight.get(key)

        if request is not None:
            request.subscriber_count += 1
            self._joined += 1
            if self._metrics:
                self._metrics.record_dedup_join()
            log_stage(
                logger,
                Stage.DEDUPLICATION,
                "Joined in-flight request",
                level="debug",
                cache_key=key,
                subscribers=request.subscriber_count,
            )
        else:
            task = asyncio.ensure_future(producer())
            request = InFlightRequest(key=key, task=task, started_at=self._clock())
            self._in_flight[key] = request
            self._started += 1
            task.add_done_callback(lambda t, k=key: self._settle(k, t))
            self._publish_in_flight()

        return await asyncio.shield(request.task)

    def _settle(self, key: str, task: asyncio.Task) -> None:
        request = self._in_flight.get(key)
        if request is not None and request.task is task:
            del self._in_flight[key]
            self._publish_in_flight()
        # Mark the error as retrieved even when every waiter was cancelled
        if not task.cancelled():
            task.exception()

    def _publish_in_flight(self) -> None:
        if self._metrics:
            self._metrics.set_in_flight(len(self._in_flight))

    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    def get_stats(self) -> dict[str, Any]:
        now = self._clock()
        return {
            "in_flight": len(self._in_flight),
            "started": self._started,
            "joined": self._joined,
            "requests": [
                {
                    "key": r.key,
                    "subscribers": r.subscriber_count,
                    "age_seconds": round(now - r.started_at, 3),
                }
                for r in self._in_flight.values()
            ],
        }

    async def cancel_all(self) -> None:
        """Cancel every in-flight call (used on shutdown)."""
        tasks = [r.task for r in self._in_flight.values()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

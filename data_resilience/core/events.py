"""
Publish/Subscribe Channel

Listeners register with `subscribe()` and get back a `Subscription` handle.
Calling `unsubscribe()` on the handle (or using it as a context manager)
removes the listener, so components with a shorter lifetime than the
publisher never leak callbacks.

Listeners may be plain callables or coroutine functions. A failing listener
is logged and does not prevent delivery to the others.
"""

import asyncio
import inspect
from collections.abc import Callable
from typing import Any, Generic, TypeVar

from data_resilience.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Listener = Callable[[T], Any]


class Subscription:
    """Handle returned by `EventChannel.subscribe`."""

    def __init__(self, channel: "EventChannel", token: int):
        self._channel = channel
        self._token = token
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if self._active:
            self._channel._remove(self._token)
            self._active = False

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()


class EventChannel(Generic[T]):
    """An explicit in-process pub/sub channel for one event type."""

    def __init__(self, name: str):
        self.name = name
        self._listeners: dict[int, Listener] = {}
        self._next_token = 0
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, listener: Listener) -> Subscription:
        token = self._next_token
        self._next_token += 1
        self._listeners[token] = listener
        return Subscription(self, token)

    def _remove(self, token: int) -> None:
        self._listeners.pop(token, None)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def publish(self, event: T) -> None:
        """Deliver `event` to every current listener."""
        for listener in list(self._listeners.values()):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._on_listener_done)
            except Exception as e:
                logger.error(
                    "Event listener failed",
                    channel=self.name,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def _on_listener_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            error = task.exception()
            logger.error(
                "Async event listener failed",
                channel=self.name,
                error=str(error),
                error_type=type(error).__name__,
            )

    def clear(self) -> None:
        self._listeners.clear()

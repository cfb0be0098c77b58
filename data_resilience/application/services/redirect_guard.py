"""
Redirect Guard

Stops navigation thrashing when failure states (expired sessions, repeated
permission errors) keep sending the user from one route to another.

`can_redirect(path, reason)` allows at most REDIRECT_MAX_PER_WINDOW
redirects within a rolling REDIRECT_WINDOW_MS window. An allowed call
records the redirect. Once the limit is hit the guard latches: every
redirect is denied until `force_unblock()` is called from recovery UI.
REDIRECT_COOLDOWN_MS optionally enforces a minimum gap between redirects.
"""

import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from data_resilience.core.config.constants import Stage
from data_resilience.core.config.settings import RedirectGuardSettings, get_settings
from data_resilience.core.logging.logger import get_logger, log_stage

logger = get_logger(__name__)


@dataclass(frozen=True)
class RedirectRecord:
    path: str
    reason: str | None
    at: float

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "reason": self.reason, "at": self.at}


class RedirectGuard:
    """
    Rolling-window redirect limiter.

    STAGE-G: Redirect guard

    Usage:
        guard = RedirectGuard()
        if guard.can_redirect("/login", reason="session expired"):
            navigate("/login")
    """

    def __init__(
        self,
        settings: RedirectGuardSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
        metrics=None,
    ):
        self.settings = settings or get_settings().redirect
        self._max_redirects = self.settings.REDIRECT_MAX_PER_WINDOW
        self._window = self.settings.REDIRECT_WINDOW_MS / 1000
        self._cooldown = self.settings.REDIRECT_COOLDOWN_MS / 1000
        self._clock = clock
        self._metrics = metrics

        self._history: deque[RedirectRecord] = deque()
        self._blocked = False
        self._denied = 0

    def _prune(self, now: float) -> None:
        while self._history and now - self._history[0].at >= self._window:
            self._history.popleft()

    def can_redirect(self, path: str, reason: str | None = None) -> bool:
        """
        Decide whether a redirect to `path` may happen now, recording it if so.
        """
        now = self._clock()
        self._prune(now)

        if self._blocked:
            return self._deny("blocked", path, reason)

        if self._cooldown and self._history and now - self._history[-1].at < self._cooldown:
            return self._deny("cooldown", path, reason)

        if len(self._history) >= self._max_redirects:
            self._blocked = True
            logger.error(
                "Redirect loop detected, blocking redirects",
                stage=Stage.REDIRECT.value,
                redirect_count=len(self._history),
                window_ms=self.settings.REDIRECT_WINDOW_MS,
                history=[r.path for r in self._history],
                path=path,
                reason=reason,
            )
            return self._deny("loop_detected", path, reason)

        self._history.append(RedirectRecord(path=path, reason=reason, at=now))
        log_stage(
            logger,
            Stage.REDIRECT,
            "Redirect allowed",
            path=path,
            reason=reason,
            redirect_count=len(self._history),
        )
        return True

    def _deny(self, cause: str, path: str, reason: str | None) -> bool:
        self._denied += 1
        if self._metrics:
            self._metrics.record_redirect_denied(cause)
        log_stage(
            logger,
            Stage.REDIRECT,
            "Redirect denied",
            level="warning",
            cause=cause,
            path=path,
            reason=reason,
            redirect_count=len(self._history),
        )
        return False

    @property
    def is_blocked(self) -> bool:
        return self._blocked

    @property
    def denied_count(self) -> int:
        return self._denied

    def force_unblock(self) -> None:
        """Clear the latch and the history (recovery UI action)."""
        self._blocked = False
        self._history.clear()
        log_stage(logger, Stage.REDIRECT, "Redirect guard manually unblocked")

    def get_history(self) -> list[RedirectRecord]:
        """Redirects recorded inside the current window, oldest first."""
        self._prune(self._clock())
        return list(self._history)

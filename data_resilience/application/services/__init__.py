"""Application services: recovery orchestrator, refresh scheduler, redirect guard."""

from data_resilience.application.services.recovery_orchestrator import (
    RecoveryError,
    RecoveryOrchestrator,
    RecoveryResult,
)
from data_resilience.application.services.redirect_guard import RedirectGuard, RedirectRecord
from data_resilience.application.services.refresh_scheduler import (
    DEFAULT_REFRESH_SCHEDULES,
    BackgroundRefreshScheduler,
    RefreshSchedule,
)

__all__ = [
    "DEFAULT_REFRESH_SCHEDULES",
    "BackgroundRefreshScheduler",
    "RecoveryError",
    "RecoveryOrchestrator",
    "RecoveryResult",
    "RedirectGuard",
    "RedirectRecord",
    "RefreshSchedule",
]

"""
Background Refresh Scheduler Exceptions
"""

from data_resilience.core.exceptions.base import DataAccessError


class SchedulerError(DataAccessError):
    """Base exception for background refresh scheduler errors."""
    pass


class UnknownScheduleError(SchedulerError):
    """Raised when an operation names a resource without a schedule."""
    pass

"""
Backend Exceptions

Errors raised by (or on behalf of) backend operations. Each subclass maps
one-to-one onto an `ErrorType` so classification never has to guess.
"""

from data_resilience.core.exceptions.base import DataAccessError


class BackendError(DataAccessError):
    """Base exception for failures reported by a backend operation."""
    pass


class BackendNetworkError(BackendError):
    """
    Raised when the backend cannot be reached.

    Common causes:
    - Connection reset or refused
    - DNS failure
    - Fetch aborted by the platform
    """
    pass


class BackendTimeoutError(BackendError):
    """Raised when the backend does not answer in time."""
    pass


class BackendPermissionError(BackendError):
    """
    Raised when the backend rejects the caller's authorization.

    Never retried and never answered from cache: serving stale data after an
    authorization change would leak data the user may no longer see.
    """
    pass


class BackendSchemaError(BackendError):
    """
    Raised when request or response shape does not match the backend contract.

    Common causes:
    - Unknown column or relation
    - Malformed request payload
    - Response that cannot be decoded
    """
    pass

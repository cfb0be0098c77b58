"""
Backend Error Classification

Maps any exception raised by a backend operation onto the `ErrorType`
taxonomy. Classification order:

1. Typed exceptions of this package (exact mapping)
2. httpx transport errors and HTTP status codes
3. Builtin TimeoutError / ConnectionError / PermissionError
4. Message heuristics for opaque client errors

The retry engine and the recovery orchestrator both rely on the same
classification so a failure is treated identically along the whole path.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

import httpx

from data_resilience.core.config.constants import ErrorType
from data_resilience.core.exceptions import (
    BackendNetworkError,
    BackendPermissionError,
    BackendSchemaError,
    BackendTimeoutError,
    CircuitBreakerOpenError,
)

RETRYABLE_TYPES = frozenset(
    {ErrorType.NETWORK_ERROR, ErrorType.TIMEOUT_ERROR, ErrorType.UNKNOWN_ERROR}
)

# Errors that say nothing about backend health; they never trip a breaker.
NON_TRIPPING_TYPES = frozenset(
    {ErrorType.PERMISSION_ERROR, ErrorType.SCHEMA_OR_DATA_ERROR, ErrorType.CIRCUIT_OPEN}
)

_PERMISSION_STATUS = frozenset({401, 403})
_SCHEMA_STATUS = frozenset({400, 404, 405, 409, 410, 422})
_TIMEOUT_STATUS = frozenset({408, 504})

_NETWORK_MARKERS = ("fetch", "network", "connection", "econnrefused", "econnreset", "enotfound")
_TIMEOUT_MARKERS = ("timeout", "timed out", "aborted")
_PERMISSION_MARKERS = ("permission", "unauthorized", "forbidden", "access denied", "jwt expired")
_SCHEMA_MARKERS = ("malformed", "invalid input syntax", "schema", "could not decode")


@dataclass(frozen=True)
class ClassifiedError:
    """Result of classifying one exception."""

    error_type: ErrorType
    message: str
    original: BaseException | None = field(default=None, compare=False, repr=False)

    @property
    def retryable(self) -> bool:
        return self.error_type in RETRYABLE_TYPES

    @property
    def trips_breaker(self) -> bool:
        return self.error_type not in NON_TRIPPING_TYPES

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.error_type.value,
            "message": self.message,
            "retryable": self.retryable,
        }


def _classify_status(status_code: int) -> ErrorType:
    if status_code in _PERMISSION_STATUS:
        return ErrorType.PERMISSION_ERROR
    if status_code in _TIMEOUT_STATUS:
        return ErrorType.TIMEOUT_ERROR
    if status_code in _SCHEMA_STATUS:
        return ErrorType.SCHEMA_OR_DATA_ERROR
    if status_code == 429 or status_code >= 500:
        return ErrorType.NETWORK_ERROR
    return ErrorType.UNKNOWN_ERROR


def _classify_message(message: str) -> ErrorType:
    lowered = message.lower()

    # Permission markers win over "connection"-style words in the same text
    if any(marker in lowered for marker in _PERMISSION_MARKERS):
        return ErrorType.PERMISSION_ERROR
    if "column" in lowered and ("does not exist" in lowered or "not found" in lowered):
        return ErrorType.SCHEMA_OR_DATA_ERROR
    if any(marker in lowered for marker in _SCHEMA_MARKERS):
        return ErrorType.SCHEMA_OR_DATA_ERROR
    if any(marker in lowered for marker in _TIMEOUT_MARKERS):
        return ErrorType.TIMEOUT_ERROR
    if any(marker in lowered for marker in _NETWORK_MARKERS):
        return ErrorType.NETWORK_ERROR
    return ErrorType.UNKNOWN_ERROR


def classify_error_type(error: BaseException) -> ErrorType:
    """Return the `ErrorType` of an exception."""
    if isinstance(error, CircuitBreakerOpenError):
        return ErrorType.CIRCUIT_OPEN
    if isinstance(error, BackendPermissionError):
        return ErrorType.PERMISSION_ERROR
    if isinstance(error, BackendSchemaError):
        return ErrorType.SCHEMA_OR_DATA_ERROR
    if isinstance(error, BackendTimeoutError):
        return ErrorType.TIMEOUT_ERROR
    if isinstance(error, BackendNetworkError):
        return ErrorType.NETWORK_ERROR

    if isinstance(error, httpx.HTTPStatusError):
        return _classify_status(error.response.status_code)
    if isinstance(error, httpx.TimeoutException):
        return ErrorType.TIMEOUT_ERROR
    if isinstance(error, httpx.DecodingError):
        return ErrorType.SCHEMA_OR_DATA_ERROR
    if isinstance(error, httpx.TransportError):
        return ErrorType.NETWORK_ERROR

    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return ErrorType.TIMEOUT_ERROR
    if isinstance(error, PermissionError):
        return ErrorType.PERMISSION_ERROR
    if isinstance(error, ConnectionError):
        return ErrorType.NETWORK_ERROR

    status_code = getattr(error, "status_code", None) or getattr(error, "status", None)
    if isinstance(status_code, int):
        return _classify_status(status_code)

    return _classify_message(str(error))


def classify_error(error: BaseException) -> ClassifiedError:
    """Classify an exception into a `ClassifiedError`."""
    message = getattr(error, "message", None) or str(error) or error.__class__.__name__
    return ClassifiedError(error_type=classify_error_type(error), message=message, original=error)


def is_retryable_error(error: BaseException) -> bool:
    """Default `is_retryable` predicate for retry policies."""
    return classify_error_type(error) in RETRYABLE_TYPES

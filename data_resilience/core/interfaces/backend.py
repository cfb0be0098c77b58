"""
Backend Operation Contract

A backend operation is any zero-argument coroutine function. It may:

- return a `BackendResponse(data=..., error=...)`,
- return a mapping with ``data``/``error`` keys (the shape most client
  libraries use), or
- return the data directly and raise on failure.

`unwrap_response` turns all three into "data or raise" so the rest of the
layer handles a single shape.
"""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from data_resilience.core.exceptions import BackendError

BackendOperation = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class BackendResponse:
    """`{data, error}` envelope returned by backend operations."""

    data: Any = None
    error: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _as_exception(error: Any) -> BaseException:
    if isinstance(error, BaseException):
        return error
    if isinstance(error, Mapping):
        message = str(error.get("message") or error.get("error") or error)
        details = {k: v for k, v in error.items() if k != "message"}
        backend_error = BackendError(message, details=details)
        status = error.get("status") or error.get("status_code")
        if isinstance(status, int):
            backend_error.status_code = status
        return backend_error
    return BackendError(str(error))


def unwrap_response(response: Any) -> Any:
    """
    Return the payload of a backend response or raise its error.

    Mappings are only treated as envelopes when they have exactly the
    ``data``/``error`` shape (plus optional ``status``/``count``), so plain
    dict payloads pass through untouched.
    """
    if isinstance(response, BackendResponse):
        if response.error is not None:
            raise _as_exception(response.error)
        return response.data

    if isinstance(response, Mapping) and "error" in response and "data" in response:
        if set(response.keys()) <= {"data", "error", "status", "statusText", "count"}:
            if response["error"] is not None:
                raise _as_exception(response["error"])
            return response["data"]

    return response

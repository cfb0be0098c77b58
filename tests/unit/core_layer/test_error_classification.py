"""
Unit Tests for Error Classification

Every failure path in the layer relies on the same ErrorType mapping, so the
mapping is tested exhaustively here.
"""

import asyncio

import httpx
import pytest

from data_resilience.core.config.constants import ErrorType
from data_resilience.core.exceptions import (
    BackendNetworkError,
    BackendPermissionError,
    BackendSchemaError,
    BackendTimeoutError,
    CircuitBreakerOpenError,
)
from data_resilience.core.interfaces.backend import unwrap_response
from data_resilience.core.resilience.error_classification import (
    classify_error,
    classify_error_type,
    is_retryable_error,
)


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://backend.test/rest/v1/customers")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


@pytest.mark.unit
class TestTypedErrors:
    @pytest.mark.parametrize(
        "error,expected",
        [
            (BackendNetworkError("x"), ErrorType.NETWORK_ERROR),
            (BackendTimeoutError("x"), ErrorType.TIMEOUT_ERROR),
            (BackendPermissionError("x"), ErrorType.PERMISSION_ERROR),
            (BackendSchemaError("x"), ErrorType.SCHEMA_OR_DATA_ERROR),
            (CircuitBreakerOpenError("x"), ErrorType.CIRCUIT_OPEN),
        ],
    )
    def test_package_exceptions(self, error, expected):
        assert classify_error_type(error) == expected

    @pytest.mark.parametrize(
        "error,expected",
        [
            (asyncio.TimeoutError(), ErrorType.TIMEOUT_ERROR),
            (TimeoutError(), ErrorType.TIMEOUT_ERROR),
            (ConnectionResetError(), ErrorType.NETWORK_ERROR),
            (PermissionError(), ErrorType.PERMISSION_ERROR),
        ],
    )
    def test_builtin_exceptions(self, error, expected):
        assert classify_error_type(error) == expected


@pytest.mark.unit
class TestHttpxErrors:
    @pytest.mark.parametrize(
        "status,expected",
        [
            (401, ErrorType.PERMISSION_ERROR),
            (403, ErrorType.PERMISSION_ERROR),
            (408, ErrorType.TIMEOUT_ERROR),
            (504, ErrorType.TIMEOUT_ERROR),
            (400, ErrorType.SCHEMA_OR_DATA_ERROR),
            (422, ErrorType.SCHEMA_OR_DATA_ERROR),
            (429, ErrorType.NETWORK_ERROR),
            (503, ErrorType.NETWORK_ERROR),
            (418, ErrorType.UNKNOWN_ERROR),
        ],
    )
    def test_status_codes(self, status, expected):
        assert classify_error_type(_status_error(status)) == expected

    def test_transport_errors(self):
        assert classify_error_type(httpx.ConnectError("refused")) == ErrorType.NETWORK_ERROR
        assert classify_error_type(httpx.ReadTimeout("slow")) == ErrorType.TIMEOUT_ERROR
        assert classify_error_type(httpx.DecodingError("bad gzip")) == (
            ErrorType.SCHEMA_OR_DATA_ERROR
        )


@pytest.mark.unit
class TestMessageHeuristics:
    @pytest.mark.parametrize(
        "message,expected",
        [
            ("JWT expired", ErrorType.PERMISSION_ERROR),
            ("permission denied for table customers", ErrorType.PERMISSION_ERROR),
            ('column "nickname" does not exist', ErrorType.SCHEMA_OR_DATA_ERROR),
            ("invalid input syntax for type uuid", ErrorType.SCHEMA_OR_DATA_ERROR),
            ("Request timed out", ErrorType.TIMEOUT_ERROR),
            ("TypeError: Failed to fetch", ErrorType.NETWORK_ERROR),
            ("ECONNREFUSED 127.0.0.1:5432", ErrorType.NETWORK_ERROR),
            ("something odd happened", ErrorType.UNKNOWN_ERROR),
        ],
    )
    def test_opaque_errors(self, message, expected):
        assert classify_error_type(Exception(message)) == expected

    def test_permission_wins_over_connection_words(self):
        error = Exception("permission denied while opening connection")
        assert classify_error_type(error) == ErrorType.PERMISSION_ERROR

    def test_status_attribute_on_enveloped_error(self):
        with pytest.raises(Exception) as exc_info:
            unwrap_response({"data": None, "error": {"message": "denied", "status": 403}})
        assert classify_error_type(exc_info.value) == ErrorType.PERMISSION_ERROR


@pytest.mark.unit
class TestClassifiedError:
    def test_retryable_types(self):
        assert classify_error(BackendNetworkError("x")).retryable
        assert classify_error(BackendTimeoutError("x")).retryable
        assert classify_error(Exception("unknown")).retryable
        assert not classify_error(BackendPermissionError("x")).retryable
        assert not classify_error(BackendSchemaError("x")).retryable
        assert not classify_error(CircuitBreakerOpenError("x")).retryable

    def test_breaker_tripping_types(self):
        assert classify_error(BackendNetworkError("x")).trips_breaker
        assert classify_error(Exception("unknown")).trips_breaker
        assert not classify_error(BackendPermissionError("x")).trips_breaker
        assert not classify_error(BackendSchemaError("x")).trips_breaker
        assert not classify_error(CircuitBreakerOpenError("x")).trips_breaker

    def test_message_falls_back_to_class_name(self):
        assert classify_error(ConnectionResetError()).message == "ConnectionResetError"

    def test_to_dict(self):
        data = classify_error(BackendTimeoutError("slow")).to_dict()
        assert data == {"error_type": "timeout_error", "message": "slow", "retryable": True}

    def test_is_retryable_error(self):
        assert is_retryable_error(BackendNetworkError("x"))
        assert not is_retryable_error(BackendPermissionError("x"))

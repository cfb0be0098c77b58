"""
Unit Tests for Core Exceptions

Tests the base error helpers and the themed hierarchy.
"""

import pytest

from data_resilience.core.exceptions import (
    BackendError,
    BackendNetworkError,
    BackendPermissionError,
    BackendSchemaError,
    BackendTimeoutError,
    CacheError,
    CacheKeyError,
    CachePersistenceError,
    CacheSerializationError,
    CircuitBreakerError,
    CircuitBreakerOpenError,
    ConfigurationError,
    DataAccessError,
    SchedulerError,
    UnknownScheduleError,
)


@pytest.mark.unit
class TestDataAccessError:
    """Test the base exception class."""

    def test_base_error_creation(self):
        error = DataAccessError("Test message")
        assert str(error) == "Test message"
        assert error.message == "Test message"

    def test_base_error_default_values(self):
        error = DataAccessError("Test")
        assert error.details == {}
        assert error.query_id is None

    def test_details_are_copied(self):
        details = {"resource": "customers"}
        error = DataAccessError("Test", details=details)
        error.with_context(page=2)
        assert details == {"resource": "customers"}

    def test_to_dict(self):
        error = BackendTimeoutError("Timed out", query_id="q-1", details={"timeout": 10})
        assert error.to_dict() == {
            "error_type": "BackendTimeoutError",
            "message": "Timed out",
            "query_id": "q-1",
            "details": {"timeout": 10},
        }

    def test_with_context_and_suggestion_chain(self):
        error = DataAccessError("Test").with_context(resource="customers").with_suggestion(
            "Check the network"
        )
        assert error.details == {"resource": "customers", "suggestion": "Check the network"}

    def test_from_exception(self):
        original = ConnectionResetError("peer reset")
        error = BackendNetworkError.from_exception(original, resource="customers")

        assert isinstance(error, BackendNetworkError)
        assert error.message == "peer reset"
        assert error.details["original_error"] == "ConnectionResetError"
        assert error.details["resource"] == "customers"

    def test_repr_includes_query_id_and_details(self):
        error = DataAccessError("Test", query_id="q-1", details={"a": 1})
        text = repr(error)
        assert "query_id='q-1'" in text
        assert "details={'a': 1}" in text


@pytest.mark.unit
class TestHierarchy:
    @pytest.mark.parametrize(
        "error_class,parent",
        [
            (BackendNetworkError, BackendError),
            (BackendTimeoutError, BackendError),
            (BackendPermissionError, BackendError),
            (BackendSchemaError, BackendError),
            (CircuitBreakerOpenError, CircuitBreakerError),
            (CacheSerializationError, CacheError),
            (CachePersistenceError, CacheError),
            (CacheKeyError, CacheError),
            (UnknownScheduleError, SchedulerError),
            (ConfigurationError, DataAccessError),
        ],
    )
    def test_parent_classes(self, error_class, parent):
        assert issubclass(error_class, parent)
        assert issubclass(error_class, DataAccessError)

    def test_catching_base_catches_all(self):
        with pytest.raises(DataAccessError):
            raise CircuitBreakerOpenError("open")

"""
Base Exception Class

This module contains ONLY the base exception class that all other exceptions
inherit from. Specialized exceptions live in their themed modules.
"""

from typing import Any


class DataAccessError(Exception):
    """
    Base exception for all data-access layer errors.

    All custom exceptions inherit from this class to enable:
    - Consistent error handling
    - Query ID correlation
    - Structured error logging

    Attributes:
        message: Error message
        query_id: Query ID for correlation (if available)
        details: Additional error details (dict)

    Example:
        raise BackendTimeoutError(
            "Timed out loading clients",
            query_id="abc-123",
            details={"resource": "clients", "timeout": 10},
        )
    """

    def __init__(
        self, message: str, query_id: str | None = None, details: dict[str, Any] | None = None
    ):
        self.message = message
        self.query_id = query_id
        self.details = (details or {}).copy()
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for logging.

        Returns:
            Dict with error_type, message, query_id, and details
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "query_id": self.query_id,
            "details": self.details,
        }

    def with_suggestion(self, suggestion: str) -> "DataAccessError":
        """Add a suggestion to help users fix the error (chainable)."""
        self.details["suggestion"] = suggestion
        return self

    def with_context(self, **context) -> "DataAccessError":
        """Add additional context to the error details (chainable)."""
        self.details.update(context)
        return self

    def __repr__(self) -> str:
        details_str = f", details={self.details}" if self.details else ""
        query_id_str = f", query_id='{self.query_id}'" if self.query_id else ""
        return f"{self.__class__.__name__}(message='{self.message}'{query_id_str}{details_str})"

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        message: str | None = None,
        query_id: str | None = None,
        **details
    ) -> "DataAccessError":
        """
        Create an error of this class from another exception.

        Useful for wrapping third-party exceptions with additional context.

        Example:
            >>> try:
            ...     await client.get(url)
            ... except httpx.ConnectError as e:
            ...     raise BackendNetworkError.from_exception(e, resource="clients")
        """
        error_message = message or str(exc)
        error_details = {
            "original_error": exc.__class__.__name__,
            "original_message": str(exc),
            **details
        }
        return cls(error_message, query_id=query_id, details=error_details)


class ConfigurationError(DataAccessError):
    """Raised when configuration is invalid or missing."""
    pass

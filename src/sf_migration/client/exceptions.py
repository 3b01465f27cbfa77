"""Custom exceptions for SF Tree Migrate.

This module defines exception classes for the error conditions that can
occur while talking to Salesforce and while migrating record trees.
"""

from typing import Any


class SFMigrationError(Exception):
    """Base exception for all migration tool errors."""

    pass


class ConfigurationError(SFMigrationError):
    """Raised when configuration is invalid or a required collaborator is missing."""

    pass


class APIError(SFMigrationError):
    """Base class for API-related errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: Any | None = None,
    ):
        """Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code
            response: API response body
        """
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with status code and response."""
        msg = self.message
        if self.status_code:
            msg = f"[{self.status_code}] {msg}"
        if self.response:
            msg = f"{msg}: {self.response}"
        return msg


class AuthenticationError(APIError):
    """Raised when authentication fails (401 or an unusable org alias)."""

    pass


class AuthorizationError(APIError):
    """Raised when authorization fails (403 Forbidden)."""

    pass


class NotFoundError(APIError):
    """Raised when a resource is not found (404 Not Found)."""

    pass


class RateLimitError(APIError):
    """Raised when the org's API request limit is exceeded."""

    pass


class ServerError(APIError):
    """Raised when server returns 5xx error."""

    pass


class NetworkError(SFMigrationError):
    """Raised when network-related errors occur (timeouts, connection failures)."""

    pass


class StateError(SFMigrationError):
    """Raised when run state persistence fails."""

    pass


class MigrationError(SFMigrationError):
    """Raised when migration operations fail."""

    pass


class DatabaseWriteError(MigrationError):
    """Raised when one or more rows of a write call were rejected.

    Attributes:
        operation: Write operation name (insert, update, upsert)
        object_type: sObject API name
        summary: WriteSummary of the failed call
    """

    def __init__(self, operation: str, object_type: str, summary: Any):
        self.operation = operation
        self.object_type = object_type
        self.summary = summary
        messages = "; ".join(f"{e.message} ({e.code})" for e in summary.errors[:5])
        super().__init__(
            f"Failed to {operation} {summary.error_count} {object_type} record(s): {messages}"
        )

"""This module defines custom exceptions used throughout the sf-file-flow library."""

from typing import Any, Optional


class SfFileFlowError(Exception):
    """Base class for all errors raised by sf-file-flow."""

    def __init__(self, message: str, *args: Any):
        """Initializes the exception with a descriptive message.

        Args:
            message: A human readable description of the failure.
        """
        self.message = message
        super().__init__(message, *args)


class ConfigurationError(SfFileFlowError):
    """Raised when a connection or migration configuration is unusable."""


class StoreRequestError(SfFileFlowError):
    """An HTTP request against a remote store failed.

    Carries the HTTP status code and, when the store returned a structured
    error body, the API error code (e.g. ``INVALID_FIELD``).
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class StateError(SfFileFlowError):
    """Reading, writing or transitioning a persisted migration state failed."""


class StateMismatchError(StateError):
    """A saved state belongs to a different source/target store pair."""

"""
crm_sync/errors.py

Exception hierarchy for the sync pipeline.
"""

from __future__ import annotations

from typing import Any


class SyncError(RuntimeError):
    """
    Base class for every failure raised by the sync pipeline.
    """


class ConfigurationError(SyncError):
    """
    Raised at startup for invalid or missing settings, before any network call.
    """


class AuthenticationError(SyncError):
    """
    Raised when the source session or the target token cannot be obtained.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SourceNetworkError(SyncError):
    """
    Raised when a source request times out or the connection fails.
    """


class SourceHttpError(SyncError):
    """
    Raised when the source answers with a non-2xx status.
    """

    def __init__(self, message: str, *, status_code: int, body: Any = None, reason: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.reason = reason


class SourceAuthError(SourceHttpError):
    """
    Raised when the source rejects the current session (401/403).
    """


class SourceResponseError(SyncError):
    """
    Raised when a 2xx source response body cannot be parsed.
    """


class TargetRequestError(SyncError):
    """
    Raised when a target API call fails at the transport level.
    """


class RecordValidationError(SyncError):
    """
    Raised when a mapped record misses a mandatory field.
    """

    def __init__(self, message: str, *, missing_fields: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.missing_fields = missing_fields

"""
Unified exception hierarchy for the telemetry ETL.

Provides typed exceptions carrying an ErrorCategory so the feed consumer
and the enrichment components can decide what is recovered locally and
what leaves a message unacknowledged.
"""

import asyncio
import json

# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.types import ErrorCategory


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description
        category: Error classification
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.AUTH,
            ErrorCategory.UNKNOWN,
        )

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Category Bases
# =============================================================================


class TransientError(PipelineError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.TRANSIENT


class PermanentError(PipelineError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Domain-Specific Errors
# =============================================================================


class ConfigurationError(PermanentError):
    """Invalid or incomplete configuration detected at startup."""

    pass


class MessageParseError(PermanentError):
    """Inbound feed message could not be decoded into an IncomingEvent."""

    def __init__(
        self,
        message: str,
        message_id: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause, {"message_id": message_id})
        self.message_id = message_id


class GeoDatabaseError(PermanentError):
    """Geo database could not be opened or read."""

    pass


class AttributionLookupError(PipelineError):
    """
    Remote source-name lookup failed.

    Carries its own category because the same lookup can fail transiently
    (timeouts, 5xx) or permanently (404, malformed body, rejected URL).
    """

    def __init__(
        self,
        message: str,
        url: str,
        status_code: int | None = None,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause, {"url": url, "status_code": status_code})
        self.url = url
        self.status_code = status_code
        self.category = category


class SinkInsertError(PermanentError):
    """
    Sink rejected a batch of processed records.

    Attributes:
        table: Name of the target table
        errors: One dict per rejected record with ``index``, ``reason`` and
            ``message`` keys
    """

    def __init__(
        self,
        message: str,
        table: str,
        errors: list[dict] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause, {"table": table})
        self.table = table
        self.errors = errors or []

    @property
    def first_error(self) -> dict | None:
        return self.errors[0] if self.errors else None


# =============================================================================
# Error Classification Utilities
# =============================================================================


def classify_http_status(status_code: int) -> ErrorCategory:
    """Classify HTTP status code into error category."""
    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN  # Not an error

    if status_code == 401:
        return ErrorCategory.AUTH

    if status_code == 429:
        return ErrorCategory.TRANSIENT  # Rate limited

    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT

    if status_code >= 500:
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def classify_exception(exc: Exception) -> ErrorCategory:
    """Classify an exception into error category."""
    # Already classified
    if isinstance(exc, PipelineError):
        return exc.category

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ErrorCategory.TRANSIENT

    if isinstance(exc, (json.JSONDecodeError, UnicodeDecodeError)):
        return ErrorCategory.PERMANENT

    exc_str = str(exc).lower()
    transient_markers = ("timeout", "connection", "temporarily", "unavailable", "throttl")
    if any(marker in exc_str for marker in transient_markers):
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "PipelineError",
    "TransientError",
    "PermanentError",
    "ConfigurationError",
    "MessageParseError",
    "GeoDatabaseError",
    "AttributionLookupError",
    "SinkInsertError",
    "classify_http_status",
    "classify_exception",
]

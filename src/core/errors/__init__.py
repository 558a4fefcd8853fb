"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- PipelineError hierarchy for typed exceptions
- Classification utilities for error handling
"""

from core.errors.exceptions import (
    AttributionLookupError,
    ConfigurationError,
    # Enums
    ErrorCategory,
    GeoDatabaseError,
    MessageParseError,
    PermanentError,
    # Base classes
    PipelineError,
    SinkInsertError,
    TransientError,
    # Classification utilities
    classify_exception,
    classify_http_status,
)

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "PipelineError",
    "TransientError",
    "PermanentError",
    # Domain errors
    "ConfigurationError",
    "MessageParseError",
    "GeoDatabaseError",
    "AttributionLookupError",
    "SinkInsertError",
    # Classification utilities
    "classify_http_status",
    "classify_exception",
]

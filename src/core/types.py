"""
Core types shared across modules.

Provides the error category enum used by the exception hierarchy, the
attribution client, and the feed consumer to decide how a failure is
reported and whether a message is left for redelivery.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that may succeed on a later delivery
                   (e.g., network timeouts, 429/503 errors)
        AUTH: Authentication failures (e.g., 401 from a remote service)
        PERMANENT: Failures that will not succeed on redelivery
                   (e.g., malformed messages, 404, sink schema rejections)
        CIRCUIT_OPEN: A dependency is short-circuited and was not attempted
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    CIRCUIT_OPEN = "circuit_open"
    UNKNOWN = "unknown"


__all__ = ["ErrorCategory"]

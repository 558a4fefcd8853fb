"""
Core library: infrastructure-agnostic building blocks for the telemetry ETL.

Modules:
    logging     - Structured JSON/console logging with context propagation
    errors      - Exception hierarchy with error categories
    security    - Source URL validation (SSRF prevention)
    utils       - JSON serialization helpers, worker id generation

Nothing in here knows about Kafka, Delta Lake, or the telemetry schema.
"""

from .types import ErrorCategory

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
]

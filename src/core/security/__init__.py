"""Security utilities for outbound requests."""

from core.security.url_validation import (
    is_private_ip,
    sanitize_url,
    validate_source_url,
)

__all__ = [
    "is_private_ip",
    "sanitize_url",
    "validate_source_url",
]

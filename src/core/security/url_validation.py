"""
URL validation for source attribution lookups with SSRF prevention.

Attribution URLs arrive inside untrusted telemetry payloads, so every URL is
checked before the worker issues a request against it.
"""

import ipaddress
from urllib.parse import urlparse

# Allowed schemes for attribution lookups
ALLOWED_SCHEMES: set[str] = {"https", "http"}

# Hosts to block (metadata endpoints, localhost, etc.)
BLOCKED_HOSTS: set[str] = {
    "localhost",
    "127.0.0.1",
    "0.0.0.0",
    "metadata.google.internal",
    "metadata.aws.internal",
    "169.254.169.254",
}

# Private IP ranges (RFC 1918 + link-local + loopback + IPv6)
PRIVATE_RANGES = [
    # IPv4 private ranges
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),  # Link-local (cloud metadata)
    ipaddress.ip_network("127.0.0.0/8"),  # Loopback
    # IPv6 private ranges
    ipaddress.ip_network("::1/128"),  # IPv6 loopback
    ipaddress.ip_network("fe80::/10"),  # IPv6 link-local
    ipaddress.ip_network("fc00::/7"),  # IPv6 unique local addresses
]


def is_private_ip(hostname: str) -> bool:
    """
    Check if hostname is an IP literal inside a private range.

    Hostnames that are not IP literals return False; DNS is never consulted.
    """
    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return any(ip in network for network in PRIVATE_RANGES)


def validate_source_url(
    url: str,
    allowed_domains: set[str] | None = None,
) -> tuple[bool, str]:
    """
    Validate a font-source URL before it is fetched.

    Checks, in order:
    - URL is non-empty and parseable
    - Scheme is http or https
    - Hostname is present and not a blocked metadata/loopback host
    - Hostname is not a private IP literal
    - Hostname is in ``allowed_domains`` when an allowlist is given

    Args:
        url: URL to validate
        allowed_domains: Optional allowlist of hostnames (None = any public host)

    Returns:
        Tuple of (is_valid, error_message):
        - (True, "") if valid
        - (False, "error description") if invalid

    Examples:
        >>> validate_source_url("https://fonts.example.com/foo")
        (True, '')

        >>> validate_source_url("ftp://fonts.example.com/foo")
        (False, 'Invalid scheme: ftp')

        >>> validate_source_url("http://169.254.169.254/latest/meta-data")
        (False, 'Blocked host: 169.254.169.254')
    """
    if not url:
        return False, "Empty URL"

    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError as e:
        return False, f"Invalid URL format: {e}"

    scheme = parsed.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        return False, f"Invalid scheme: {scheme or '<none>'}"

    if not hostname:
        return False, "No hostname in URL"

    hostname_lower = hostname.lower()
    if hostname_lower in BLOCKED_HOSTS:
        return False, f"Blocked host: {hostname_lower}"

    if is_private_ip(hostname_lower):
        return False, f"Private IP address: {hostname_lower}"

    if allowed_domains is not None:
        allowed = {d.lower() for d in allowed_domains}
        if hostname_lower not in allowed:
            return False, f"Domain not in allowlist: {hostname_lower}"

    return True, ""


def sanitize_url(url: str) -> str:
    """Strip query string and fragment so a URL can be logged safely."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "<invalid url>"
    return parsed._replace(query="", fragment="").geturl()


__all__ = [
    "ALLOWED_SCHEMES",
    "BLOCKED_HOSTS",
    "PRIVATE_RANGES",
    "is_private_ip",
    "validate_source_url",
    "sanitize_url",
]

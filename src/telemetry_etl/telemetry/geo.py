"""
Geographic enrichment for telemetry events.

GeoResolver maps a client IP address to country, region and coordinates
using a local MaxMind GeoIP2/GeoLite2 City database. CountryTable maps ISO
3166-1 alpha-2 codes to display names. Neither does network I/O.
"""

import ipaddress
import json
import logging
from pathlib import Path

import geoip2.database
import geoip2.errors
from maxminddb import InvalidDatabaseError

from core.errors.exceptions import GeoDatabaseError
from telemetry_etl.telemetry.schemas.processed import GeoInfo

logger = logging.getLogger(__name__)

DEFAULT_COUNTRY_TABLE = Path(__file__).parent / "data" / "iso3166-1.json"


def _is_routable(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    return not (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    )


class GeoResolver:
    """
    Resolves IP addresses against a MaxMind City database.

    The database is opened once at construction; a missing or unreadable file
    raises GeoDatabaseError so the worker fails at startup rather than per
    message.

    Example:
        >>> resolver = GeoResolver("/var/lib/GeoIP/GeoLite2-City.mmdb")
        >>> resolver.resolve("8.8.8.8").country_code
        'US'
    """

    def __init__(self, database_path: str | Path):
        self.database_path = str(database_path)
        try:
            self._reader = geoip2.database.Reader(self.database_path)
        except (OSError, ValueError, InvalidDatabaseError) as e:
            raise GeoDatabaseError(
                f"Cannot open geo database at {self.database_path}",
                cause=e,
                context={"database_path": self.database_path},
            ) from e

        logger.info("Geo database loaded", extra={"table_path": self.database_path})

    @classmethod
    def from_reader(cls, reader) -> "GeoResolver":
        """Wrap an already opened reader."""
        resolver = cls.__new__(cls)
        resolver.database_path = "<reader>"
        resolver._reader = reader
        return resolver

    def resolve(self, ip_address: str | None) -> GeoInfo | None:
        """
        Look up geo data for one address.

        Returns None for empty, malformed, private, loopback, link-local or
        reserved addresses, and for addresses the database does not contain.
        """
        if not ip_address:
            return None

        try:
            ip = ipaddress.ip_address(ip_address.strip())
        except ValueError:
            logger.debug("Malformed IP address, skipping geo lookup")
            return None

        if not _is_routable(ip):
            return None

        try:
            response = self._reader.city(str(ip))
        except (geoip2.errors.AddressNotFoundError, ValueError):
            return None

        region = None
        if response.subdivisions:
            region = response.subdivisions[0].iso_code

        return GeoInfo(
            country_code=response.country.iso_code,
            region=region,
            latitude=response.location.latitude,
            longitude=response.location.longitude,
        )

    def close(self) -> None:
        self._reader.close()

    def __enter__(self) -> "GeoResolver":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class CountryTable:
    """
    ISO 3166-1 alpha-2 code to country name lookup.

    The JSON table maps each code to an object with a ``name`` field, e.g.
    ``{"US": {"name": "United States of America"}}``.
    """

    def __init__(self, names: dict[str, str]):
        self._names = {code.upper(): name for code, name in names.items()}

    @classmethod
    def load(cls, path: str | Path | None = None) -> "CountryTable":
        """Load from ``path``, or the packaged table when path is None."""
        table_path = Path(path) if path else DEFAULT_COUNTRY_TABLE
        try:
            with open(table_path, encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise GeoDatabaseError(f"Cannot load country table from {table_path}", cause=e) from e

        names = {}
        for code, entry in raw.items():
            name = entry.get("name") if isinstance(entry, dict) else entry
            if name:
                names[code] = name

        logger.debug("Country table loaded", extra={"table_path": str(table_path), "cache_size": len(names)})
        return cls(names)

    def name_for(self, code: str | None) -> str | None:
        if not code:
            return None
        return self._names.get(code.upper())

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and code.upper() in self._names


__all__ = ["GeoResolver", "CountryTable", "DEFAULT_COUNTRY_TABLE"]

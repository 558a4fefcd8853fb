"""
Processed telemetry record schemas.

A ProcessedEvent is what lands in the sink: passthrough scalars, derived geo
columns and a flat list of key/value payload entries. It never carries the
client IP address or nested structures.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict


class GeoInfo(BaseModel):
    """Geographic information resolved from an IP address."""

    model_config = ConfigDict(frozen=True)

    country_code: str | None = None
    region: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    @property
    def coords(self) -> str | None:
        """Coordinates rendered as "<lat>, <lon>", or None when either is unknown."""
        if self.latitude is None or self.longitude is None:
            return None
        return f"{self.latitude}, {self.longitude}"


class EventDataEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    value: str | None = None


class ProcessedEvent(BaseModel):
    """Flat analytic record written to the events table."""

    model_config = ConfigDict(frozen=True)

    server_timestamp: float | None = None
    timestamp: str | None = None
    geo_country_code: str | None = None
    geo_country: str | None = None
    geo_region: str | None = None
    geo_coords: str | None = None
    status_code: int | None = None
    event_type: str | None = None
    execution_time: float | None = None
    fonty_version: str | None = None
    os_family: str | None = None
    os_version: str | None = None
    python_version: str | None = None
    event_data: list[EventDataEntry] = []

    def to_row(self) -> dict[str, Any]:
        """Plain dict for DataFrame construction; event_data becomes a list of dicts."""
        return self.model_dump()


__all__ = ["GeoInfo", "EventDataEntry", "ProcessedEvent"]

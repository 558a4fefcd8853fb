"""Telemetry event schemas."""

from telemetry_etl.telemetry.schemas.events import IncomingEvent, PayloadValue
from telemetry_etl.telemetry.schemas.processed import EventDataEntry, GeoInfo, ProcessedEvent

__all__ = [
    "IncomingEvent",
    "PayloadValue",
    "GeoInfo",
    "EventDataEntry",
    "ProcessedEvent",
]

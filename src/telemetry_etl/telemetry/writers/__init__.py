"""Telemetry sink writers."""

from telemetry_etl.telemetry.writers.delta_events import TelemetryEventsDeltaWriter

__all__ = ["TelemetryEventsDeltaWriter"]

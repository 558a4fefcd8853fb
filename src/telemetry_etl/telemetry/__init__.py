"""Telemetry domain: enriching library usage events into the events table.

This module contains:
- Incoming and processed event schemas
- Geo resolution and country names
- Source attribution client with a coalescing cache
- Event transformer, ingestion pipeline and worker
- Delta table writer for processed events

Import classes directly from submodules to avoid loading heavy dependencies:
    from telemetry_etl.telemetry.worker import TelemetryEtlWorker
    from telemetry_etl.telemetry.pipeline import IngestionPipeline
"""

# Don't import concrete implementations here to avoid loading
# heavy dependencies (geoip2, aiohttp, polars) at package import time.

__all__: list[str] = []

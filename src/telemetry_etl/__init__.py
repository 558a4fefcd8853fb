"""
Telemetry ETL: streaming enrichment of library telemetry events.

Subpackages:
    common     - Feed consumer, offset tracking, Delta writers, metrics
    telemetry  - Event schemas, geo and source enrichment, pipeline, worker

Architecture:
    telemetry.events → FeedConsumer → IngestionPipeline
                                         ├─ GeoResolver (IP → country/region/coords, IP dropped)
                                         ├─ SourceAttributionCache (source_url → source_name)
                                         └─ TelemetryEventsDeltaWriter → events Delta table

Dependencies:
    - core.*: Reusable components (errors, logging, security, utils)
    - aiokafka: Async Kafka client
    - pydantic: Event schema validation
"""

from config.config import EtlConfig

__version__ = "0.1.0"
__all__ = ["EtlConfig"]

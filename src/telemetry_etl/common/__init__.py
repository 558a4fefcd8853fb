"""Feed and storage infrastructure shared by the telemetry pipeline.

This package provides:
- FeedConsumer: Kafka consumer handing out FeedMessages with ack handles
- OffsetTracker: per-partition commit bookkeeping
- BaseDeltaWriter / DeltaTableWriter: Delta Lake appends in a worker process
- Prometheus metrics and signal handling

Import classes directly from submodules to avoid loading heavy dependencies:
    from telemetry_etl.common.consumer import FeedConsumer
    from telemetry_etl.common.types import FeedMessage
"""

# Don't import concrete implementations here to avoid loading
# heavy dependencies (aiokafka, polars, deltalake) at package import time.

__all__: list[str] = []

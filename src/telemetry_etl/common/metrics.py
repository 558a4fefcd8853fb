"""
Prometheus metrics for telemetry ETL monitoring.

Focused on essential metrics:
- Message consumption and acknowledgment counts
- Error rates by category
- Attribution lookup outcomes
- Delta write tracking
- In-flight handler count

Metrics register on the default prometheus_client registry, which is what
start_http_server exposes.
"""

import logging

from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)


# =============================================================================
# Feed Metrics
# =============================================================================

messages_consumed_counter = Counter(
    "telemetry_etl_messages_consumed_total",
    "Total number of messages consumed from the feed",
    ["topic", "consumer_group"],
)

messages_acked_counter = Counter(
    "telemetry_etl_messages_acked_total",
    "Total number of messages acknowledged",
    ["topic"],
)

messages_redelivered_counter = Counter(
    "telemetry_etl_messages_redelivered_total",
    "Total number of partition seeks for redelivery",
    ["topic", "reason"],
)

processing_errors_counter = Counter(
    "telemetry_etl_processing_errors_total",
    "Total number of message handler failures",
    ["topic", "error_category"],
)

parse_failures_counter = Counter(
    "telemetry_etl_parse_failures_total",
    "Total number of messages that could not be parsed",
    ["topic"],
)

message_processing_duration_seconds = Histogram(
    "telemetry_etl_message_processing_duration_seconds",
    "Time spent processing one message",
    ["topic"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

in_flight_gauge = Gauge(
    "telemetry_etl_in_flight_handlers",
    "Number of message handlers currently running",
)

committed_offset_gauge = Gauge(
    "telemetry_etl_committed_offset",
    "Last committed offset per partition",
    ["topic", "partition"],
)

# =============================================================================
# Enrichment Metrics
# =============================================================================

attribution_lookups_counter = Counter(
    "telemetry_etl_attribution_lookups_total",
    "Source attribution lookups by outcome (hit, fetched, failed, coalesced)",
    ["outcome"],
)

# =============================================================================
# Sink Metrics
# =============================================================================

sink_failures_counter = Counter(
    "telemetry_etl_sink_failures_total",
    "Total number of rejected sink submissions",
    ["table"],
)

delta_writes_counter = Counter(
    "telemetry_etl_delta_writes_total",
    "Total number of Delta appends",
    ["table", "status"],
)

delta_rows_written_counter = Counter(
    "telemetry_etl_delta_rows_written_total",
    "Total number of rows appended to Delta tables",
    ["table"],
)


# =============================================================================
# Helper Functions
# =============================================================================


def record_message_consumed(topic: str, consumer_group: str) -> None:
    messages_consumed_counter.labels(topic=topic, consumer_group=consumer_group).inc()


def record_message_acked(topic: str) -> None:
    messages_acked_counter.labels(topic=topic).inc()


def record_redelivery(topic: str, reason: str) -> None:
    messages_redelivered_counter.labels(topic=topic, reason=reason).inc()


def record_processing_error(topic: str, error_category: str) -> None:
    processing_errors_counter.labels(topic=topic, error_category=error_category).inc()


def record_parse_failure(topic: str) -> None:
    parse_failures_counter.labels(topic=topic).inc()


def record_attribution_lookup(outcome: str) -> None:
    attribution_lookups_counter.labels(outcome=outcome).inc()


def record_sink_failure(table: str) -> None:
    sink_failures_counter.labels(table=table).inc()


def record_delta_write(table: str, row_count: int, success: bool) -> None:
    status = "success" if success else "error"
    delta_writes_counter.labels(table=table, status=status).inc()
    if success:
        delta_rows_written_counter.labels(table=table).inc(row_count)


def update_committed_offset(topic: str, partition: int, offset: int) -> None:
    committed_offset_gauge.labels(topic=topic, partition=str(partition)).set(offset)


def start_metrics_server(port: int) -> None:
    """Expose the default registry over HTTP on ``port``."""
    start_http_server(port)
    logger.info(f"Metrics server listening on port {port}", extra={"operation": "start_metrics_server"})


__all__ = [
    "message_processing_duration_seconds",
    "in_flight_gauge",
    "record_message_consumed",
    "record_message_acked",
    "record_redelivery",
    "record_processing_error",
    "record_parse_failure",
    "record_attribution_lookup",
    "record_sink_failure",
    "record_delta_write",
    "update_committed_offset",
    "start_metrics_server",
]

"""
Per-message ingestion: parse, transform, submit, acknowledge.

Acknowledgment contract:
- A message that cannot be parsed raises MessageParseError and is never
  acknowledged; the feed redelivers it after the ack deadline.
- A transform failure propagates and the message is not acknowledged.
- Sink submission is attempted exactly once. Whether it succeeds or is
  rejected, the message is acknowledged exactly once. Rejections are logged.
"""

import json
import logging
import time

from pydantic import ValidationError

from core.errors.exceptions import MessageParseError, SinkInsertError
from telemetry_etl.common.metrics import record_parse_failure, record_sink_failure
from telemetry_etl.common.types import FeedMessage
from telemetry_etl.telemetry.schemas.events import IncomingEvent
from telemetry_etl.telemetry.transformer import EventTransformer
from telemetry_etl.telemetry.writers.delta_events import TelemetryEventsDeltaWriter

logger = logging.getLogger(__name__)


def parse_message(message: FeedMessage) -> IncomingEvent:
    """Decode a feed message body into an IncomingEvent."""
    try:
        text = message.data.decode("utf-8")
        raw = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MessageParseError(
            f"Message body is not valid UTF-8 JSON: {e}",
            message_id=message.message_id,
            cause=e,
        ) from e

    if not isinstance(raw, dict):
        raise MessageParseError(
            f"Message body must be a JSON object, got {type(raw).__name__}",
            message_id=message.message_id,
        )

    try:
        return IncomingEvent.model_validate(raw)
    except ValidationError as e:
        raise MessageParseError(
            f"Message body does not match the event schema ({e.error_count()} error(s))",
            message_id=message.message_id,
            cause=e,
        ) from e


class IngestionPipeline:
    """Message handler driving one message from receipt to acknowledgment."""

    def __init__(
        self,
        transformer: EventTransformer,
        sink: TelemetryEventsDeltaWriter,
    ):
        self.transformer = transformer
        self.sink = sink

        self.messages_received = 0
        self.messages_acked = 0
        self.parse_failures = 0
        self.sink_failures = 0

    async def handle(self, message: FeedMessage) -> None:
        self.messages_received += 1
        start_time = time.perf_counter()

        try:
            event = parse_message(message)
        except MessageParseError:
            self.parse_failures += 1
            record_parse_failure(message.topic)
            raise

        processed = await self.transformer.transform(event)

        try:
            await self.sink.insert([processed], batch_id=message.message_id)
        except SinkInsertError as e:
            self._log_sink_failure(e)
        except Exception as e:
            self._log_sink_failure(
                SinkInsertError(
                    f"Insert into {self.sink.table_name} failed: {e}",
                    table=self.sink.table_name,
                    errors=[{"index": 0, "reason": type(e).__name__, "message": str(e)}],
                    cause=e,
                )
            )

        message.ack()
        self.messages_acked += 1

        logger.debug(
            "Message processed",
            extra={
                "event_type": processed.event_type,
                "geo_country_code": processed.geo_country_code,
                "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
            },
        )

    def _log_sink_failure(self, error: SinkInsertError) -> None:
        self.sink_failures += 1
        record_sink_failure(error.table)
        logger.error(
            "Sink rejected processed event, acknowledging anyway",
            extra={
                "table": error.table,
                "error_count": len(error.errors),
                "first_error": error.first_error,
                "error": error.message,
            },
        )

    def get_stats(self) -> dict[str, int]:
        return {
            "received": self.messages_received,
            "acked": self.messages_acked,
            "parse_failed": self.parse_failures,
            "sink_failed": self.sink_failures,
        }


__all__ = ["IngestionPipeline", "parse_message"]

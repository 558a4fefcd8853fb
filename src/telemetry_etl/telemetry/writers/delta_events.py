"""Delta Lake writer for the telemetry events table.

Appends ProcessedEvents to the events table with async support. A rejected
append raises SinkInsertError carrying one structured error per record.
"""

from datetime import UTC, datetime
from typing import Any

import polars as pl

from core.errors.exceptions import SinkInsertError
from telemetry_etl.common.writers.base import BaseDeltaWriter
from telemetry_etl.telemetry.schemas.processed import ProcessedEvent

EVENT_DATA_DTYPE = pl.List(pl.Struct({"key": pl.Utf8, "value": pl.Utf8}))

# Explicit schema for the events table
# This ensures type compatibility and prevents inference issues on all-null batches
EVENTS_SCHEMA = {
    "server_timestamp": pl.Float64,
    "timestamp": pl.Utf8,
    "geo_country_code": pl.Utf8,
    "geo_country": pl.Utf8,
    "geo_region": pl.Utf8,
    "geo_coords": pl.Utf8,
    "status_code": pl.Int64,
    "event_type": pl.Utf8,
    "execution_time": pl.Float64,
    "fonty_version": pl.Utf8,
    "os_family": pl.Utf8,
    "os_version": pl.Utf8,
    "python_version": pl.Utf8,
    "event_data": EVENT_DATA_DTYPE,
    "ingested_at": pl.Datetime("us", "UTC"),
    "event_date": pl.Date,
}


class TelemetryEventsDeltaWriter(BaseDeltaWriter):
    """Writer for the telemetry events Delta table, partitioned by event_date."""

    def __init__(
        self,
        table_path: str,
        storage_options: dict[str, str] | None = None,
    ):
        """
        Initialize telemetry events writer.

        Args:
            table_path: Local path or object store URI of the events table
            storage_options: deltalake storage options for object stores
        """
        super().__init__(
            table_path=table_path,
            partition_column="event_date",
            storage_options=storage_options,
        )

    def _records_to_dataframe(
        self, records: list[ProcessedEvent], now: datetime | None = None
    ) -> pl.DataFrame:
        now = now or datetime.now(UTC)
        rows: list[dict[str, Any]] = []
        for record in records:
            row = record.to_row()
            row["ingested_at"] = now
            row["event_date"] = now.date()
            rows.append(row)
        return pl.DataFrame(rows, schema=EVENTS_SCHEMA)

    async def insert(self, records: list[ProcessedEvent], batch_id: str | None = None) -> int:
        """
        Append records to the events table (non-blocking).

        Returns:
            Number of rows written

        Raises:
            SinkInsertError: The batch was rejected. ``errors`` holds one
                ``{"index", "reason", "message"}`` entry per record.
        """
        if not records:
            return 0

        try:
            df = self._records_to_dataframe(records)
        except (TypeError, ValueError, pl.exceptions.PolarsError) as e:
            raise self._insert_error(records, "invalid", e) from e

        if not await self._async_append(df, batch_id=batch_id):
            raise self._insert_error(records, "append_failed", self._last_append_error)

        return len(df)

    def _insert_error(
        self, records: list[ProcessedEvent], reason: str, cause: Exception | None
    ) -> SinkInsertError:
        message = str(cause) if cause else "Delta append failed"
        errors = [
            {"index": index, "reason": reason, "message": message}
            for index in range(len(records))
        ]
        return SinkInsertError(
            f"Insert into {self.table_name} rejected {len(records)} record(s)",
            table=self.table_name,
            errors=errors,
            cause=cause,
        )


__all__ = ["TelemetryEventsDeltaWriter", "EVENTS_SCHEMA"]

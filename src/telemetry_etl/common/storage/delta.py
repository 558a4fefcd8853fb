"""
Delta table append operations.

Write operations for Delta tables on local paths or object stores. All
datetimes are UTC-aware.
"""

from __future__ import annotations

import logging

import polars as pl
from deltalake import DeltaTable, write_deltalake

logger = logging.getLogger(__name__)


class DeltaTableWriter:
    """
    Appending writer for a single Delta table.

    Usage:
        writer = DeltaTableWriter("s3://bucket/telemetry/events", partition_column="event_date")
        rows_written = writer.append(df)
    """

    def __init__(
        self,
        table_path: str,
        partition_column: str | None = None,
        storage_options: dict[str, str] | None = None,
    ):
        self.table_path = table_path
        self.partition_column = partition_column
        self.storage_options = storage_options or None
        self._delta_table: DeltaTable | None = None

    def _load_table(self) -> DeltaTable | None:
        """Load a DeltaTable instance, returning None if it doesn't exist.

        Caches the instance for reuse within a single append call.
        Call _invalidate_cached_table() before each write.
        """
        if self._delta_table is not None:
            return self._delta_table
        try:
            self._delta_table = DeltaTable(self.table_path, storage_options=self.storage_options)
            return self._delta_table
        except Exception:
            return None

    def _invalidate_cached_table(self) -> None:
        """Drop the cached DeltaTable so the next call re-reads metadata."""
        self._delta_table = None

    def _prepare_dataframe_for_append(
        self, df: pl.DataFrame
    ) -> tuple[pl.DataFrame, list[str] | None]:
        """Resolve partitions for append.

        Existing tables keep their own partition columns; new tables use the
        configured partition column.

        Returns (prepared_df, partition_by).
        """
        dt = self._load_table()

        if dt is None:
            return df, [self.partition_column] if self.partition_column else None

        try:
            existing_partitions = dt.metadata().partition_columns
            partition_by = list(existing_partitions) if existing_partitions else None
        except Exception:
            partition_by = [self.partition_column] if self.partition_column else None
        return df, partition_by

    def append(
        self,
        df: pl.DataFrame,
        batch_id: str | None = None,
    ) -> int:
        """
        Append DataFrame to Delta table.

        New columns are merged into the table schema. Schema conflicts raise
        from write_deltalake.

        Args:
            df: Data to append
            batch_id: Optional short identifier for log correlation

        Returns:
            Number of rows written
        """
        if df.is_empty():
            logger.debug("No data to write", extra={"table_path": self.table_path})
            return 0

        logger.debug(
            "Delta write starting",
            extra={"batch_size": len(df), "table_path": self.table_path, "batch_id": batch_id},
        )

        # Invalidate cached table so we read fresh metadata for this write
        self._invalidate_cached_table()
        df, partition_by = self._prepare_dataframe_for_append(df)

        write_deltalake(
            self.table_path,
            df.to_arrow(),
            mode="append",
            schema_mode="merge",
            storage_options=self.storage_options,
            partition_by=partition_by,
        )  # type: ignore[call-overload]

        logger.debug(
            "Delta write completed",
            extra={"rows_written": len(df), "table_path": self.table_path, "partition_by": partition_by},
        )

        return len(df)

    def read(self, columns: list[str] | None = None) -> pl.DataFrame:
        """Read the whole table (tests and ad-hoc inspection)."""
        return pl.read_delta(self.table_path, columns=columns, storage_options=self.storage_options)

    def version(self) -> int | None:
        self._invalidate_cached_table()
        dt = self._load_table()
        return dt.version() if dt is not None else None

    def __repr__(self) -> str:
        return f"DeltaTableWriter({self.table_path!r})"


__all__ = ["DeltaTableWriter"]

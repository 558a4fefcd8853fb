"""
Base class for Delta table writers.

Provides common functionality for all Delta writers:
- Async wrapper for non-blocking appends via subprocess
- Common error handling and logging patterns

Delta writes run in a subprocess (ProcessPoolExecutor) so that the GIL held
by the PyO3/Rust write_deltalake() call does not stall the event loop that
is still dispatching feed messages.

Subclasses should inherit from BaseDeltaWriter and implement domain-specific
data transformation methods.
"""

import asyncio
import atexit
import io
import logging
import time
from concurrent.futures import ProcessPoolExecutor
from concurrent.futures.process import BrokenProcessPool

import polars as pl

from telemetry_etl.common.metrics import record_delta_write


# ---------------------------------------------------------------------------
# Module-level subprocess function (must be top-level for pickling)
# ---------------------------------------------------------------------------

def _subprocess_delta_append(
    table_path: str,
    df_ipc_bytes: bytes,
    partition_column: str | None,
    storage_options: dict[str, str] | None,
    batch_id: str | None,
) -> int:
    """Run DeltaTableWriter.append in a subprocess."""
    from telemetry_etl.common.storage.delta import DeltaTableWriter

    df = pl.read_ipc(io.BytesIO(df_ipc_bytes))
    writer = DeltaTableWriter(
        table_path=table_path,
        partition_column=partition_column,
        storage_options=storage_options,
    )
    return writer.append(df, batch_id=batch_id)


# ---------------------------------------------------------------------------
# Process pool management
# ---------------------------------------------------------------------------

_process_pool: ProcessPoolExecutor | None = None


def _get_delta_process_pool() -> ProcessPoolExecutor:
    """Lazily create a shared ProcessPoolExecutor for delta writes."""
    global _process_pool
    if _process_pool is None:
        _process_pool = ProcessPoolExecutor(max_workers=2)
        atexit.register(_shutdown_delta_process_pool)
    return _process_pool


def _shutdown_delta_process_pool() -> None:
    global _process_pool
    if _process_pool is not None:
        _process_pool.shutdown(wait=False)
        _process_pool = None


def _reset_delta_process_pool() -> None:
    """Replace a broken process pool with a fresh one."""
    global _process_pool
    if _process_pool is not None:
        try:
            _process_pool.shutdown(wait=False)
        except Exception:
            logging.getLogger(__name__).debug("Error shutting down broken process pool", exc_info=True)
    _process_pool = None


class BaseDeltaWriter:
    """
    Base class for Delta table writers with async support.

    Subclasses should:
    1. Call super().__init__() with table_path and optional params
    2. Implement domain-specific data transformation methods
    3. Use _async_append() for non-blocking writes

    Example:
        class MyDomainWriter(BaseDeltaWriter):
            def __init__(self, table_path: str):
                super().__init__(table_path=table_path)

            async def write_records(self, records: list[dict]) -> bool:
                df = self._records_to_dataframe(records)
                return await self._async_append(df)
    """

    def __init__(
        self,
        table_path: str,
        partition_column: str | None = None,
        storage_options: dict[str, str] | None = None,
    ):
        """
        Initialize base Delta writer.

        Args:
            table_path: Local path or object store URI of the Delta table
            partition_column: Column used for partitioning new tables (default: None)
            storage_options: deltalake storage options for object stores
        """
        self.table_path = table_path
        self.logger = logging.getLogger(self.__class__.__name__)

        self._partition_column = partition_column
        self._storage_options = storage_options or None
        self._last_append_error: Exception | None = None

        self.logger.info(
            f"Initialized {self.__class__.__name__}",
            extra={"table_path": table_path, "partition_by": partition_column},
        )

    @property
    def table_name(self) -> str:
        return self.table_path.rstrip("/").split("/")[-1]

    def _serialize_df(self, df: pl.DataFrame) -> bytes:
        """Serialize a Polars DataFrame to Arrow IPC bytes for subprocess transfer."""
        buf = io.BytesIO()
        df.write_ipc(buf)
        return buf.getvalue()

    async def _async_append(
        self,
        df: pl.DataFrame,
        batch_id: str | None = None,
    ) -> bool:
        """
        Append DataFrame to Delta table (non-blocking, subprocess).

        The failure is kept in ``_last_append_error`` for callers that need
        to report it.

        Args:
            df: Polars DataFrame to append
            batch_id: Optional short identifier for log correlation

        Returns:
            True if write succeeded, False otherwise
        """
        self._last_append_error = None
        if df.is_empty():
            return True

        try:
            start = time.monotonic()
            loop = asyncio.get_running_loop()
            pool = _get_delta_process_pool()
            rows_written = await loop.run_in_executor(
                pool,
                _subprocess_delta_append,
                self.table_path,
                self._serialize_df(df),
                self._partition_column,
                self._storage_options,
                batch_id,
            )
            record_delta_write(self.table_name, rows_written, success=True)

            self.logger.info(
                "Successfully appended to Delta table",
                extra={
                    "batch_id": batch_id,
                    "rows_written": rows_written,
                    "table_path": self.table_path,
                    "duration_ms": round((time.monotonic() - start) * 1000, 2),
                },
            )
            return True

        except BrokenProcessPool:
            _reset_delta_process_pool()
            raise

        except Exception as e:
            self._last_append_error = e
            record_delta_write(self.table_name, len(df), success=False)
            self.logger.error(
                "Failed to append to Delta table",
                extra={
                    "batch_id": batch_id,
                    "table_path": self.table_path,
                    "error": str(e),
                    "batch_size": len(df),
                },
                exc_info=True,
            )
            return False


__all__ = ["BaseDeltaWriter"]

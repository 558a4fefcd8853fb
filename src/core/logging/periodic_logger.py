"""Periodic statistics logging utility for workers."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


def format_cycle_output(
    cycle_count: int,
    counts: dict[str, int],
    since_last: dict[str, int] | None = None,
    interval_seconds: float | None = None,
) -> str:
    """
    Build a one-line progress summary.

    Example:
        Cycle 3: received=120 (+40) acked=118 (+39) parse_failed=2 (+1) [13.3 msg/s]
    """
    parts = []
    for name, value in counts.items():
        if since_last is not None:
            parts.append(f"{name}={value} (+{since_last.get(name, 0)})")
        else:
            parts.append(f"{name}={value}")

    line = f"Cycle {cycle_count}: " + " ".join(parts)
    if since_last is not None and interval_seconds:
        rate = since_last.get("received", 0) / interval_seconds
        line = f"{line} [{rate:.1f} msg/s]"
    return line


class PeriodicStatsLogger:
    """
    Manages periodic statistics logging for workers with delta tracking.

    Workers provide a callback returning cumulative integer counters; each
    cycle logs the totals and the change since the previous cycle.
    """

    def __init__(
        self,
        interval_seconds: float,
        get_stats: Callable[[], dict[str, Any]],
        stage: str,
    ):
        """
        Args:
            interval_seconds: Logging interval in seconds
            get_stats: Callback returning cumulative counters (and optional extras)
            stage: Stage name for logging context
        """
        self.interval_seconds = interval_seconds
        self.get_stats = get_stats
        self.stage = stage
        self._task: asyncio.Task | None = None
        self._cycle_count = 0
        self._previous: dict[str, int] = {}

    def start(self) -> None:
        """Start the periodic logging task."""
        if self._task is not None:
            logger.warning("Periodic logger already running")
            return

        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the periodic logging task."""
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def log_cycle(self) -> str:
        """Log one cycle and return the formatted message."""
        stats = self.get_stats()
        counts = {k: v for k, v in stats.items() if isinstance(v, int) and not isinstance(v, bool)}

        if self._cycle_count == 0:
            msg = format_cycle_output(0, counts)
            msg = f"{msg} [cycle output every {self.interval_seconds}s]"
        else:
            deltas = {k: v - self._previous.get(k, 0) for k, v in counts.items()}
            msg = format_cycle_output(self._cycle_count, counts, deltas, self.interval_seconds)

        logger.info(msg, extra={"operation": self.stage, "stats": stats})
        self._previous = counts
        self._cycle_count += 1
        return msg

    async def _run(self) -> None:
        """Run the periodic logging loop with delta tracking."""
        try:
            self.log_cycle()
            while True:
                await asyncio.sleep(self.interval_seconds)
                self.log_cycle()
        except asyncio.CancelledError:
            logger.debug("Periodic stats logger task cancelled")
            raise

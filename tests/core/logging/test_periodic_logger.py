"""Tests for periodic statistics logging."""

import asyncio
import logging

from core.logging.periodic_logger import PeriodicStatsLogger, format_cycle_output


class TestFormatCycleOutput:
    def test_totals_only(self):
        line = format_cycle_output(0, {"received": 5, "acked": 4})
        assert line == "Cycle 0: received=5 acked=4"

    def test_with_deltas_and_rate(self):
        line = format_cycle_output(
            3,
            {"received": 120, "acked": 118},
            since_last={"received": 40, "acked": 39},
            interval_seconds=10,
        )
        assert line == "Cycle 3: received=120 (+40) acked=118 (+39) [4.0 msg/s]"


class TestPeriodicStatsLogger:
    def test_log_cycle_tracks_deltas(self):
        stats = {"received": 10, "acked": 8, "pending_by_partition": {"t:0": 2}}
        periodic = PeriodicStatsLogger(interval_seconds=5, get_stats=lambda: dict(stats), stage="ingest")

        first = periodic.log_cycle()
        assert first.startswith("Cycle 0: received=10 acked=8")
        assert "pending_by_partition" not in first

        stats["received"] = 20
        stats["acked"] = 18
        second = periodic.log_cycle()
        assert second == "Cycle 1: received=20 (+10) acked=18 (+10) [2.0 msg/s]"

    def test_logs_with_stage(self, caplog):
        periodic = PeriodicStatsLogger(interval_seconds=5, get_stats=lambda: {"received": 1}, stage="ingest")

        with caplog.at_level(logging.INFO, logger="core.logging.periodic_logger"):
            periodic.log_cycle()

        assert caplog.records[0].operation == "ingest"
        assert caplog.records[0].stats == {"received": 1}

    async def test_start_and_stop(self):
        calls = []

        def get_stats():
            calls.append(1)
            return {"received": len(calls)}

        periodic = PeriodicStatsLogger(interval_seconds=0.01, get_stats=get_stats, stage="ingest")
        periodic.start()
        await asyncio.sleep(0.05)
        await periodic.stop()

        assert len(calls) >= 2
        assert periodic._task is None

    async def test_stop_without_start(self):
        periodic = PeriodicStatsLogger(interval_seconds=1, get_stats=dict, stage="ingest")
        await periodic.stop()

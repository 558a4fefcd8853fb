"""Tests for the telemetry ETL command line entry point."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest

from telemetry_etl import __main__ as cli


@pytest.fixture(autouse=True)
def no_logging_setup():
    with patch.object(cli, "setup_logging"), patch.object(cli, "load_dotenv"):
        yield


class TestParseArgs:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        monkeypatch.delenv("JSON_LOGS", raising=False)

        args = cli.parse_args([])

        assert args.config is None
        assert args.metrics_port is None
        assert args.log_level == "INFO"
        assert args.json_logs is False

    def test_options(self):
        args = cli.parse_args(["--config", "/etc/etl.yaml", "--metrics-port", "9100", "--json-logs"])

        assert args.config == Path("/etc/etl.yaml")
        assert args.metrics_port == 9100
        assert args.json_logs is True


class TestMain:
    def test_configuration_error_exits_2(self, tmp_path):
        assert cli.main(["--config", str(tmp_path / "missing.yaml")]) == 2

    def test_worker_init_failure_exits_2(self):
        config = Mock(metrics_port=None)
        with (
            patch.object(cli, "load_config", return_value=config),
            patch.object(cli, "TelemetryEtlWorker", side_effect=cli.GeoDatabaseError("no db")),
        ):
            assert cli.main([]) == 2

    def test_runs_worker_and_starts_metrics(self):
        config = Mock(metrics_port=8000)
        worker = Mock()
        worker.start = AsyncMock()
        worker.stop = AsyncMock()

        with (
            patch.object(cli, "load_config", return_value=config),
            patch.object(cli, "TelemetryEtlWorker", return_value=worker),
            patch.object(cli, "start_metrics_server") as metrics,
        ):
            assert cli.main(["--metrics-port", "9100"]) == 0

        metrics.assert_called_once_with(9100)
        worker.start.assert_awaited_once()
        worker.stop.assert_awaited_once()

    def test_worker_failure_exits_1(self):
        worker = Mock()
        worker.start = AsyncMock(side_effect=RuntimeError("broker unreachable"))
        worker.stop = AsyncMock()

        with (
            patch.object(cli, "load_config", return_value=Mock(metrics_port=None)),
            patch.object(cli, "TelemetryEtlWorker", return_value=worker),
        ):
            assert cli.main([]) == 1

        worker.stop.assert_awaited_once()


async def test_run_worker_stops_on_shutdown_signal():
    started = asyncio.Event()
    worker = Mock()
    worker.stop = AsyncMock()

    async def start():
        started.set()
        await asyncio.Event().wait()

    worker.start = start
    captured = {}

    with (
        patch.object(cli, "setup_shutdown_signal_handlers", side_effect=lambda cb: captured.setdefault("cb", cb)),
        patch.object(cli, "remove_shutdown_signal_handlers"),
    ):
        task = asyncio.create_task(cli.run_worker(worker))
        await started.wait()
        captured["cb"]()
        await task

    worker.stop.assert_awaited_once()

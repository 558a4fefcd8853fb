"""Tests for logging setup."""

import logging
from logging.handlers import TimedRotatingFileHandler

import pytest

from core.logging.context import get_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.setup import get_log_file_path, log_worker_startup, setup_logging


@pytest.fixture(autouse=True)
def restore_root_handlers():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


class TestSetupLogging:
    def test_console_only_by_default(self):
        setup_logging(stage="ingest", worker_id="w-1")

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, ConsoleFormatter)
        assert get_log_context()["stage"] == "ingest"
        assert get_log_context()["worker_id"] == "w-1"

    def test_json_format(self):
        setup_logging(json_format=True)
        assert isinstance(logging.getLogger().handlers[0].formatter, JSONFormatter)

    def test_file_handler_with_log_dir(self, tmp_path):
        setup_logging(name="telemetry_etl", stage="ingest", log_dir=tmp_path)

        file_handlers = [h for h in logging.getLogger().handlers if isinstance(h, TimedRotatingFileHandler)]
        assert len(file_handlers) == 1
        assert (tmp_path / "telemetry_etl").is_dir()

    def test_suppresses_noisy_loggers(self):
        setup_logging()
        assert logging.getLogger("aiokafka").level == logging.WARNING


def test_get_log_file_path(tmp_path):
    assert get_log_file_path(tmp_path, "telemetry_etl", "ingest") == (
        tmp_path / "telemetry_etl" / "telemetry_etl_ingest.log"
    )
    assert get_log_file_path(tmp_path, "telemetry_etl") == tmp_path / "telemetry_etl" / "telemetry_etl.log"


def test_log_worker_startup(caplog):
    logger = logging.getLogger("telemetry_etl.test")
    with caplog.at_level(logging.INFO, logger="telemetry_etl.test"):
        log_worker_startup(
            logger,
            "Telemetry ETL worker",
            bootstrap_servers="kafka:9092",
            input_topic="telemetry.events",
            consumer_group="telemetry-etl",
            extra_config={"Max in flight": 100},
        )

    messages = [r.getMessage() for r in caplog.records]
    assert "Starting Telemetry ETL worker" in messages
    assert "Input topic: telemetry.events" in messages
    assert "Max in flight: 100" in messages

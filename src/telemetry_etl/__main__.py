"""Telemetry ETL worker entry point. Use --help for usage."""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from config.config import load_config
from core.errors.exceptions import ConfigurationError, GeoDatabaseError
from core.logging.setup import setup_logging
from core.utils.worker_id import generate_worker_id
from telemetry_etl.common.metrics import start_metrics_server
from telemetry_etl.common.signals import (
    remove_shutdown_signal_handlers,
    setup_shutdown_signal_handlers,
)
from telemetry_etl.telemetry.worker import TelemetryEtlWorker

# __main__.py is at src/telemetry_etl/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the telemetry ETL worker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run with the packaged config.yaml
    python -m telemetry_etl

    # Run with a custom config file and JSON logs
    python -m telemetry_etl --config /etc/telemetry-etl/config.yaml --json-logs

    # Run with custom metrics port
    python -m telemetry_etl --metrics-port 9090
        """,
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config YAML (default: TELEMETRY_ETL_CONFIG env var or packaged config.yaml)",
    )

    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Port for Prometheus metrics server (default: metrics_port from config, 0 disables)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Also write rotating log files to this directory",
    )

    parser.add_argument(
        "--json-logs",
        action="store_true",
        default=os.getenv("JSON_LOGS", "false").lower() in ("true", "1", "yes"),
        help="Emit JSON log lines (can also be set via JSON_LOGS)",
    )

    return parser.parse_args(argv)


async def run_worker(worker: TelemetryEtlWorker) -> None:
    """Run the worker until it finishes or a shutdown signal arrives."""
    shutdown_event = asyncio.Event()
    setup_shutdown_signal_handlers(shutdown_event.set)

    worker_task = asyncio.create_task(worker.start())
    shutdown_task = asyncio.create_task(shutdown_event.wait())

    try:
        done, _ = await asyncio.wait(
            {worker_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED
        )
        if worker_task in done:
            # Surface consumer failures
            worker_task.result()
    finally:
        shutdown_task.cancel()
        await worker.stop()
        if not worker_task.done():
            worker_task.cancel()
            try:
                await worker_task
            except asyncio.CancelledError:
                pass
        remove_shutdown_signal_handlers()


def main(argv: list[str] | None = None) -> int:
    global logger

    load_dotenv(PROJECT_ROOT / ".env")
    args = parse_args(argv)
    worker_id = generate_worker_id("telemetry-etl")

    setup_logging(
        name="telemetry_etl",
        stage="ingest",
        log_dir=args.log_dir,
        json_format=args.json_logs,
        console_level=getattr(logging, args.log_level),
        worker_id=worker_id,
    )
    logger = logging.getLogger(__name__)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 2

    metrics_port = args.metrics_port if args.metrics_port is not None else config.metrics_port
    if metrics_port:
        start_metrics_server(metrics_port)

    try:
        worker = TelemetryEtlWorker(config)
    except (GeoDatabaseError, ConfigurationError, OSError, ValueError) as e:
        logger.error("Failed to initialize worker", extra={"error": str(e)})
        return 2

    try:
        asyncio.run(run_worker(worker))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
    except Exception as e:
        logger.exception("Fatal error", extra={"error": str(e)})
        return 1

    logger.info("Telemetry ETL shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())

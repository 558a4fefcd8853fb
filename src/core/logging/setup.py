"""Logging setup and configuration."""

import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter

# Default settings
DEFAULT_ROTATION_WHEN = "midnight"
DEFAULT_BACKUP_COUNT = 7
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

# Noisy loggers to suppress
NOISY_LOGGERS = [
    "aiokafka",
    "aiohttp",
    "urllib3",
    "deltalake",
]


def get_log_file_path(log_dir: Path, name: str, stage: str | None = None) -> Path:
    """
    Build the log file path for a worker.

    Example:
        logs/telemetry_etl/telemetry_etl_ingest.log
    """
    filename = f"{name}_{stage}.log" if stage else f"{name}.log"
    return log_dir / name / filename


def setup_logging(
    name: str = "telemetry_etl",
    stage: str | None = None,
    domain: str | None = None,
    log_dir: Path | None = None,
    json_format: bool = False,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    suppress_noisy: bool = True,
    worker_id: str | None = None,
) -> logging.Logger:
    """
    Configure root logging with a stdout handler and an optional rotating file.

    Containers capture stdout, so the file handler is only added when
    ``log_dir`` is given. File output is always JSON.

    Args:
        name: Logger name and log file prefix
        stage: Stage name added to the log context (e.g. "ingest")
        domain: Domain name added to the log context
        log_dir: Directory for log files (default: no file output)
        json_format: Use JSON format on stdout instead of console format
        console_level: Stdout handler level (default: INFO)
        file_level: File handler level (default: DEBUG)
        suppress_noisy: Quiet down Kafka and HTTP client loggers
        worker_id: Worker identifier for context

    Returns:
        Configured logger instance
    """
    if worker_id:
        set_log_context(worker_id=worker_id)
    if stage:
        set_log_context(stage=stage)
    if domain:
        set_log_context(domain=domain)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(JSONFormatter() if json_format else ConsoleFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    log_file = None
    if log_dir is not None:
        log_file = get_log_file_path(log_dir, name, stage)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = TimedRotatingFileHandler(
            log_file,
            when=DEFAULT_ROTATION_WHEN,
            backupCount=DEFAULT_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(file_level)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug(
        "Logging initialized",
        extra={"operation": "setup_logging", "table_path": str(log_file) if log_file else None},
    )
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Use this instead of logging.getLogger() to ensure consistent naming.
    """
    return logging.getLogger(name)


def log_worker_startup(
    logger: logging.Logger,
    worker_name: str,
    bootstrap_servers: str | None = None,
    input_topic: str | None = None,
    consumer_group: str | None = None,
    extra_config: dict | None = None,
) -> None:
    """
    Log standard worker startup information.

    Call this at worker startup so bootstrap server or topic mismatches are
    visible in the first lines of output.
    """
    logger.info("=" * 60)
    logger.info(f"Starting {worker_name}")
    logger.info("=" * 60)
    if bootstrap_servers:
        logger.info(f"Kafka bootstrap servers: {bootstrap_servers}")
    if input_topic:
        logger.info(f"Input topic: {input_topic}")
    if consumer_group:
        logger.info(f"Consumer group: {consumer_group}")
    for key, value in (extra_config or {}).items():
        logger.info(f"{key}: {value}")
    logger.info("=" * 60)

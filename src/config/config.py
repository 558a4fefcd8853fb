"""Telemetry ETL configuration from YAML file.

Loads from config/config.yaml with all settings in one place:
- Kafka connection and consumer settings for the event feed
- Geo database and country table locations
- Source attribution lookup settings
- Delta sink location

Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from core.errors.exceptions import ConfigurationError

# Configure module logger
logger = logging.getLogger(__name__)

# Environment variables that take precedence over the YAML file
ENV_OVERRIDES = {
    "KAFKA_BOOTSTRAP_SERVERS": ("kafka", "bootstrap_servers"),
    "GEOIP_DATABASE_PATH": ("geo", "database_path"),
    "EVENTS_TABLE_PATH": ("sink", "table_path"),
}

CONFIG_PATH_ENV = "TELEMETRY_ETL_CONFIG"


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        # Support both ${VAR} and ${VAR:-default} syntax
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(data)
    for env_var, (section, key) in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value:
            result[section] = {**result.get(section, {}), key: value}
    return result


# Default config file: config/config.yaml in src/ directory
DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.yaml"


@dataclass
class KafkaConfig:
    """Event feed connection and consumer settings.

    ``consumer`` holds raw aiokafka consumer settings (auto_offset_reset,
    max_poll_records, session/heartbeat timings). All timing values in
    milliseconds except the ``*_seconds`` fields.
    """

    bootstrap_servers: str = ""
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"
    sasl_plain_username: str = ""
    sasl_plain_password: str = ""
    request_timeout_ms: int = 120000  # 2 minutes
    metadata_max_age_ms: int = 300000  # 5 minutes
    connections_max_idle_ms: int = 540000  # 9 minutes

    topic: str = "telemetry.events"
    group_id: str = "telemetry-etl"
    consumer: Dict[str, Any] = field(default_factory=dict)

    max_in_flight: int = 100
    ack_deadline_seconds: float = 60.0
    commit_interval_seconds: float = 5.0


@dataclass
class GeoConfig:
    """Geo database settings. ``country_table_path`` overrides the packaged table."""

    database_path: str = ""
    country_table_path: Optional[str] = None


@dataclass
class AttributionConfig:
    timeout_seconds: float = 10.0
    max_concurrent: int = 20
    allowed_domains: Optional[List[str]] = None


@dataclass
class SinkConfig:
    table_path: str = ""
    storage_options: Dict[str, str] = field(default_factory=dict)


@dataclass
class EtlConfig:
    """Telemetry ETL configuration.

    Configuration structure:
        kafka:
          bootstrap_servers: ...
          topic: ...
          group_id: ...
          consumer: {...}
          max_in_flight: ...
          ack_deadline_seconds: ...
          commit_interval_seconds: ...
        geo:
          database_path: ...
          country_table_path: ...
        attribution:
          timeout_seconds: ...
          max_concurrent: ...
          allowed_domains: [...]
        sink:
          table_path: ...
        metrics_port: ...
    """

    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    geo: GeoConfig = field(default_factory=GeoConfig)
    attribution: AttributionConfig = field(default_factory=AttributionConfig)
    sink: SinkConfig = field(default_factory=SinkConfig)
    metrics_port: Optional[int] = None

    def validate(self) -> None:
        """Validate configuration for correctness and constraints.

        Checks required fields, Kafka timeout constraints, and numeric ranges.
        """
        if not self.kafka.bootstrap_servers:
            raise ConfigurationError("bootstrap_servers is required in kafka section")
        if not self.kafka.topic:
            raise ConfigurationError("topic is required in kafka section")
        if not self.kafka.group_id:
            raise ConfigurationError("group_id is required in kafka section")
        if not self.geo.database_path:
            raise ConfigurationError("database_path is required in geo section")
        if not self.sink.table_path:
            raise ConfigurationError("table_path is required in sink section")

        self._validate_consumer_settings(self.kafka.consumer, "kafka.consumer")

        self._validate_min(vars(self.kafka), "max_in_flight", 1, inclusive=True, context="kafka")
        self._validate_min(vars(self.kafka), "ack_deadline_seconds", 0, inclusive=False, context="kafka")
        self._validate_min(vars(self.kafka), "commit_interval_seconds", 0, inclusive=False, context="kafka")
        self._validate_min(vars(self.attribution), "timeout_seconds", 0, inclusive=False, context="attribution")
        self._validate_range(vars(self.attribution), "max_concurrent", 1, 100, context="attribution")

        if self.metrics_port is not None:
            self._validate_range({"metrics_port": self.metrics_port}, "metrics_port", 1, 65535, context="root")

    @staticmethod
    def _validate_enum(
        settings: Dict[str, Any],
        key: str,
        valid_values: List[Any],
        context: str
    ) -> None:
        """Validate that a setting's value is in a list of valid values."""
        if key in settings and settings[key] not in valid_values:
            raise ConfigurationError(
                f"{context}: {key} must be one of {valid_values}, "
                f"got '{settings[key]}'"
            )

    @staticmethod
    def _validate_min(
        settings: Dict[str, Any],
        key: str,
        min_value: float,
        inclusive: bool,
        context: str
    ) -> None:
        """Validate that a setting's value meets a minimum threshold."""
        if key in settings:
            value = settings[key]
            if inclusive and value < min_value:
                raise ConfigurationError(
                    f"{context}: {key} must be >= {min_value}, got {value}"
                )
            elif not inclusive and value <= min_value:
                raise ConfigurationError(
                    f"{context}: {key} must be > {min_value}, got {value}"
                )

    @staticmethod
    def _validate_range(
        settings: Dict[str, Any],
        key: str,
        min_value: float,
        max_value: float,
        context: str
    ) -> None:
        """Validate that a setting's value is within a range (inclusive)."""
        if key in settings:
            value = settings[key]
            if not (min_value <= value <= max_value):
                raise ConfigurationError(
                    f"{context}: {key} must be between {min_value} and {max_value}, got {value}"
                )

    def _validate_consumer_settings(self, settings: Dict[str, Any], context: str) -> None:
        """Validate consumer settings against Kafka requirements and logical constraints."""
        if "heartbeat_interval_ms" in settings and "session_timeout_ms" in settings:
            heartbeat = settings["heartbeat_interval_ms"]
            session_timeout = settings["session_timeout_ms"]
            if heartbeat >= session_timeout / 3:
                raise ConfigurationError(
                    f"{context}: heartbeat_interval_ms ({heartbeat}) must be < "
                    f"session_timeout_ms/3 ({session_timeout/3:.0f}). "
                    f"Recommended: heartbeat_interval_ms <= {session_timeout // 3}"
                )

        if "session_timeout_ms" in settings and "max_poll_interval_ms" in settings:
            session_timeout = settings["session_timeout_ms"]
            max_poll_interval = settings["max_poll_interval_ms"]
            if session_timeout >= max_poll_interval:
                raise ConfigurationError(
                    f"{context}: session_timeout_ms ({session_timeout}) must be < "
                    f"max_poll_interval_ms ({max_poll_interval})"
                )

        if settings.get("enable_auto_commit"):
            raise ConfigurationError(
                f"{context}: enable_auto_commit must be false; offsets are committed after acknowledgment"
            )

        self._validate_min(settings, "max_poll_records", 1, inclusive=True, context=context)
        self._validate_enum(settings, "auto_offset_reset", ["earliest", "latest", "none"], context)


def _build_config(data: Dict[str, Any]) -> EtlConfig:
    kafka = data.get("kafka", {})
    geo = data.get("geo", {})
    attribution = data.get("attribution", {})
    sink = data.get("sink", {})

    allowed_domains = attribution.get("allowed_domains")
    metrics_port = data.get("metrics_port")

    try:
        return EtlConfig(
            kafka=KafkaConfig(
                bootstrap_servers=kafka.get("bootstrap_servers", ""),
                security_protocol=kafka.get("security_protocol", "PLAINTEXT"),
                sasl_mechanism=kafka.get("sasl_mechanism", "PLAIN"),
                sasl_plain_username=kafka.get("sasl_plain_username", ""),
                sasl_plain_password=kafka.get("sasl_plain_password", ""),
                request_timeout_ms=int(kafka.get("request_timeout_ms", 120000)),
                metadata_max_age_ms=int(kafka.get("metadata_max_age_ms", 300000)),
                connections_max_idle_ms=int(kafka.get("connections_max_idle_ms", 540000)),
                topic=kafka.get("topic", "telemetry.events"),
                group_id=kafka.get("group_id", "telemetry-etl"),
                consumer=kafka.get("consumer", {}) or {},
                max_in_flight=int(kafka.get("max_in_flight", 100)),
                ack_deadline_seconds=float(kafka.get("ack_deadline_seconds", 60.0)),
                commit_interval_seconds=float(kafka.get("commit_interval_seconds", 5.0)),
            ),
            geo=GeoConfig(
                database_path=geo.get("database_path", ""),
                country_table_path=geo.get("country_table_path") or None,
            ),
            attribution=AttributionConfig(
                timeout_seconds=float(attribution.get("timeout_seconds", 10.0)),
                max_concurrent=int(attribution.get("max_concurrent", 20)),
                allowed_domains=list(allowed_domains) if allowed_domains else None,
            ),
            sink=SinkConfig(
                table_path=sink.get("table_path", ""),
                storage_options={k: str(v) for k, v in (sink.get("storage_options") or {}).items()},
            ),
            metrics_port=int(metrics_port) if metrics_port not in (None, "") else None,
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration value: {e}", cause=e) from e


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> EtlConfig:
    """Load telemetry ETL configuration from config.yaml file.

    Resolution order for the file: explicit ``config_path``, then the
    ``TELEMETRY_ETL_CONFIG`` environment variable, then the packaged default.

    Priority of values (highest to lowest):
    1. ``overrides`` (deep-merged)
    2. Environment variables (KAFKA_BOOTSTRAP_SERVERS, GEOIP_DATABASE_PATH, EVENTS_TABLE_PATH)
    3. YAML configuration file, with ${VAR} expansion
    4. Dataclass defaults
    """
    if config_path is None:
        env_path = os.getenv(CONFIG_PATH_ENV)
        config_path = Path(env_path) if env_path else DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from file: {config_path}")
    try:
        yaml_data = load_yaml(config_path)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}", cause=e) from e

    yaml_data = _expand_env_vars(yaml_data)
    yaml_data = _apply_env_overrides(yaml_data)

    if overrides:
        logger.debug(f"Applying overrides: {list(overrides.keys())}")
        yaml_data = _deep_merge(yaml_data, overrides)

    config = _build_config(yaml_data)

    logger.debug("Configuration loaded successfully:")
    logger.debug(f"  - Bootstrap servers: {config.kafka.bootstrap_servers}")
    logger.debug(f"  - Topic: {config.kafka.topic}")
    logger.debug(f"  - Sink table: {config.sink.table_path}")

    config.validate()
    logger.debug("Configuration validation passed")

    return config


_etl_config: Optional[EtlConfig] = None


def get_config() -> EtlConfig:
    """Get or load the singleton config instance."""
    global _etl_config
    if _etl_config is None:
        _etl_config = load_config()
    return _etl_config


def set_config(config: EtlConfig) -> None:
    """Set the singleton config instance (useful for testing)."""
    global _etl_config
    _etl_config = config


def reset_config() -> None:
    """Reset the singleton config instance (forces reload on next get_config() call)."""
    global _etl_config
    _etl_config = None

"""Configuration loading for the telemetry ETL.

Configuration is loaded from ``config/config.yaml`` (or the file named by
``TELEMETRY_ETL_CONFIG``).

Usage Examples
--------------

    >>> from config import load_config, get_config
    >>>
    >>> config = load_config()
    >>> config.kafka.topic
    'telemetry.events'

Configuration Priority
---------------------

1. Explicit overrides passed to load_config()
2. Environment variables (KAFKA_BOOTSTRAP_SERVERS, GEOIP_DATABASE_PATH, EVENTS_TABLE_PATH)
3. YAML configuration file
4. Dataclass defaults
"""

from config.config import (
    AttributionConfig,
    EtlConfig,
    GeoConfig,
    KafkaConfig,
    SinkConfig,
    get_config,
    load_config,
    reset_config,
    set_config,
)

__all__ = [
    "load_config",
    "get_config",
    "set_config",
    "reset_config",
    "EtlConfig",
    "KafkaConfig",
    "GeoConfig",
    "AttributionConfig",
    "SinkConfig",
]

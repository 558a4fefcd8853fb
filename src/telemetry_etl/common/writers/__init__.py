"""Delta table writers. Import from submodules, e.g. telemetry_etl.common.writers.base."""

"""Delta Lake storage. Import from submodules, e.g. telemetry_etl.common.storage.delta."""

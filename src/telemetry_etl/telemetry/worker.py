"""Telemetry ETL worker.

Wires the geo resolver, attribution cache, Delta sink, ingestion pipeline
and feed consumer together and owns their lifecycle.
"""

import asyncio
import logging

from config.config import EtlConfig
from core.logging import PeriodicStatsLogger, log_worker_startup
from telemetry_etl.common.consumer import FeedConsumer
from telemetry_etl.telemetry.attribution import SourceAttributionCache, SourceAttributionClient
from telemetry_etl.telemetry.geo import CountryTable, GeoResolver
from telemetry_etl.telemetry.pipeline import IngestionPipeline
from telemetry_etl.telemetry.transformer import EventTransformer
from telemetry_etl.telemetry.writers.delta_events import TelemetryEventsDeltaWriter

logger = logging.getLogger(__name__)


class TelemetryEtlWorker:
    """
    Long-running worker consuming telemetry events into the events table.

    Resources that read local files (geo database, country table) are opened
    in __init__ so a bad configuration fails before any connection is made.
    """

    WORKER_NAME = "telemetry-etl"
    STATS_INTERVAL_SECONDS = 30

    def __init__(self, config: EtlConfig, instance_id: str | None = None):
        self.config = config
        self.instance_id = instance_id

        self.geo_resolver = GeoResolver(config.geo.database_path)
        self.country_table = CountryTable.load(config.geo.country_table_path)
        self.attribution_client = SourceAttributionClient(
            timeout_seconds=config.attribution.timeout_seconds,
            max_concurrent=config.attribution.max_concurrent,
            allowed_domains=config.attribution.allowed_domains,
        )
        self.attribution_cache = SourceAttributionCache(self.attribution_client)
        self.sink = TelemetryEventsDeltaWriter(
            table_path=config.sink.table_path,
            storage_options=config.sink.storage_options,
        )
        self.pipeline = IngestionPipeline(
            transformer=EventTransformer(self.geo_resolver, self.country_table, self.attribution_cache),
            sink=self.sink,
        )
        self.consumer = FeedConsumer(
            config=config.kafka,
            message_handler=self.pipeline.handle,
            worker_name=self.WORKER_NAME,
            instance_id=instance_id,
        )
        self.worker_id = self.consumer.worker_id

        self._stats_logger: PeriodicStatsLogger | None = None
        self._running = False

    async def _close_resource(self, name: str, method: str = "stop") -> None:
        """Close a resource by attribute name, logging errors."""
        resource = getattr(self, name, None)
        if resource is None:
            return
        try:
            result = getattr(resource, method)()
            if asyncio.iscoroutine(result):
                await result
        except asyncio.CancelledError:
            logger.warning(f"Cancelled while stopping {name}")
        except Exception as e:
            logger.error(f"Error stopping {name}", extra={"error": str(e)})

    async def start(self) -> None:
        """Run until the consumer stops."""
        log_worker_startup(
            logger,
            "Telemetry ETL worker",
            bootstrap_servers=self.config.kafka.bootstrap_servers,
            input_topic=self.config.kafka.topic,
            consumer_group=self.config.kafka.group_id,
            extra_config={
                "Worker id": self.worker_id,
                "Events table": self.config.sink.table_path,
                "Geo database": self.config.geo.database_path,
                "Max in flight": self.config.kafka.max_in_flight,
                "Ack deadline (s)": self.config.kafka.ack_deadline_seconds,
            },
        )
        self._running = True

        self._stats_logger = PeriodicStatsLogger(
            interval_seconds=self.STATS_INTERVAL_SECONDS,
            get_stats=self.get_stats,
            stage="ingest",
        )
        self._stats_logger.start()

        try:
            await self.consumer.start()
        except asyncio.CancelledError:
            logger.info("TelemetryEtlWorker cancelled, shutting down...")
            raise
        finally:
            self._running = False

    async def stop(self) -> None:
        logger.info("Stopping TelemetryEtlWorker")
        self._running = False

        await self._close_resource("_stats_logger")
        await self._close_resource("consumer")
        await self._close_resource("attribution_client", method="close")
        await self._close_resource("geo_resolver", method="close")

        logger.info("TelemetryEtlWorker stopped", extra={"stats": self.get_stats()})

    def get_stats(self) -> dict:
        cache_stats = self.attribution_cache.get_stats()
        return {
            **self.pipeline.get_stats(),
            "in_flight": self.consumer.in_flight,
            "attribution_cache_hits": cache_stats["hits"],
            "attribution_fetches": cache_stats["fetches"],
            "attribution_failures": cache_stats["failures"],
            "attribution_cache_size": cache_stats["size"],
            "pending_by_partition": self.consumer.pending_by_partition,
        }

    @property
    def is_running(self) -> bool:
        return self._running


__all__ = ["TelemetryEtlWorker"]

"""Assembly of processed telemetry records from incoming events."""

import logging

from telemetry_etl.telemetry.attribution import SourceAttributionCache
from telemetry_etl.telemetry.flatten import flatten_event_data
from telemetry_etl.telemetry.geo import CountryTable, GeoResolver
from telemetry_etl.telemetry.schemas.events import IncomingEvent
from telemetry_etl.telemetry.schemas.processed import GeoInfo, ProcessedEvent

logger = logging.getLogger(__name__)

SOURCE_URL_KEY = "source_url"
SOURCE_NAME_KEY = "source_name"


class EventTransformer:
    """
    Turns an IncomingEvent into a ProcessedEvent.

    Steps: geo lookup, source-name attribution when the payload carries a
    ``source_url``, flattening, assembly. The attribution lookup is the only
    await. The incoming event is never modified.
    """

    def __init__(
        self,
        geo_resolver: GeoResolver,
        country_table: CountryTable,
        attribution_cache: SourceAttributionCache,
    ):
        self.geo_resolver = geo_resolver
        self.country_table = country_table
        self.attribution_cache = attribution_cache

    async def transform(self, event: IncomingEvent) -> ProcessedEvent:
        geo = self.geo_resolver.resolve(event.ip_address) or GeoInfo()

        payload = event.data
        if payload is not None and SOURCE_URL_KEY in payload:
            source_name = await self.attribution_cache.resolve(payload[SOURCE_URL_KEY])
            payload = {**payload, SOURCE_NAME_KEY: source_name}

        return ProcessedEvent(
            server_timestamp=event.server_timestamp,
            timestamp=event.timestamp,
            geo_country_code=geo.country_code,
            geo_country=self.country_table.name_for(geo.country_code),
            geo_region=geo.region,
            geo_coords=geo.coords,
            status_code=event.status_code,
            event_type=event.event_type,
            execution_time=event.execution_time,
            fonty_version=event.fonty_version,
            os_family=event.os_family,
            os_version=event.os_version,
            python_version=event.python_version,
            event_data=flatten_event_data(payload),
        )


__all__ = ["EventTransformer"]

"""Tests for per-message ingestion: parse, transform, submit, acknowledge."""

import json
import logging
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest

from core.errors.exceptions import MessageParseError, SinkInsertError
from telemetry_etl.common.types import FeedMessage
from telemetry_etl.telemetry.attribution import SourceAttributionCache, SourceAttributionClient
from telemetry_etl.telemetry.geo import CountryTable, GeoResolver
from telemetry_etl.telemetry.pipeline import IngestionPipeline, parse_message
from telemetry_etl.telemetry.schemas.processed import ProcessedEvent
from telemetry_etl.telemetry.transformer import EventTransformer


def _message(body, offset=0, on_ack=None):
    data = body if isinstance(body, bytes) else json.dumps(body).encode()
    return FeedMessage(
        topic="telemetry.events",
        partition=0,
        offset=offset,
        data=data,
        _on_ack=on_ack or Mock(),
    )


@pytest.fixture
def transformer():
    reader = MagicMock()
    reader.city.return_value = Mock(
        country=Mock(iso_code="US"),
        subdivisions=[],
        location=Mock(latitude=37.751, longitude=-97.822),
    )
    client = Mock()
    client.fetch_name = AsyncMock(return_value="Foo Foundry")
    return EventTransformer(GeoResolver.from_reader(reader), CountryTable.load(), SourceAttributionCache(client))


@pytest.fixture
def sink():
    mock = Mock()
    mock.table_name = "events"
    mock.insert = AsyncMock(return_value=1)
    return mock


@pytest.fixture
def pipeline(transformer, sink):
    return IngestionPipeline(transformer=transformer, sink=sink)


class TestParseMessage:
    def test_valid(self):
        event = parse_message(_message({"event_type": "install", "ip_address": "8.8.8.8"}))
        assert event.event_type == "install"

    def test_numeric_versions_accepted(self):
        event = parse_message(_message({"fonty_version": 1.2, "os_version": 10}))
        assert event.fonty_version == "1.2"
        assert event.os_version == "10"

    @pytest.mark.parametrize(
        "body",
        [b"{not json", b"\xff\xfe", b"", b"[1, 2]", b'"install"', b'{"status_code": "abc"}'],
    )
    def test_invalid(self, body):
        message = _message(body, offset=9)
        with pytest.raises(MessageParseError) as exc_info:
            parse_message(message)
        assert exc_info.value.message_id == "telemetry.events:0:9"


class TestIngestionPipeline:
    async def test_success_acks_once(self, pipeline, sink):
        on_ack = Mock()
        message = _message({"ip_address": "8.8.8.8", "event_type": "install"}, offset=3, on_ack=on_ack)

        await pipeline.handle(message)

        sink.insert.assert_awaited_once()
        records = sink.insert.await_args.args[0]
        assert len(records) == 1
        assert isinstance(records[0], ProcessedEvent)
        assert records[0].geo_country_code == "US"
        assert sink.insert.await_args.kwargs["batch_id"] == "telemetry.events:0:3"
        on_ack.assert_called_once_with(message)
        assert pipeline.get_stats() == {"received": 1, "acked": 1, "parse_failed": 0, "sink_failed": 0}

    async def test_sink_rejection_still_acks_once(self, pipeline, sink, caplog):
        sink.insert.side_effect = SinkInsertError(
            "Insert into events rejected 1 record(s)",
            table="events",
            errors=[{"index": 0, "reason": "invalid", "message": "schema mismatch"}],
        )
        on_ack = Mock()

        with caplog.at_level(logging.ERROR, logger="telemetry_etl.telemetry.pipeline"):
            await pipeline.handle(_message({"event_type": "install"}, on_ack=on_ack))

        sink.insert.assert_awaited_once()
        on_ack.assert_called_once()
        assert pipeline.get_stats()["sink_failed"] == 1
        record = caplog.records[-1]
        assert record.first_error == {"index": 0, "reason": "invalid", "message": "schema mismatch"}
        assert record.table == "events"

    async def test_unexpected_sink_error_still_acks(self, pipeline, sink):
        sink.insert.side_effect = RuntimeError("connection reset")
        on_ack = Mock()

        await pipeline.handle(_message({"event_type": "install"}, on_ack=on_ack))

        on_ack.assert_called_once()
        assert pipeline.get_stats()["sink_failed"] == 1

    async def test_parse_failure_not_acked(self, pipeline, sink):
        on_ack = Mock()

        with pytest.raises(MessageParseError):
            await pipeline.handle(_message(b"{not json", on_ack=on_ack))

        on_ack.assert_not_called()
        sink.insert.assert_not_awaited()
        assert pipeline.get_stats()["parse_failed"] == 1

    async def test_transform_failure_propagates_without_ack(self, sink):
        transformer = Mock()
        transformer.transform = AsyncMock(side_effect=RuntimeError("geo reader closed"))
        pipeline = IngestionPipeline(transformer=transformer, sink=sink)
        on_ack = Mock()

        with pytest.raises(RuntimeError):
            await pipeline.handle(_message({"event_type": "install"}, on_ack=on_ack))

        on_ack.assert_not_called()
        sink.insert.assert_not_awaited()

    async def test_ip_address_not_submitted(self, pipeline, sink):
        await pipeline.handle(_message({"ip_address": "8.8.8.8", "data": {"note": "hello"}}))

        row = sink.insert.await_args.args[0][0].to_row()
        assert "8.8.8.8" not in json.dumps(row)


async def test_enriches_example_event_end_to_end(sink):
    """Geo, attribution over HTTP and flattening for one event, then ack."""
    reader = MagicMock()
    reader.city.return_value = Mock(
        country=Mock(iso_code="US"),
        subdivisions=[],
        location=Mock(latitude=37.751, longitude=-97.822),
    )
    mock_response = AsyncMock()
    mock_response.status = 200
    mock_response.json = AsyncMock(return_value={"name": "Foo Foundry"})
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=None)

    client = SourceAttributionClient(timeout_seconds=1.0)
    pipeline = IngestionPipeline(
        transformer=EventTransformer(
            GeoResolver.from_reader(reader), CountryTable.load(), SourceAttributionCache(client)
        ),
        sink=sink,
    )
    on_ack = Mock()
    message = _message(
        {"ip_address": "8.8.8.8", "data": {"a": 1, "source_url": "http://x/y"}},
        on_ack=on_ack,
    )

    try:
        with patch("aiohttp.ClientSession.request", return_value=mock_response):
            await pipeline.handle(message)
    finally:
        await client.close()

    processed = sink.insert.await_args.args[0][0]
    assert processed.geo_country_code == "US"
    assert processed.geo_country == "United States of America"
    assert [(e.key, e.value) for e in processed.event_data] == [
        ("a", "1"),
        ("source_url", "http://x/y"),
        ("source_name", "Foo Foundry"),
    ]
    on_ack.assert_called_once_with(message)

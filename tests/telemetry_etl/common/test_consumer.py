"""Tests for FeedConsumer dispatch, acknowledgment and commit behavior."""

import asyncio
import time
from unittest.mock import AsyncMock, Mock, patch

import pytest
from aiokafka.structs import ConsumerRecord, TopicPartition

from config.config import KafkaConfig
from telemetry_etl.common.consumer import FeedConsumer, _PartitionListener

TOPIC = "telemetry.events"
TP = TopicPartition(TOPIC, 0)


def _make_config(**overrides):
    defaults = {
        "bootstrap_servers": "localhost:9092",
        "topic": TOPIC,
        "group_id": "telemetry-etl",
        "max_in_flight": 10,
        "ack_deadline_seconds": 60.0,
        "commit_interval_seconds": 5.0,
    }
    defaults.update(overrides)
    return KafkaConfig(**defaults)


def _make_kafka_mock():
    """Create a mock AIOKafkaConsumer with sync/async methods set correctly."""
    mock = Mock()
    mock.start = AsyncMock()
    mock.stop = AsyncMock()
    mock.commit = AsyncMock()
    mock.getmany = AsyncMock(return_value={})
    mock.seek = Mock()
    return mock


def _make_consumer_record(offset=0, partition=0, value=b"{}"):
    return ConsumerRecord(
        topic=TOPIC,
        partition=partition,
        offset=offset,
        timestamp=1000,
        timestamp_type=0,
        key=None,
        value=value,
        headers=[],
        checksum=None,
        serialized_key_size=0,
        serialized_value_size=len(value),
    )


def _started_consumer(handler, **config_overrides):
    consumer = FeedConsumer(config=_make_config(**config_overrides), message_handler=handler)
    consumer._consumer = _make_kafka_mock()
    consumer._running = True
    return consumer


async def _wait_for_handlers(consumer):
    while consumer._tasks:
        await asyncio.gather(*list(consumer._tasks), return_exceptions=True)


async def _acking_handler(message):
    message.ack()


class TestFeedConsumerInit:
    def test_raises_without_topic(self):
        with pytest.raises(ValueError, match="topic"):
            FeedConsumer(config=_make_config(topic=""), message_handler=AsyncMock())

    def test_worker_id_includes_name(self):
        consumer = FeedConsumer(config=_make_config(), message_handler=AsyncMock(), worker_name="etl")
        assert consumer.worker_id.startswith("etl-")

    def test_kafka_config_disables_auto_commit(self):
        config = _make_config(
            consumer={"enable_auto_commit": True, "max_poll_records": 50, "heartbeat_interval_ms": 3000}
        )
        consumer = FeedConsumer(config=config, message_handler=AsyncMock(), instance_id="1")
        cfg = consumer._build_kafka_config()

        assert cfg["enable_auto_commit"] is False
        assert cfg["max_poll_records"] == 50
        assert cfg["heartbeat_interval_ms"] == 3000
        assert cfg["auto_offset_reset"] == "earliest"
        assert cfg["client_id"] == "telemetry-etl-1"
        assert "security_protocol" not in cfg


class TestAcknowledgment:
    async def test_acked_messages_commit_past_last(self):
        consumer = _started_consumer(_acking_handler)

        await consumer._dispatch_partition(TP, [_make_consumer_record(o) for o in range(3)])
        await _wait_for_handlers(consumer)
        await consumer.commit()

        consumer._consumer.commit.assert_awaited_once_with({TP: 3})
        assert consumer.pending_by_partition == {f"{TOPIC}:0": 0}

    async def test_unacked_message_holds_back_commit(self):
        async def handler(message):
            if message.offset != 1:
                message.ack()

        consumer = _started_consumer(handler)

        await consumer._dispatch_partition(TP, [_make_consumer_record(o) for o in range(4)])
        await _wait_for_handlers(consumer)
        await consumer.commit()

        consumer._consumer.commit.assert_awaited_once_with({TP: 1})

    async def test_commit_skipped_when_position_unchanged(self):
        consumer = _started_consumer(_acking_handler)

        await consumer._dispatch_partition(TP, [_make_consumer_record(0)])
        await _wait_for_handlers(consumer)
        await consumer.commit()
        await consumer.commit()

        assert consumer._consumer.commit.await_count == 1

    async def test_handler_error_leaves_message_unacked(self):
        seen = []

        async def handler(message):
            seen.append(message)
            raise RuntimeError("boom")

        consumer = _started_consumer(handler)

        await consumer._dispatch_partition(TP, [_make_consumer_record(5)])
        await _wait_for_handlers(consumer)

        assert seen[0].is_acked is False
        assert consumer.pending_by_partition == {f"{TOPIC}:0": 1}
        assert consumer._slots._value == 10

    async def test_nack_rewinds_immediately(self):
        async def handler(message):
            message.nack()

        consumer = _started_consumer(handler)

        await consumer._dispatch_partition(TP, [_make_consumer_record(7)])
        await _wait_for_handlers(consumer)

        consumer._consumer.seek.assert_called_once_with(TP, 7)


class TestAckDeadline:
    async def test_expired_message_redelivered(self):
        consumer = _started_consumer(AsyncMock())

        await consumer._dispatch_partition(TP, [_make_consumer_record(o) for o in (10, 11)])
        await _wait_for_handlers(consumer)

        assert consumer.check_ack_deadlines(now=time.monotonic() + 30) == []
        consumer._consumer.seek.assert_not_called()

        assert consumer.check_ack_deadlines(now=time.monotonic() + 61) == [TP]
        consumer._consumer.seek.assert_called_once_with(TP, 10)

    async def test_acked_messages_never_redelivered(self):
        consumer = _started_consumer(_acking_handler)

        await consumer._dispatch_partition(TP, [_make_consumer_record(0)])
        await _wait_for_handlers(consumer)

        assert consumer.check_ack_deadlines(now=time.monotonic() + 3600) == []

    async def test_redelivery_skips_messages_acked_after_gap(self):
        handled = []

        async def handler(message):
            handled.append(message.offset)
            if message.offset != 1:
                message.ack()

        consumer = _started_consumer(handler)
        records = [_make_consumer_record(o) for o in range(4)]

        await consumer._dispatch_partition(TP, records)
        await _wait_for_handlers(consumer)

        now = time.monotonic() + 61
        assert consumer.check_ack_deadlines(now=now) == [TP]
        consumer._consumer.seek.assert_called_once_with(TP, 1)

        # Redelivery after the seek starts at the unacked offset
        await consumer._dispatch_partition(TP, records[1:])
        await _wait_for_handlers(consumer)

        assert handled == [0, 1, 2, 3, 1]
        assert handled.count(2) == 1
        assert handled.count(3) == 1

    async def test_gap_not_rewound_again_before_redelivery(self):
        handler = AsyncMock()
        consumer = _started_consumer(handler)

        await consumer._dispatch_partition(TP, [_make_consumer_record(0)])
        await _wait_for_handlers(consumer)

        now = time.monotonic() + 61
        assert consumer.check_ack_deadlines(now=now) == [TP]
        assert consumer.check_ack_deadlines(now=now + 5) == []
        assert consumer._consumer.seek.call_count == 1

    async def test_slow_handler_not_rewound_while_running(self):
        release = asyncio.Event()
        handled = []

        async def handler(message):
            handled.append(message.offset)
            await release.wait()
            message.ack()

        consumer = _started_consumer(handler)

        await consumer._dispatch_partition(TP, [_make_consumer_record(0)])
        await asyncio.sleep(0)

        assert consumer.check_ack_deadlines(now=time.monotonic() + 3600) == []
        consumer._consumer.seek.assert_not_called()

        # A refetch of the same record while its handler runs is not dispatched
        await consumer._dispatch_partition(TP, [_make_consumer_record(0)])

        release.set()
        await _wait_for_handlers(consumer)

        assert handled == [0]
        assert consumer.pending_by_partition == {f"{TOPIC}:0": 0}


class TestConcurrency:
    async def test_in_flight_bounded(self):
        release = asyncio.Event()
        running = []

        async def handler(message):
            running.append(message.offset)
            await release.wait()
            message.ack()

        consumer = _started_consumer(handler, max_in_flight=2)

        dispatch = asyncio.create_task(
            consumer._dispatch_partition(TP, [_make_consumer_record(o) for o in range(3)])
        )
        for _ in range(5):
            await asyncio.sleep(0)

        assert consumer.in_flight == 2
        assert running == [0, 1]

        release.set()
        await dispatch
        await _wait_for_handlers(consumer)

        assert running == [0, 1, 2]
        assert consumer.in_flight == 0

    async def test_rewind_drops_rest_of_fetched_batch(self):
        release = asyncio.Event()
        handled = []

        async def handler(message):
            handled.append(message.offset)
            await release.wait()

        consumer = _started_consumer(handler, max_in_flight=1)

        dispatch = asyncio.create_task(
            consumer._dispatch_partition(TP, [_make_consumer_record(o) for o in range(3)])
        )
        for _ in range(5):
            await asyncio.sleep(0)

        consumer._rewind(TP, 0, reason="test")
        release.set()
        await dispatch
        await _wait_for_handlers(consumer)

        assert handled == [0]
        consumer._consumer.seek.assert_called_once_with(TP, 0)


class TestRebalance:
    async def test_revoked_partitions_committed_and_dropped(self):
        consumer = _started_consumer(_acking_handler)
        other = TopicPartition(TOPIC, 1)

        await consumer._dispatch_partition(TP, [_make_consumer_record(0)])
        await consumer._dispatch_partition(other, [_make_consumer_record(4, partition=1)])
        await _wait_for_handlers(consumer)

        await _PartitionListener(consumer).on_partitions_revoked({TP})

        consumer._consumer.commit.assert_awaited_once_with({TP: 1})
        assert TP not in consumer._trackers
        assert other in consumer._trackers

    async def test_late_ack_after_revoke_ignored(self):
        release = asyncio.Event()

        async def handler(message):
            await release.wait()
            message.ack()

        consumer = _started_consumer(handler)
        await consumer._dispatch_partition(TP, [_make_consumer_record(0)])
        await consumer._on_partitions_revoked([TP])

        release.set()
        await _wait_for_handlers(consumer)

        assert consumer.pending_by_partition == {}


class TestLifecycle:
    async def test_start_consumes_until_stopped(self):
        handled = []
        consumer = FeedConsumer(config=_make_config(), message_handler=AsyncMock())
        kafka_mock = _make_kafka_mock()
        calls = 0

        async def handler(message):
            handled.append(message.offset)
            message.ack()

        async def getmany(timeout_ms):
            nonlocal calls
            calls += 1
            if calls == 1:
                return {TP: [_make_consumer_record(0), _make_consumer_record(1)]}
            consumer._running = False
            return {}

        consumer.message_handler = handler
        kafka_mock.getmany = AsyncMock(side_effect=getmany)

        with patch("telemetry_etl.common.consumer.AIOKafkaConsumer", return_value=kafka_mock):
            await consumer.start()
            await consumer.stop()

        kafka_mock.subscribe.assert_called_once()
        assert kafka_mock.subscribe.call_args.args[0] == [TOPIC]
        kafka_mock.start.assert_awaited_once()
        kafka_mock.stop.assert_awaited_once()
        kafka_mock.commit.assert_awaited_with({TP: 2})
        assert handled == [0, 1]
        assert consumer.is_running is False

    async def test_stop_drains_in_flight_handlers(self):
        finished = []

        async def handler(message):
            await asyncio.sleep(0.01)
            finished.append(message.offset)
            message.ack()

        consumer = _started_consumer(handler)
        kafka_mock = consumer._consumer
        await consumer._dispatch_partition(TP, [_make_consumer_record(0)])

        await consumer.stop()

        assert finished == [0]
        kafka_mock.commit.assert_awaited_once_with({TP: 1})
        assert consumer._consumer is None

    async def test_stop_while_dispatch_waits_for_slot(self):
        release = asyncio.Event()
        handled = []

        async def handler(message):
            handled.append(message.offset)
            await release.wait()
            message.ack()

        consumer = _started_consumer(handler, max_in_flight=1)
        kafka_mock = consumer._consumer

        dispatch = asyncio.create_task(
            consumer._dispatch_partition(TP, [_make_consumer_record(o) for o in range(2)])
        )
        for _ in range(5):
            await asyncio.sleep(0)
        assert handled == [0]

        stop = asyncio.create_task(consumer.stop())
        for _ in range(5):
            await asyncio.sleep(0)

        release.set()
        await stop
        await dispatch

        assert handled == [0]
        assert consumer.in_flight == 0
        assert consumer._slots._value == 1
        kafka_mock.commit.assert_awaited_once_with({TP: 1})

    async def test_stop_when_not_started(self):
        consumer = FeedConsumer(config=_make_config(), message_handler=AsyncMock())
        await consumer.stop()

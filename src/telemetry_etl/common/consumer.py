"""Feed consumer with per-message acknowledgment, bounded concurrency and ack-deadline redelivery."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from aiokafka import AIOKafkaConsumer
from aiokafka.abc import ConsumerRebalanceListener
from aiokafka.structs import ConsumerRecord, TopicPartition

from config.config import KafkaConfig
from core.errors.exceptions import ErrorCategory, classify_exception
from core.logging import MessageLogContext
from core.utils import generate_worker_id
from telemetry_etl.common.kafka_config import build_kafka_security_config
from telemetry_etl.common.metrics import (
    in_flight_gauge,
    message_processing_duration_seconds,
    record_message_acked,
    record_message_consumed,
    record_processing_error,
    record_redelivery,
    update_committed_offset,
)
from telemetry_etl.common.offsets import OffsetTracker
from telemetry_etl.common.types import FeedMessage, from_consumer_record

logger = logging.getLogger(__name__)


class _PartitionListener(ConsumerRebalanceListener):
    """Commits progress for revoked partitions and drops their trackers."""

    def __init__(self, feed_consumer: "FeedConsumer"):
        self._feed_consumer = feed_consumer

    async def on_partitions_revoked(self, revoked):
        await self._feed_consumer._on_partitions_revoked(revoked)

    async def on_partitions_assigned(self, assigned):
        self._feed_consumer._on_partitions_assigned(assigned)


class FeedConsumer:
    """
    Async Kafka consumer that hands each record to a handler as a FeedMessage.

    Each handler runs as its own asyncio task; at most ``max_in_flight`` run at
    once. Offsets are committed only up to the lowest unacknowledged message
    per partition, on ``commit_interval_seconds`` and on stop. A message that
    stays unacknowledged past ``ack_deadline_seconds`` causes its partition to
    be rewound so the message is delivered again.
    """

    def __init__(
        self,
        config: KafkaConfig,
        message_handler: Callable[[FeedMessage], Awaitable[None]],
        worker_name: str = "telemetry-etl",
        instance_id: str | None = None,
        drain_timeout_seconds: float = 30.0,
    ):
        if not config.topic:
            raise ValueError("A topic must be specified")

        self.config = config
        self.topic = config.topic
        self.group_id = config.group_id
        self.worker_name = worker_name
        self.instance_id = instance_id
        self.message_handler = message_handler
        self.drain_timeout_seconds = drain_timeout_seconds

        prefix = worker_name if not instance_id else f"{worker_name}-{instance_id}"
        self.worker_id = generate_worker_id(prefix)

        self._consumer: AIOKafkaConsumer | None = None
        self._running = False
        self._trackers: dict[TopicPartition, OffsetTracker] = {}
        self._tasks: set[asyncio.Task] = set()
        self._slots = asyncio.Semaphore(config.max_in_flight)
        self._maintenance_task: asyncio.Task | None = None

        logger.info(
            "Initialized feed consumer",
            extra={
                "topic": self.topic,
                "group_id": self.group_id,
                "worker_name": worker_name,
                "in_flight": config.max_in_flight,
            },
        )

    # Optional consumer config keys forwarded to AIOKafkaConsumer if present
    _OPTIONAL_CONSUMER_KEYS = (
        "heartbeat_interval_ms",
        "fetch_min_bytes",
        "fetch_max_wait_ms",
    )

    def _build_kafka_config(self) -> dict:
        """Build the AIOKafkaConsumer configuration dict."""
        consumer_config = self.config.consumer
        client_id = self.worker_name if not self.instance_id else f"{self.worker_name}-{self.instance_id}"

        cfg = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "group_id": self.group_id,
            "client_id": client_id,
            "request_timeout_ms": self.config.request_timeout_ms,
            "metadata_max_age_ms": self.config.metadata_max_age_ms,
            "connections_max_idle_ms": self.config.connections_max_idle_ms,
            "enable_auto_commit": False,
            "auto_offset_reset": consumer_config.get("auto_offset_reset", "earliest"),
            "max_poll_records": consumer_config.get("max_poll_records", 500),
            "max_poll_interval_ms": consumer_config.get("max_poll_interval_ms", 300000),
            "session_timeout_ms": consumer_config.get("session_timeout_ms", 30000),
        }

        for key in self._OPTIONAL_CONSUMER_KEYS:
            if key in consumer_config:
                cfg[key] = consumer_config[key]

        cfg.update(build_kafka_security_config(self.config))
        return cfg

    async def start(self) -> None:
        """Connect, then consume until stop() is called."""
        if self._running:
            logger.warning("Consumer already running, ignoring duplicate start call")
            return

        logger.info("Starting feed consumer", extra={"topic": self.topic, "group_id": self.group_id})

        self._consumer = AIOKafkaConsumer(**self._build_kafka_config())
        self._consumer.subscribe([self.topic], listener=_PartitionListener(self))
        await self._consumer.start()
        self._running = True
        self._maintenance_task = asyncio.create_task(self._maintenance_loop())

        try:
            await self._consume_loop()
        except asyncio.CancelledError:
            logger.info("Consumer loop cancelled, shutting down")
            raise
        except Exception:
            logger.error("Consumer loop terminated with error", exc_info=True)
            raise
        finally:
            self._running = False

    async def stop(self) -> None:
        """Drain in-flight handlers, commit acknowledged offsets and disconnect."""
        if self._consumer is None:
            logger.debug("Consumer not running or already stopped")
            return

        logger.info("Stopping feed consumer", extra={"in_flight": len(self._tasks)})
        self._running = False

        if self._maintenance_task is not None:
            self._maintenance_task.cancel()
            try:
                await self._maintenance_task
            except asyncio.CancelledError:
                pass
            self._maintenance_task = None

        await self._drain()

        try:
            await self.commit()
            await self._consumer.stop()
            logger.info("Feed consumer stopped successfully")
        except Exception:
            logger.error("Error stopping feed consumer", exc_info=True)
            raise
        finally:
            self._trackers.clear()
            self._consumer = None

    async def _drain(self) -> None:
        if not self._tasks:
            return

        done, pending = await asyncio.wait(set(self._tasks), timeout=self.drain_timeout_seconds)
        if pending:
            logger.warning(
                "Cancelling handlers still running after drain timeout",
                extra={"in_flight": len(pending), "timeout_seconds": self.drain_timeout_seconds},
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def _consume_loop(self) -> None:
        logger.info("Starting message consumption loop", extra={"topic": self.topic, "group_id": self.group_id})

        while self._running and self._consumer:
            try:
                data = await self._consumer.getmany(timeout_ms=1000)
                for tp, records in data.items():
                    await self._dispatch_partition(tp, records)
            except asyncio.CancelledError:
                logger.info("Consumption loop cancelled")
                raise
            except Exception:
                logger.error("Error in consumption loop", exc_info=True)
                await asyncio.sleep(1)

    async def _maintenance_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.config.commit_interval_seconds)
            try:
                self.check_ack_deadlines()
                await self.commit()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error("Error during periodic commit", exc_info=True)

    async def _dispatch_partition(self, tp: TopicPartition, records: list[ConsumerRecord]) -> None:
        tracker = self._tracker_for(tp)
        generation = tracker.generation

        for record in records:
            if not self._running:
                return
            if not tracker.should_dispatch(record.offset):
                continue
            await self._slots.acquire()
            # stop() or a rewind while waiting for a slot makes the rest of this batch stale
            if not self._running or tracker.generation != generation or self._trackers.get(tp) is not tracker:
                self._slots.release()
                return
            if not tracker.should_dispatch(record.offset):
                self._slots.release()
                continue
            self.dispatch(record)

    def dispatch(self, record: ConsumerRecord) -> asyncio.Task:
        """
        Start a handler task for ``record``.

        The caller must hold one concurrency slot; the task releases it.
        """
        tp = TopicPartition(record.topic, record.partition)
        tracker = self._tracker_for(tp)
        tracker.track(record.offset)

        message = from_consumer_record(record, on_ack=self._on_ack, on_nack=self._on_nack)
        record_message_consumed(record.topic, self.group_id)

        task = asyncio.create_task(self._run_handler(message, tracker))
        self._tasks.add(task)
        in_flight_gauge.set(len(self._tasks))
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        in_flight_gauge.set(len(self._tasks))

    async def _run_handler(self, message: FeedMessage, tracker: OffsetTracker) -> None:
        with MessageLogContext(
            message_id=message.message_id,
            topic=message.topic,
            partition=message.partition,
            offset=message.offset,
        ):
            start_time = time.perf_counter()
            try:
                await self.message_handler(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._handle_processing_error(message, e, time.perf_counter() - start_time)
            finally:
                # A nacked offset was already released for redelivery in _on_nack
                if not message.is_nacked:
                    tracker.finish(message.offset)
                self._slots.release()
                message_processing_duration_seconds.labels(topic=message.topic).observe(
                    time.perf_counter() - start_time
                )

    def _handle_processing_error(self, message: FeedMessage, error: Exception, duration: float) -> None:
        """Log a handler failure. The message stays unacknowledged until its deadline."""
        error_category = classify_exception(error)
        record_processing_error(message.topic, error_category.value)

        extra = {
            "error_category": error_category.value,
            "error_type": type(error).__name__,
            "duration_ms": round(duration * 1000, 2),
        }
        if error_category in (ErrorCategory.TRANSIENT, ErrorCategory.AUTH):
            logger.warning("Transient error processing message - will be redelivered", extra=extra, exc_info=True)
        else:
            logger.error("Error processing message - left unacknowledged", extra=extra, exc_info=True)

    def _tracker_for(self, tp: TopicPartition) -> OffsetTracker:
        tracker = self._trackers.get(tp)
        if tracker is None:
            tracker = OffsetTracker(tp.topic, tp.partition)
            self._trackers[tp] = tracker
        return tracker

    def _on_ack(self, message: FeedMessage) -> None:
        tracker = self._trackers.get(TopicPartition(message.topic, message.partition))
        if tracker is not None and tracker.ack(message.offset):
            record_message_acked(message.topic)

    def _on_nack(self, message: FeedMessage) -> None:
        tp = TopicPartition(message.topic, message.partition)
        tracker = self._trackers.get(tp)
        if tracker is not None and tracker.is_pending(message.offset):
            tracker.finish(message.offset)
            self._rewind(tp, message.offset, reason="nack")

    def _rewind(self, tp: TopicPartition, offset: int, reason: str, now: float | None = None) -> None:
        if self._consumer is None:
            return
        self._trackers[tp].rewind(offset, now=now)
        self._consumer.seek(tp, offset)
        record_redelivery(tp.topic, reason)
        logger.warning(
            "Rewinding partition for redelivery",
            extra={"topic": tp.topic, "partition": tp.partition, "redelivered_from": offset, "operation": reason},
        )

    def check_ack_deadlines(self, now: float | None = None) -> list[TopicPartition]:
        """Rewind every partition holding a finished, unacked message past its ack deadline."""
        rewound = []
        for tp, tracker in list(self._trackers.items()):
            offset = tracker.expired(self.config.ack_deadline_seconds, now=now)
            if offset is not None:
                self._rewind(tp, offset, reason="ack_deadline", now=now)
                rewound.append(tp)
        return rewound

    async def commit(self, partitions=None) -> None:
        """Commit the acknowledged prefix of each tracked partition."""
        if self._consumer is None:
            logger.warning("Cannot commit: consumer not started")
            return

        offsets = {}
        for tp, tracker in self._trackers.items():
            if partitions is not None and tp not in partitions:
                continue
            if tracker.needs_commit():
                offsets[tp] = tracker.committable()

        if not offsets:
            return

        await self._consumer.commit(offsets)
        for tp, offset in offsets.items():
            self._trackers[tp].mark_committed(offset)
            update_committed_offset(tp.topic, tp.partition, offset)
            logger.debug(
                "Committed offset",
                extra={"topic": tp.topic, "partition": tp.partition, "committed_offset": offset},
            )

    async def _on_partitions_revoked(self, revoked) -> None:
        revoked = set(revoked)
        try:
            await self.commit(partitions=revoked)
        except Exception:
            logger.warning("Failed to commit offsets for revoked partitions", exc_info=True)
        for tp in revoked:
            self._trackers.pop(tp, None)
        logger.info(
            "Partitions revoked",
            extra={"group_id": self.group_id, "stats": sorted(f"{tp.topic}:{tp.partition}" for tp in revoked)},
        )

    def _on_partitions_assigned(self, assigned) -> None:
        logger.info(
            "Partition assignment received",
            extra={"group_id": self.group_id, "stats": sorted(f"{tp.topic}:{tp.partition}" for tp in assigned)},
        )

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def pending_by_partition(self) -> dict[str, int]:
        return {
            f"{tp.topic}:{tp.partition}": tracker.pending_count
            for tp, tracker in self._trackers.items()
        }

    @property
    def is_running(self) -> bool:
        return self._running and self._consumer is not None


__all__ = [
    "FeedConsumer",
    "AIOKafkaConsumer",
    "ConsumerRecord",
]

"""Feed message types with acknowledgment handles."""

from collections.abc import Callable
from dataclasses import dataclass, field

__all__ = [
    "FeedMessage",
    "from_consumer_record",
]


@dataclass(eq=False)
class FeedMessage:
    """
    One message received from the event feed.

    ``ack()`` marks the message as successfully processed; only the first call
    has an effect. ``nack()`` asks the transport to redeliver the message.
    Both delegate to callbacks supplied by the consumer.
    """

    topic: str
    partition: int
    offset: int
    data: bytes
    publish_time: int | None = None
    attributes: dict[str, bytes] = field(default_factory=dict)
    _on_ack: Callable[["FeedMessage"], None] | None = field(default=None, repr=False)
    _on_nack: Callable[["FeedMessage"], None] | None = field(default=None, repr=False)
    _acked: bool = field(default=False, repr=False)
    _nacked: bool = field(default=False, repr=False)

    @property
    def message_id(self) -> str:
        return f"{self.topic}:{self.partition}:{self.offset}"

    @property
    def is_acked(self) -> bool:
        return self._acked

    @property
    def is_nacked(self) -> bool:
        return self._nacked

    def ack(self) -> None:
        if self._acked or self._nacked:
            return
        self._acked = True
        if self._on_ack is not None:
            self._on_ack(self)

    def nack(self) -> None:
        if self._acked or self._nacked:
            return
        self._nacked = True
        if self._on_nack is not None:
            self._on_nack(self)


def from_consumer_record(
    record,
    on_ack: Callable[[FeedMessage], None] | None = None,
    on_nack: Callable[[FeedMessage], None] | None = None,
) -> FeedMessage:
    """Convert aiokafka ConsumerRecord to FeedMessage."""
    attributes = {}
    if getattr(record, "headers", None):
        attributes = {k: v for k, v in record.headers}

    return FeedMessage(
        topic=record.topic,
        partition=record.partition,
        offset=record.offset,
        data=record.value or b"",
        publish_time=record.timestamp,
        attributes=attributes,
        _on_ack=on_ack,
        _on_nack=on_nack,
    )

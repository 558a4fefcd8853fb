"""Per-partition tracking of delivered and acknowledged offsets."""

import time


class OffsetTracker:
    """
    Tracks in-flight offsets for one topic partition.

    Kafka commits are cumulative, so the committable position is the lowest
    unacknowledged offset, or one past the last delivered offset when every
    delivered message has been acknowledged. An unacknowledged message holds
    back commit progress for everything after it.

    Acknowledged offsets above the lowest pending one are remembered so that a
    seek back for redelivery does not hand them to the handler again. Offsets
    whose handler is still running are neither expired nor redispatched.
    """

    def __init__(self, topic: str, partition: int):
        self.topic = topic
        self.partition = partition
        self._pending: dict[int, float] = {}
        self._running: set[int] = set()
        self._acked: set[int] = set()
        self._last_delivered: int | None = None
        self._last_committed: int | None = None
        self.generation = 0

    def should_dispatch(self, offset: int) -> bool:
        """False for offsets already acknowledged or still being handled."""
        return offset not in self._acked and offset not in self._running

    def track(self, offset: int, now: float | None = None) -> None:
        self._pending[offset] = time.monotonic() if now is None else now
        self._running.add(offset)
        if self._last_delivered is None or offset > self._last_delivered:
            self._last_delivered = offset

    def finish(self, offset: int) -> None:
        """Mark the handler for ``offset`` as no longer running."""
        self._running.discard(offset)

    def ack(self, offset: int) -> bool:
        """Record an acknowledgment. Returns False for offsets no longer tracked."""
        if self._pending.pop(offset, None) is None:
            return False
        self._running.discard(offset)

        if not self._pending:
            self._acked.clear()
        else:
            low = min(self._pending)
            if offset > low:
                self._acked.add(offset)
            else:
                self._acked = {o for o in self._acked if o > low}
        return True

    def is_pending(self, offset: int) -> bool:
        return offset in self._pending

    def committable(self) -> int | None:
        """Offset to commit (next offset to consume), or None before any delivery."""
        if self._pending:
            return min(self._pending)
        if self._last_delivered is None:
            return None
        return self._last_delivered + 1

    def needs_commit(self) -> bool:
        position = self.committable()
        if position is None:
            return False
        return self._last_committed is None or position > self._last_committed

    def mark_committed(self, offset: int) -> None:
        self._last_committed = offset

    @property
    def last_committed(self) -> int | None:
        return self._last_committed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def acked_ahead_count(self) -> int:
        return len(self._acked)

    def expired(self, deadline_seconds: float, now: float | None = None) -> int | None:
        """
        Lowest unacknowledged offset awaiting redelivery, once any of them is
        past its deadline. Offsets whose handler is still running are skipped.
        """
        idle = {o: t for o, t in self._pending.items() if o not in self._running}
        if not idle:
            return None
        now = time.monotonic() if now is None else now
        cutoff = now - deadline_seconds
        if any(delivered_at <= cutoff for delivered_at in idle.values()):
            return min(idle)
        return None

    def rewind(self, offset: int, now: float | None = None) -> None:
        """
        Prepare for a seek back to ``offset``.

        Pending offsets stay pending so commit progress holds. Their deadline
        restarts so the same gap is not rewound again before redelivery
        arrives. The generation counter lets the consumer drop records fetched
        before the seek.
        """
        now = time.monotonic() if now is None else now
        for pending_offset in self._pending:
            if pending_offset >= offset and pending_offset not in self._running:
                self._pending[pending_offset] = now
        self.generation += 1

    def __repr__(self) -> str:
        return (
            f"OffsetTracker({self.topic}:{self.partition}, pending={len(self._pending)}, "
            f"running={len(self._running)}, committable={self.committable()})"
        )


__all__ = ["OffsetTracker"]

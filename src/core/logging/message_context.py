"""Feed message context variables for structured logging.

Each consumed message runs in its own asyncio task, and tasks copy the
context at creation, so values set here never leak between messages.
"""

from contextvars import ContextVar
from typing import Any, Dict, Optional

_message_id: ContextVar[str] = ContextVar("message_id", default="")
_message_topic: ContextVar[str] = ContextVar("message_topic", default="")
_message_partition: ContextVar[int] = ContextVar("message_partition", default=-1)
_message_offset: ContextVar[int] = ContextVar("message_offset", default=-1)


def set_message_context(
    message_id: Optional[str] = None,
    topic: Optional[str] = None,
    partition: Optional[int] = None,
    offset: Optional[int] = None,
) -> None:
    if message_id is not None:
        _message_id.set(message_id)
    if topic is not None:
        _message_topic.set(topic)
    if partition is not None:
        _message_partition.set(partition)
    if offset is not None:
        _message_offset.set(offset)


def get_message_context() -> Dict[str, Any]:
    """
    Get current message logging context.

    Returns:
        Dict with message_id, message_topic, message_partition and
        message_offset. Empty when no message is being processed.
    """
    message_id = _message_id.get()
    if not message_id:
        return {}
    return {
        "message_id": message_id,
        "message_topic": _message_topic.get(),
        "message_partition": _message_partition.get(),
        "message_offset": _message_offset.get(),
    }


def clear_message_context() -> None:
    _message_id.set("")
    _message_topic.set("")
    _message_partition.set(-1)
    _message_offset.set(-1)


class MessageLogContext:
    """
    Context manager that tags every log line with the message being handled.

    Usage:
        with MessageLogContext(message_id="telemetry:0:42", topic="telemetry",
                               partition=0, offset=42):
            await pipeline.handle(message)
    """

    def __init__(
        self,
        message_id: str,
        topic: Optional[str] = None,
        partition: Optional[int] = None,
        offset: Optional[int] = None,
    ):
        self.new_context = {
            "message_id": message_id,
            "topic": topic,
            "partition": partition,
            "offset": offset,
        }
        self.old_context: Dict[str, Any] = {}

    def __enter__(self) -> "MessageLogContext":
        self.old_context = {
            "message_id": _message_id.get(),
            "topic": _message_topic.get(),
            "partition": _message_partition.get(),
            "offset": _message_offset.get(),
        }
        set_message_context(**self.new_context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_message_context(**self.old_context)
        return False

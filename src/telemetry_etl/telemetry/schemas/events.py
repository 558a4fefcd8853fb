"""
Incoming telemetry event schema.

Contains the Pydantic model for raw telemetry events consumed from the feed.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Closed set of payload value shapes. Nested dicts and lists are opaque and
# never flattened further.
PayloadValue = str | int | float | bool | dict[str, Any] | list[Any] | None


class IncomingEvent(BaseModel):
    """Schema for raw telemetry events sent by clients.

    Every field is optional: clients of different versions send different
    subsets, and the sink enforces its own schema. Unknown top-level keys are
    ignored. Numeric values sent for text fields (versions, timestamps) are
    kept as their string form.

    Attributes:
        ip_address: Client IP address as seen by the collecting server
        server_timestamp: Server receive time (epoch seconds)
        timestamp: Client-side timestamp string
        status_code: Outcome code reported by the client
        event_type: Kind of event (e.g. "install", "search")
        execution_time: Client-side duration of the operation
        fonty_version: Client version
        os_family: Client operating system family
        os_version: Client operating system version
        python_version: Client runtime version
        data: Open-ended event payload, key order preserved

    Example:
        >>> event = IncomingEvent.model_validate(
        ...     {"ip_address": "8.8.8.8", "event_type": "install", "data": {"font": "Roboto"}}
        ... )
        >>> event.data
        {'font': 'Roboto'}
    """

    model_config = ConfigDict(extra="ignore", frozen=True, coerce_numbers_to_str=True)

    ip_address: str | None = Field(default=None, description="Client IP address")
    server_timestamp: float | None = Field(default=None, description="Server receive time")
    timestamp: str | None = Field(default=None, description="Client timestamp")
    status_code: int | None = Field(default=None, description="Client status code")
    event_type: str | None = Field(default=None, description="Event type")
    execution_time: float | None = Field(default=None, description="Client execution time")
    fonty_version: str | None = Field(default=None, description="Client version")
    os_family: str | None = None
    os_version: str | None = None
    python_version: str | None = Field(default=None, description="Client runtime version")
    data: dict[str, PayloadValue] | None = Field(default=None, description="Event payload")


__all__ = ["IncomingEvent", "PayloadValue"]

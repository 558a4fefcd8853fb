"""Shallow flattening of event payloads into key/value entries."""

import json
from collections.abc import Mapping

from telemetry_etl.telemetry.schemas.events import PayloadValue
from telemetry_etl.telemetry.schemas.processed import EventDataEntry


def render_value(value: PayloadValue) -> str | None:
    """
    Render one payload value as text.

    None stays None and strings pass through unchanged. Integral floats drop
    their fraction the way JavaScript prints numbers: ``1.0`` -> ``"1"``.
    Everything else is rendered as compact JSON: ``1`` -> ``"1"``,
    ``True`` -> ``"true"``, ``{"a": 1}`` -> ``'{"a":1}'``.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def flatten_event_data(payload: Mapping[str, PayloadValue] | None) -> list[EventDataEntry]:
    """One entry per top-level key, in insertion order. Nested values are not expanded."""
    if payload is None:
        return []
    return [EventDataEntry(key=key, value=render_value(value)) for key, value in payload.items()]


__all__ = ["flatten_event_data", "render_value"]

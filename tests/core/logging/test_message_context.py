"""Tests for feed message logging context."""

import asyncio

from core.logging.message_context import (
    MessageLogContext,
    clear_message_context,
    get_message_context,
    set_message_context,
)


class TestMessageContext:
    def test_empty_without_message(self):
        assert get_message_context() == {}

    def test_sets_all_fields(self):
        set_message_context(message_id="telemetry:2:10", topic="telemetry", partition=2, offset=10)

        assert get_message_context() == {
            "message_id": "telemetry:2:10",
            "message_topic": "telemetry",
            "message_partition": 2,
            "message_offset": 10,
        }

    def test_clear(self):
        set_message_context(message_id="telemetry:0:1")
        clear_message_context()
        assert get_message_context() == {}


class TestMessageLogContext:
    def test_restores_previous_context(self):
        set_message_context(message_id="outer", topic="t", partition=0, offset=1)

        with MessageLogContext(message_id="inner", topic="t", partition=0, offset=2):
            assert get_message_context()["message_id"] == "inner"
            assert get_message_context()["message_offset"] == 2

        assert get_message_context()["message_id"] == "outer"
        assert get_message_context()["message_offset"] == 1

    def test_does_not_suppress_exceptions(self):
        try:
            with MessageLogContext(message_id="m"):
                raise ValueError("boom")
        except ValueError:
            pass
        assert get_message_context() == {}

    async def test_isolated_between_tasks(self):
        seen = {}

        async def handle(message_id: str):
            with MessageLogContext(message_id=message_id):
                await asyncio.sleep(0)
                seen[message_id] = get_message_context()["message_id"]

        await asyncio.gather(handle("a"), handle("b"), handle("c"))

        assert seen == {"a": "a", "b": "b", "c": "c"}

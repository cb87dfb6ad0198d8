"""Tests for SSE framing and parsing."""

import pytest

from gateway.conversion.sse import SSE_DONE, SseEvent, aclose_stream, format_sse, iter_sse_events


async def _lines(*lines):
    for line in lines:
        yield line


async def _collect(lines):
    return [event async for event in iter_sse_events(lines)]


@pytest.mark.unit
class TestFormatSse:
    def test_data_only_frame(self):
        assert format_sse({"a": 1}) == 'data: {"a": 1}\n\n'

    def test_named_event(self):
        assert format_sse({"type": "ping"}, event="ping") == (
            'event: ping\ndata: {"type": "ping"}\n\n'
        )

    def test_string_payload_is_not_reencoded(self):
        assert format_sse("[DONE]") == SSE_DONE

    def test_non_ascii_is_kept(self):
        assert "你好" in format_sse({"text": "你好"})


@pytest.mark.unit
@pytest.mark.asyncio
class TestIterSseEvents:
    async def test_blank_lines_separate_events(self):
        events = await _collect(_lines("data: {\"a\":1}", "", "data: [DONE]", ""))

        assert events == [SseEvent(None, '{"a":1}'), SseEvent(None, "[DONE]")]

    async def test_event_names_and_comments(self):
        events = await _collect(
            _lines(": keepalive", "event: message_start", "data: {}", "", "data:{}", "")
        )

        assert events == [SseEvent("message_start", "{}"), SseEvent(None, "{}")]

    async def test_missing_separator_after_complete_json(self):
        events = await _collect(_lines('data: {"a":1}', 'data: {"b":2}'))

        assert [e.data for e in events] == ['{"a":1}', '{"b":2}']

    async def test_multiline_data_is_joined(self):
        events = await _collect(_lines('data: {"a":', "data: 1}", ""))

        assert events == [SseEvent(None, '{"a":\n1}')]

    async def test_carriage_returns_are_stripped(self):
        events = await _collect(_lines("data: x\r", "\r"))

        assert events == [SseEvent(None, "x")]


@pytest.mark.unit
@pytest.mark.asyncio
class TestAcloseStream:
    async def test_closes_generator(self):
        closed = []

        async def gen():
            try:
                yield "x"
            finally:
                closed.append(True)

        stream = gen()
        await stream.__anext__()
        await aclose_stream(stream)

        assert closed == [True]

    async def test_ignores_plain_objects(self):
        await aclose_stream(["not", "a", "generator"])

"""Tests for upstream output normalization."""

import pytest

from gateway.conversion.canonical import (
    CanonicalEvent,
    ResponseAccumulator,
    ToolCallDelta,
    Usage,
)
from gateway.conversion.normalizer import (
    event_from_chunk,
    normalize_anthropic_stream,
    normalize_openai_response,
    normalize_openai_stream,
)
from gateway.core.errors import UpstreamError
from tests.fixtures.mock_http import chat_completion, chunk, sse_body, text_stream_chunks


async def _lines_of(body: bytes):
    for line in body.decode().split("\n"):
        yield line


async def _raw(*lines):
    for line in lines:
        yield line


async def _collect(stream):
    return [event async for event in stream]


@pytest.mark.unit
class TestEventFromChunk:
    def test_text_and_reasoning(self):
        event = event_from_chunk(chunk({"content": "hi", "reasoning_content": "hmm"}))

        assert event.content == "hi"
        assert event.reasoning == "hmm"

    def test_usage_only_chunk(self):
        event = event_from_chunk(chunk(usage=(7, 2)))

        assert event.usage == Usage(7, 2)
        assert event.content == ""

    def test_tool_call_fragment(self):
        delta = {
            "tool_calls": [
                {"index": 1, "id": "call_9", "function": {"name": "f", "arguments": "{\"a\""}}
            ]
        }

        event = event_from_chunk(chunk(delta))

        assert event.tool_calls == (ToolCallDelta(1, "call_9", "f", '{"a"'),)

    def test_embedded_error_raises(self):
        with pytest.raises(UpstreamError) as exc_info:
            event_from_chunk({"error": {"message": "quota exceeded", "code": 429}}, "iflow")
        assert exc_info.value.status_code == 429
        assert "quota exceeded" in exc_info.value.message

    def test_embedded_error_without_http_code_is_bad_gateway(self):
        with pytest.raises(UpstreamError) as exc_info:
            event_from_chunk({"error": "something broke"})
        assert exc_info.value.status_code == 502


@pytest.mark.unit
@pytest.mark.asyncio
class TestNormalizeOpenAIStream:
    async def test_text_stream_with_trailing_usage(self):
        body = sse_body(*text_stream_chunks("Hel", "lo", usage=(12, 3)))

        events = await _collect(normalize_openai_stream(_lines_of(body)))

        accumulator = ResponseAccumulator()
        for event in events:
            accumulator.add(event)
        result = accumulator.result()
        assert result.content == "Hello"
        assert result.finish_reason == "stop"
        assert result.usage == Usage(12, 3)

    async def test_stops_at_done_marker(self):
        trailing = b'data: {"choices":[{"delta":{"content":"b"}}]}\n\n'
        body = sse_body(chunk({"content": "a"})) + trailing

        events = await _collect(normalize_openai_stream(_lines_of(body)))

        assert [e.content for e in events] == ["a"]

    async def test_skips_non_json_and_empty_chunks(self):
        events = await _collect(
            normalize_openai_stream(_raw("data: not json", "", "data: {}", "", "data: [DONE]", ""))
        )

        assert events == []

    async def test_mid_stream_error_raises_and_closes_upstream(self):
        closed = []

        async def upstream():
            try:
                yield 'data: {"choices":[{"delta":{"content":"partial"}}]}'
                yield ""
                yield 'data: {"error":{"message":"overloaded","code":503}}'
                yield ""
            finally:
                closed.append(True)

        events = []
        with pytest.raises(UpstreamError) as exc_info:
            async for event in normalize_openai_stream(upstream(), "iflow"):
                events.append(event)

        assert [e.content for e in events] == ["partial"]
        assert exc_info.value.status_code == 503
        assert closed == [True]


@pytest.mark.unit
class TestNormalizeOpenAIResponse:
    def test_complete_response(self):
        body = chat_completion(
            "answer",
            reasoning="thought",
            tool_calls=[{"id": "call_1", "function": {"name": "f", "arguments": "{}"}}],
            usage=(4, 6),
        )

        response = normalize_openai_response(body)

        assert response.content == "answer"
        assert response.reasoning == "thought"
        assert [(c.id, c.name, c.arguments) for c in response.tool_calls] == [("call_1", "f", "{}")]
        assert response.usage == Usage(4, 6)
        assert response.finish_reason == "tool_calls"
        assert response.id == "chatcmpl-upstream"

    def test_missing_choices(self):
        response = normalize_openai_response({"id": "x"})

        assert response.content == ""
        assert response.usage == Usage()

    def test_error_body_raises(self):
        with pytest.raises(UpstreamError):
            normalize_openai_response({"error": {"message": "bad"}})


@pytest.mark.unit
@pytest.mark.asyncio
class TestNormalizeAnthropicStream:
    async def test_text_thinking_and_tools(self):
        lines = _raw(
            "event: message_start",
            'data: {"type":"message_start","message":{"usage":{"input_tokens":9}}}',
            "",
            'data: {"type":"content_block_delta","index":0,'
            '"delta":{"type":"thinking_delta","thinking":"hm"}}',
            "",
            'data: {"type":"content_block_delta","index":1,'
            '"delta":{"type":"text_delta","text":"hi"}}',
            "",
            'data: {"type":"content_block_start","index":2,'
            '"content_block":{"type":"tool_use","id":"toolu_1","name":"f"}}',
            "",
            'data: {"type":"content_block_delta","index":2,'
            '"delta":{"type":"input_json_delta","partial_json":"{}"}}',
            "",
            'data: {"type":"message_delta","delta":{"stop_reason":"tool_use"},'
            '"usage":{"output_tokens":4}}',
            "",
            'data: {"type":"message_stop"}',
            "",
        )

        accumulator = ResponseAccumulator()
        for event in await _collect(normalize_anthropic_stream(lines)):
            accumulator.add(event)
        result = accumulator.result()

        assert result.content == "hi"
        assert result.reasoning == "hm"
        assert [(c.id, c.name, c.arguments) for c in result.tool_calls] == [("toolu_1", "f", "{}")]
        assert result.finish_reason == "tool_calls"
        assert result.usage == Usage(9, 4)

    async def test_error_event_raises(self):
        lines = _raw('data: {"type":"error","error":{"message":"overloaded"}}', "")

        with pytest.raises(UpstreamError, match="overloaded"):
            await _collect(normalize_anthropic_stream(lines))


@pytest.mark.unit
class TestResponseAccumulator:
    def test_usage_deltas_are_summed(self):
        accumulator = ResponseAccumulator()
        accumulator.add(CanonicalEvent(usage=Usage(5, 0)))
        accumulator.add(CanonicalEvent(usage=Usage(0, 3)))
        accumulator.add(CanonicalEvent(usage=Usage(0, 2)))

        assert accumulator.result().usage == Usage(5, 5)

    def test_tool_fragments_join_by_index(self):
        accumulator = ResponseAccumulator()
        accumulator.add(CanonicalEvent(tool_calls=(ToolCallDelta(1, "call_b", "g", "{"),)))
        accumulator.add(CanonicalEvent(tool_calls=(ToolCallDelta(0, "call_a", "f", "{}"),)))
        accumulator.add(CanonicalEvent(tool_calls=(ToolCallDelta(1, arguments="}"),)))

        calls = accumulator.result().tool_calls

        assert [(c.id, c.arguments) for c in calls] == [("call_a", "{}"), ("call_b", "{}")]

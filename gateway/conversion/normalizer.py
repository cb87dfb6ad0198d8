"""Native upstream output -> canonical events.

All implemented providers speak OpenAI-compatible chat completions, so the
main entry points parse that wire format. The Anthropic parser consumes the
gateway's own Anthropic rendering and exists so clients and tests can read
that shape back.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from gateway.conversion.canonical import (
    CanonicalEvent,
    CanonicalResponse,
    ToolCall,
    ToolCallDelta,
    Usage,
)
from gateway.conversion.sse import aclose_stream, iter_sse_events
from gateway.core.errors import UpstreamError

logger = logging.getLogger(__name__)


def _usage_from(raw: Any) -> Usage | None:
    if not isinstance(raw, dict):
        return None
    return Usage(
        input_tokens=int(raw.get("prompt_tokens") or raw.get("input_tokens") or 0),
        output_tokens=int(raw.get("completion_tokens") or raw.get("output_tokens") or 0),
    )


def _raise_embedded_error(obj: dict[str, Any], provider: str | None) -> None:
    error = obj.get("error")
    if not error:
        return
    if isinstance(error, dict):
        message = str(error.get("message") or error)
        code = error.get("code")
    else:
        message, code = str(error), None
    status = code if isinstance(code, int) and 400 <= code < 600 else 502
    raise UpstreamError(message, status_code=status, provider=provider)


def _tool_deltas(raw_calls: Any) -> tuple[ToolCallDelta, ...]:
    deltas = []
    for position, raw in enumerate(raw_calls or []):
        function = raw.get("function") or {}
        deltas.append(
            ToolCallDelta(
                index=raw.get("index", position),
                id=raw.get("id"),
                name=function.get("name"),
                arguments=function.get("arguments") or "",
            )
        )
    return tuple(deltas)


def event_from_chunk(obj: dict[str, Any], provider: str | None = None) -> CanonicalEvent:
    """Convert one decoded ``chat.completion.chunk``."""
    _raise_embedded_error(obj, provider)
    usage = _usage_from(obj.get("usage"))
    choices = obj.get("choices") or []
    if not choices:
        return CanonicalEvent(usage=usage)

    choice = choices[0]
    delta = choice.get("delta") or {}
    return CanonicalEvent(
        content=delta.get("content") or "",
        reasoning=delta.get("reasoning_content") or delta.get("reasoning") or "",
        tool_calls=_tool_deltas(delta.get("tool_calls")),
        usage=usage,
        finish_reason=choice.get("finish_reason"),
    )


async def normalize_openai_stream(
    lines: AsyncIterator[str], provider: str | None = None
) -> AsyncIterator[CanonicalEvent]:
    """Parse OpenAI-style SSE lines into canonical events.

    An SSE payload carrying an ``error`` object raises UpstreamError, ending
    the stream as a failure instead of as end-of-data. The upstream iterator
    is closed on every exit path.
    """
    try:
        async for sse in iter_sse_events(lines):
            if sse.data.strip() == "[DONE]":
                break
            try:
                obj = json.loads(sse.data)
            except json.JSONDecodeError:
                logger.debug("Skipping non-JSON SSE payload: %s", sse.data[:200])
                continue
            if not isinstance(obj, dict):
                continue
            event = event_from_chunk(obj, provider)
            if not event.is_empty:
                yield event
    finally:
        await aclose_stream(lines)


def normalize_openai_response(
    body: dict[str, Any], provider: str | None = None
) -> CanonicalResponse:
    """Extract the canonical response from a complete chat completion."""
    _raise_embedded_error(body, provider)
    choices = body.get("choices") or []
    choice = choices[0] if choices else {}
    message = choice.get("message") or {}

    tool_calls = []
    for position, raw in enumerate(message.get("tool_calls") or []):
        function = raw.get("function") or {}
        tool_calls.append(
            ToolCall(
                id=raw.get("id") or f"call_{position}",
                name=function.get("name") or "",
                arguments=function.get("arguments") or "",
            )
        )

    return CanonicalResponse(
        content=message.get("content") or "",
        reasoning=message.get("reasoning_content") or message.get("reasoning") or "",
        tool_calls=tool_calls,
        usage=_usage_from(body.get("usage")) or Usage(),
        finish_reason=choice.get("finish_reason"),
        id=body.get("id"),
    )


_ANTHROPIC_STOP_TO_FINISH = {
    "end_turn": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
    "stop_sequence": "stop",
}


async def normalize_anthropic_stream(lines: AsyncIterator[str]) -> AsyncIterator[CanonicalEvent]:
    """Parse an Anthropic messages stream into canonical events."""
    block_to_tool: dict[int, int] = {}
    input_reported = False
    try:
        async for sse in iter_sse_events(lines):
            try:
                obj = json.loads(sse.data)
            except json.JSONDecodeError:
                continue
            if not isinstance(obj, dict):
                continue
            kind = obj.get("type") or sse.event

            if kind == "error":
                error = obj.get("error") or {}
                raise UpstreamError(str(error.get("message") or error))
            if kind == "message_start":
                usage = (obj.get("message") or {}).get("usage") or {}
                if usage.get("input_tokens"):
                    input_reported = True
                    yield CanonicalEvent(usage=Usage(input_tokens=int(usage["input_tokens"])))
            elif kind == "content_block_start":
                block = obj.get("content_block") or {}
                if block.get("type") == "tool_use":
                    tool_index = len(block_to_tool)
                    block_to_tool[obj["index"]] = tool_index
                    yield CanonicalEvent(
                        tool_calls=(
                            ToolCallDelta(
                                index=tool_index, id=block.get("id"), name=block.get("name")
                            ),
                        )
                    )
            elif kind == "content_block_delta":
                delta = obj.get("delta") or {}
                delta_type = delta.get("type")
                if delta_type == "text_delta":
                    yield CanonicalEvent(content=delta.get("text") or "")
                elif delta_type == "thinking_delta":
                    yield CanonicalEvent(reasoning=delta.get("thinking") or "")
                elif delta_type == "input_json_delta":
                    tool_index = block_to_tool.get(obj.get("index"), 0)
                    yield CanonicalEvent(
                        tool_calls=(
                            ToolCallDelta(
                                index=tool_index, arguments=delta.get("partial_json") or ""
                            ),
                        )
                    )
            elif kind == "message_delta":
                usage = obj.get("usage") or {}
                stop_reason = (obj.get("delta") or {}).get("stop_reason")
                input_tokens = 0 if input_reported else int(usage.get("input_tokens") or 0)
                yield CanonicalEvent(
                    usage=Usage(input_tokens, int(usage.get("output_tokens") or 0)),
                    finish_reason=_ANTHROPIC_STOP_TO_FINISH.get(stop_reason, stop_reason),
                )
            elif kind == "message_stop":
                break
    finally:
        await aclose_stream(lines)

"""Server-Sent Events framing helpers."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

SSE_DONE = "data: [DONE]\n\n"


@dataclass(frozen=True)
class SseEvent:
    event: str | None
    data: str


def format_sse(data: Any, event: str | None = None) -> str:
    """Encode one frame. Non-string payloads are JSON encoded."""
    payload = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False)
    if event:
        return f"event: {event}\ndata: {payload}\n\n"
    return f"data: {payload}\n\n"


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[SseEvent]:
    """Group raw lines into events.

    A blank line terminates an event. Multiple ``data:`` lines are joined
    with newlines. Comment lines (``:``) and unknown fields are ignored. Some
    upstreams omit the blank separator, so a new ``data:`` line after a
    complete JSON payload also starts a new event.
    """
    event_name: str | None = None
    data_lines: list[str] = []

    async for raw in lines:
        line = raw.rstrip("\r")
        if not line:
            if data_lines:
                yield SseEvent(event_name, "\n".join(data_lines))
            event_name, data_lines = None, []
            continue
        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field == "event":
            if data_lines:
                yield SseEvent(event_name, "\n".join(data_lines))
                data_lines = []
            event_name = value
        elif field == "data":
            if data_lines and _is_complete_json(data_lines):
                yield SseEvent(event_name, "\n".join(data_lines))
                event_name, data_lines = None, []
            data_lines.append(value)

    if data_lines:
        yield SseEvent(event_name, "\n".join(data_lines))


def _is_complete_json(data_lines: list[str]) -> bool:
    try:
        json.loads("\n".join(data_lines))
    except json.JSONDecodeError:
        return False
    return True


async def aclose_stream(stream: Any) -> None:
    """Close an async generator if it exposes ``aclose``."""
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()

"""Canonical events -> outbound wire shapes.

One renderer per inbound protocol. A renderer instance serves exactly one
request: it is stateful while streaming (open content blocks, output items)
and folds every event into ``accumulator`` so the caller can read the final
usage once the stream ends.

Reasoning always travels through the canonical stream. Renderers drop it
unless the caller asked for it.
"""

from __future__ import annotations

import abc
import json
import logging
import time
import uuid
from collections.abc import AsyncIterator
from typing import Any

from gateway.conversion.canonical import (
    CanonicalEvent,
    CanonicalResponse,
    ResponseAccumulator,
    WireProtocol,
)
from gateway.conversion.sse import SSE_DONE, aclose_stream, format_sse
from gateway.core.constants import Constants
from gateway.core.error_types import ErrorType
from gateway.core.errors import GatewayError, NoEligibleAccount

logger = logging.getLogger(__name__)


class StreamRenderer(abc.ABC):
    protocol: WireProtocol

    def __init__(self, model: str, include_reasoning: bool = True) -> None:
        self.model = model
        self.include_reasoning = include_reasoning
        self.accumulator = ResponseAccumulator()
        self.created = int(time.time())
        self.failure: GatewayError | None = None

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def start(self) -> list[str]:
        return []

    def on_event(self, event: CanonicalEvent) -> list[str]:
        self.accumulator.add(event)
        return self._render_event(event)

    @abc.abstractmethod
    def _render_event(self, event: CanonicalEvent) -> list[str]:
        pass

    @abc.abstractmethod
    def finish(self) -> list[str]:
        """Frames that terminate a successful stream."""

    @abc.abstractmethod
    def error(self, exc: GatewayError) -> list[str]:
        """Frames that terminate a failed stream. Never a normal terminator."""

    async def render_stream(self, events: AsyncIterator[CanonicalEvent]) -> AsyncIterator[str]:
        """Render a whole stream.

        A GatewayError raised by the event source ends the stream with one
        error frame and is kept on ``self.failure``. Cancellation propagates.
        """
        try:
            for frame in self.start():
                yield frame
            try:
                async for event in events:
                    for frame in self.on_event(event):
                        yield frame
            except GatewayError as e:
                logger.warning("Stream failed mid-flight: %s", e.message)
                self.failure = e
                for frame in self.error(e):
                    yield frame
                return
            for frame in self.finish():
                yield frame
        finally:
            await aclose_stream(events)

    # ------------------------------------------------------------------
    # Complete responses and errors
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def render_response(self, response: CanonicalResponse) -> dict[str, Any]:
        pass

    @staticmethod
    @abc.abstractmethod
    def error_body(exc: GatewayError) -> dict[str, Any]:
        pass

    @staticmethod
    def error_status(exc: GatewayError) -> int:
        return exc.status_code


# ======================================================================
# OpenAI chat completions
# ======================================================================


class OpenAIChatRenderer(StreamRenderer):
    protocol = WireProtocol.OPENAI_CHAT

    def __init__(self, model: str, include_reasoning: bool = True) -> None:
        super().__init__(model, include_reasoning)
        self.completion_id = f"chatcmpl-{uuid.uuid4().hex[:24]}"
        self._role_sent = False
        self._finish_sent = False

    def _chunk(self, delta: dict[str, Any], finish_reason: str | None = None) -> str:
        return format_sse(
            {
                "id": self.completion_id,
                "object": "chat.completion.chunk",
                "created": self.created,
                "model": self.model,
                "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
            }
        )

    def _render_event(self, event: CanonicalEvent) -> list[str]:
        delta: dict[str, Any] = {}
        if event.reasoning and self.include_reasoning:
            delta["reasoning_content"] = event.reasoning
        if event.content:
            delta["content"] = event.content
        if event.tool_calls:
            calls = []
            for tc in event.tool_calls:
                call: dict[str, Any] = {"index": tc.index}
                if tc.id:
                    call["id"] = tc.id
                    call["type"] = Constants.TOOL_FUNCTION
                function: dict[str, Any] = {"arguments": tc.arguments}
                if tc.name:
                    function["name"] = tc.name
                call["function"] = function
                calls.append(call)
            delta["tool_calls"] = calls

        frames = []
        if delta:
            if not self._role_sent:
                delta = {"role": Constants.ROLE_ASSISTANT, **delta}
                self._role_sent = True
            frames.append(self._chunk(delta))
        if event.finish_reason and not self._finish_sent:
            self._finish_sent = True
            frames.append(self._chunk({}, event.finish_reason))
        return frames

    def finish(self) -> list[str]:
        frames = []
        if not self._finish_sent:
            reason = "tool_calls" if self.accumulator.result().tool_calls else "stop"
            frames.append(self._chunk({}, reason))
        usage = self.accumulator.usage
        frames.append(
            format_sse(
                {
                    "id": self.completion_id,
                    "object": "chat.completion.chunk",
                    "created": self.created,
                    "model": self.model,
                    "choices": [],
                    "usage": {
                        "prompt_tokens": usage.input_tokens,
                        "completion_tokens": usage.output_tokens,
                        "total_tokens": usage.total_tokens,
                    },
                }
            )
        )
        frames.append(SSE_DONE)
        return frames

    def error(self, exc: GatewayError) -> list[str]:
        return [format_sse(self.error_body(exc))]

    def render_response(self, response: CanonicalResponse) -> dict[str, Any]:
        message: dict[str, Any] = {
            "role": Constants.ROLE_ASSISTANT,
            "content": response.content if response.content or not response.tool_calls else None,
        }
        if response.reasoning and self.include_reasoning:
            message["reasoning_content"] = response.reasoning
        if response.tool_calls:
            message["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": Constants.TOOL_FUNCTION,
                    "function": {"name": tc.name, "arguments": tc.arguments},
                }
                for tc in response.tool_calls
            ]
        finish_reason = response.finish_reason or ("tool_calls" if response.tool_calls else "stop")
        return {
            "id": response.id or self.completion_id,
            "object": "chat.completion",
            "created": self.created,
            "model": self.model,
            "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
            "usage": {
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
                "total_tokens": response.usage.total_tokens,
            },
        }

    @staticmethod
    def error_body(exc: GatewayError) -> dict[str, Any]:
        return {
            "error": {
                "message": exc.message,
                "type": exc.error_type.value,
                "code": exc.code,
                "param": exc.param,
            }
        }


# ======================================================================
# Anthropic messages
# ======================================================================


class AnthropicMessagesRenderer(StreamRenderer):
    """Anthropic SSE state machine.

    At most one thinking or text block is open at a time. Each tool call
    gets its own tool_use block, kept open until the message ends so late
    argument fragments still have a target index.
    """

    protocol = WireProtocol.ANTHROPIC_MESSAGES

    def __init__(self, model: str, include_reasoning: bool = True) -> None:
        super().__init__(model, include_reasoning)
        self.message_id = f"msg_{uuid.uuid4().hex[:24]}"
        self._next_index = 0
        self._open_kind: str | None = None
        self._open_index = 0
        self._tool_blocks: dict[int, int] = {}

    @staticmethod
    def _frame(event: str, data: dict[str, Any]) -> str:
        return format_sse({"type": event, **data}, event=event)

    def _close_open_block(self) -> list[str]:
        if self._open_kind is None:
            return []
        self._open_kind = None
        return [self._frame(Constants.EVENT_CONTENT_BLOCK_STOP, {"index": self._open_index})]

    def _ensure_block(self, kind: str) -> list[str]:
        if self._open_kind == kind:
            return []
        frames = self._close_open_block()
        self._open_kind = kind
        self._open_index = self._next_index
        self._next_index += 1
        empty = {"type": kind, kind: ""}
        frames.append(
            self._frame(
                Constants.EVENT_CONTENT_BLOCK_START,
                {"index": self._open_index, "content_block": empty},
            )
        )
        return frames

    def start(self) -> list[str]:
        message = {
            "id": self.message_id,
            "type": "message",
            "role": Constants.ROLE_ASSISTANT,
            "model": self.model,
            "content": [],
            "stop_reason": None,
            "stop_sequence": None,
            "usage": {"input_tokens": 0, "output_tokens": 0},
        }
        return [
            self._frame(Constants.EVENT_MESSAGE_START, {"message": message}),
            self._frame(Constants.EVENT_PING, {}),
        ]

    def _render_event(self, event: CanonicalEvent) -> list[str]:
        frames: list[str] = []
        if event.reasoning and self.include_reasoning:
            frames += self._ensure_block(Constants.CONTENT_THINKING)
            frames.append(
                self._frame(
                    Constants.EVENT_CONTENT_BLOCK_DELTA,
                    {
                        "index": self._open_index,
                        "delta": {"type": Constants.DELTA_THINKING, "thinking": event.reasoning},
                    },
                )
            )
        if event.content:
            frames += self._ensure_block(Constants.CONTENT_TEXT)
            frames.append(
                self._frame(
                    Constants.EVENT_CONTENT_BLOCK_DELTA,
                    {
                        "index": self._open_index,
                        "delta": {"type": Constants.DELTA_TEXT, "text": event.content},
                    },
                )
            )
        for tc in event.tool_calls:
            if tc.index not in self._tool_blocks:
                frames += self._close_open_block()
                block_index = self._next_index
                self._next_index += 1
                self._tool_blocks[tc.index] = block_index
                frames.append(
                    self._frame(
                        Constants.EVENT_CONTENT_BLOCK_START,
                        {
                            "index": block_index,
                            "content_block": {
                                "type": Constants.CONTENT_TOOL_USE,
                                "id": tc.id or f"toolu_{uuid.uuid4().hex[:24]}",
                                "name": tc.name or "",
                                "input": {},
                            },
                        },
                    )
                )
            if tc.arguments:
                frames.append(
                    self._frame(
                        Constants.EVENT_CONTENT_BLOCK_DELTA,
                        {
                            "index": self._tool_blocks[tc.index],
                            "delta": {
                                "type": Constants.DELTA_INPUT_JSON,
                                "partial_json": tc.arguments,
                            },
                        },
                    )
                )
        return frames

    def _stop_reason(self, finish_reason: str | None) -> str:
        if self._tool_blocks:
            return Constants.STOP_TOOL_USE
        return Constants.FINISH_TO_STOP.get(finish_reason or "stop", Constants.STOP_END_TURN)

    def finish(self) -> list[str]:
        frames = self._close_open_block()
        for block_index in sorted(self._tool_blocks.values()):
            frames.append(self._frame(Constants.EVENT_CONTENT_BLOCK_STOP, {"index": block_index}))
        usage = self.accumulator.usage
        frames.append(
            self._frame(
                Constants.EVENT_MESSAGE_DELTA,
                {
                    "delta": {
                        "stop_reason": self._stop_reason(self.accumulator.finish_reason),
                        "stop_sequence": None,
                    },
                    "usage": {
                        "input_tokens": usage.input_tokens,
                        "output_tokens": usage.output_tokens,
                    },
                },
            )
        )
        frames.append(self._frame(Constants.EVENT_MESSAGE_STOP, {}))
        return frames

    def error(self, exc: GatewayError) -> list[str]:
        return [format_sse(self.error_body(exc), event=Constants.EVENT_ERROR)]

    def render_response(self, response: CanonicalResponse) -> dict[str, Any]:
        blocks: list[dict[str, Any]] = []
        if response.reasoning and self.include_reasoning:
            blocks.append({"type": Constants.CONTENT_THINKING, "thinking": response.reasoning})
        if response.content:
            blocks.append({"type": Constants.CONTENT_TEXT, "text": response.content})
        for tc in response.tool_calls:
            try:
                arguments = json.loads(tc.arguments or "{}")
            except json.JSONDecodeError:
                arguments = {"raw_arguments": tc.arguments}
            blocks.append(
                {
                    "type": Constants.CONTENT_TOOL_USE,
                    "id": tc.id,
                    "name": tc.name,
                    "input": arguments,
                }
            )
        if not blocks:
            blocks.append({"type": Constants.CONTENT_TEXT, "text": ""})

        if response.tool_calls:
            stop_reason = Constants.STOP_TOOL_USE
        else:
            stop_reason = Constants.FINISH_TO_STOP.get(
                response.finish_reason or "stop", Constants.STOP_END_TURN
            )
        return {
            "id": f"msg_{response.id}" if response.id else self.message_id,
            "type": "message",
            "role": Constants.ROLE_ASSISTANT,
            "model": self.model,
            "content": blocks,
            "stop_reason": stop_reason,
            "stop_sequence": None,
            "usage": {
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
        }

    @staticmethod
    def error_body(exc: GatewayError) -> dict[str, Any]:
        error_type = exc.error_type
        if isinstance(exc, NoEligibleAccount):
            error_type = ErrorType.OVERLOADED
        return {"type": "error", "error": {"type": error_type.value, "message": exc.message}}

    @staticmethod
    def error_status(exc: GatewayError) -> int:
        # Anthropic clients back off on 529 rather than treating it as fatal
        if isinstance(exc, NoEligibleAccount):
            return 529
        return exc.status_code


# ======================================================================
# OpenAI responses
# ======================================================================


class ResponsesRenderer(StreamRenderer):
    """OpenAI Responses event stream.

    Output items are opened lazily in arrival order: a reasoning item, the
    assistant message, then one item per function call.
    """

    protocol = WireProtocol.OPENAI_RESPONSES

    def __init__(self, model: str, include_reasoning: bool = False) -> None:
        super().__init__(model, include_reasoning)
        self.response_id = f"resp_{uuid.uuid4().hex[:24]}"
        self._sequence = 0
        self._items: list[dict[str, Any]] = []
        self._reasoning_item: dict[str, Any] | None = None
        self._message_item: dict[str, Any] | None = None
        self._call_items: dict[int, dict[str, Any]] = {}

    def _frame(self, event: str, data: dict[str, Any]) -> str:
        frame = format_sse({"type": event, "sequence_number": self._sequence, **data}, event=event)
        self._sequence += 1
        return frame

    def _envelope(self, status: str, output: list[dict[str, Any]]) -> dict[str, Any]:
        return {
            "id": self.response_id,
            "object": "response",
            "created_at": self.created,
            "model": self.model,
            "status": status,
            "output": output,
        }

    def _open_item(self, item: dict[str, Any]) -> str:
        item["output_index"] = len(self._items)
        self._items.append(item)
        public = {k: v for k, v in item.items() if k != "output_index"}
        return self._frame(
            "response.output_item.added",
            {"output_index": item["output_index"], "item": public},
        )

    def start(self) -> list[str]:
        return [self._frame("response.created", {"response": self._envelope("in_progress", [])})]

    def _render_event(self, event: CanonicalEvent) -> list[str]:
        frames: list[str] = []
        if event.reasoning and self.include_reasoning:
            if self._reasoning_item is None:
                self._reasoning_item = {
                    "id": f"rs_{uuid.uuid4().hex[:24]}",
                    "type": "reasoning",
                    "summary": [],
                }
                frames.append(self._open_item(self._reasoning_item))
            frames.append(
                self._frame(
                    "response.reasoning_summary_text.delta",
                    {
                        "item_id": self._reasoning_item["id"],
                        "output_index": self._reasoning_item["output_index"],
                        "summary_index": 0,
                        "delta": event.reasoning,
                    },
                )
            )
        if event.content:
            if self._message_item is None:
                self._message_item = {
                    "id": f"msg_{uuid.uuid4().hex[:24]}",
                    "type": "message",
                    "role": Constants.ROLE_ASSISTANT,
                    "status": "in_progress",
                    "content": [],
                }
                frames.append(self._open_item(self._message_item))
                frames.append(
                    self._frame(
                        "response.content_part.added",
                        {
                            "item_id": self._message_item["id"],
                            "output_index": self._message_item["output_index"],
                            "content_index": 0,
                            "part": {"type": "output_text", "text": "", "annotations": []},
                        },
                    )
                )
            frames.append(
                self._frame(
                    "response.output_text.delta",
                    {
                        "item_id": self._message_item["id"],
                        "output_index": self._message_item["output_index"],
                        "content_index": 0,
                        "delta": event.content,
                    },
                )
            )
        for tc in event.tool_calls:
            item = self._call_items.get(tc.index)
            if item is None:
                call_id = tc.id or f"call_{uuid.uuid4().hex[:24]}"
                item = {
                    "id": f"fc_{uuid.uuid4().hex[:24]}",
                    "type": "function_call",
                    "status": "in_progress",
                    "call_id": call_id,
                    "name": tc.name or "",
                    "arguments": "",
                }
                self._call_items[tc.index] = item
                frames.append(self._open_item(item))
            if tc.arguments:
                frames.append(
                    self._frame(
                        "response.function_call_arguments.delta",
                        {
                            "item_id": item["id"],
                            "output_index": item["output_index"],
                            "delta": tc.arguments,
                        },
                    )
                )
        return frames

    def _output(
        self, response: CanonicalResponse, ids: dict[str, str] | None = None
    ) -> list[dict[str, Any]]:
        ids = ids or {}
        output: list[dict[str, Any]] = []
        if response.reasoning and self.include_reasoning:
            output.append(
                {
                    "id": ids.get("reasoning") or f"rs_{uuid.uuid4().hex[:24]}",
                    "type": "reasoning",
                    "summary": [{"type": "summary_text", "text": response.reasoning}],
                }
            )
        if response.content or not response.tool_calls:
            output.append(
                {
                    "id": ids.get("message") or f"msg_{uuid.uuid4().hex[:24]}",
                    "type": "message",
                    "role": Constants.ROLE_ASSISTANT,
                    "status": "completed",
                    "content": [
                        {"type": "output_text", "text": response.content, "annotations": []}
                    ],
                }
            )
        for position, tc in enumerate(response.tool_calls):
            output.append(
                {
                    "id": ids.get(f"call:{position}") or f"fc_{uuid.uuid4().hex[:24]}",
                    "type": "function_call",
                    "status": "completed",
                    "call_id": tc.id,
                    "name": tc.name,
                    "arguments": tc.arguments,
                }
            )
        return output

    @staticmethod
    def _usage(response: CanonicalResponse) -> dict[str, int]:
        return {
            "input_tokens": response.usage.input_tokens,
            "output_tokens": response.usage.output_tokens,
            "total_tokens": response.usage.total_tokens,
        }

    def finish(self) -> list[str]:
        response = self.accumulator.result()
        frames: list[str] = []
        if self._reasoning_item is not None:
            frames.append(
                self._frame(
                    "response.reasoning_summary_text.done",
                    {
                        "item_id": self._reasoning_item["id"],
                        "output_index": self._reasoning_item["output_index"],
                        "summary_index": 0,
                        "text": response.reasoning,
                    },
                )
            )
        if self._message_item is not None:
            item_ref = {
                "item_id": self._message_item["id"],
                "output_index": self._message_item["output_index"],
                "content_index": 0,
            }
            frames.append(
                self._frame("response.output_text.done", {**item_ref, "text": response.content})
            )
            frames.append(
                self._frame(
                    "response.content_part.done",
                    {
                        **item_ref,
                        "part": {
                            "type": "output_text",
                            "text": response.content,
                            "annotations": [],
                        },
                    },
                )
            )
        for position, index in enumerate(sorted(self._call_items)):
            item = self._call_items[index]
            frames.append(
                self._frame(
                    "response.function_call_arguments.done",
                    {
                        "item_id": item["id"],
                        "output_index": item["output_index"],
                        "arguments": response.tool_calls[position].arguments,
                    },
                )
            )

        ids = {}
        if self._reasoning_item is not None:
            ids["reasoning"] = self._reasoning_item["id"]
        if self._message_item is not None:
            ids["message"] = self._message_item["id"]
        for position, index in enumerate(sorted(self._call_items)):
            ids[f"call:{position}"] = self._call_items[index]["id"]
        output = self._output(response, ids)
        for item in output:
            frames.append(self._frame("response.output_item.done", {"item": item}))

        body = self._envelope("completed", output)
        body["usage"] = self._usage(response)
        frames.append(self._frame("response.completed", {"response": body}))
        return frames

    def error(self, exc: GatewayError) -> list[str]:
        body = self._envelope("failed", [])
        body["error"] = {"code": exc.code or exc.error_type.value, "message": exc.message}
        return [self._frame("response.failed", {"response": body})]

    def render_response(self, response: CanonicalResponse) -> dict[str, Any]:
        body = self._envelope("completed", self._output(response))
        body["usage"] = self._usage(response)
        return body

    @staticmethod
    def error_body(exc: GatewayError) -> dict[str, Any]:
        return OpenAIChatRenderer.error_body(exc)


RENDERERS: dict[WireProtocol, type[StreamRenderer]] = {
    WireProtocol.OPENAI_CHAT: OpenAIChatRenderer,
    WireProtocol.ANTHROPIC_MESSAGES: AnthropicMessagesRenderer,
    WireProtocol.OPENAI_RESPONSES: ResponsesRenderer,
}


def renderer_for(protocol: WireProtocol, model: str, include_reasoning: bool) -> StreamRenderer:
    return RENDERERS[protocol](model, include_reasoning)

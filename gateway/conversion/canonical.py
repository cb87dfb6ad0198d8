"""Protocol-agnostic representation of model output.

Every upstream stream is normalized to CanonicalEvent objects and every
complete payload to a CanonicalResponse. Renderers only ever see these.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class WireProtocol(str, Enum):
    """Inbound request shapes the gateway accepts."""

    OPENAI_CHAT = "openai_chat"
    ANTHROPIC_MESSAGES = "anthropic_messages"
    OPENAI_RESPONSES = "openai_responses"


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def merge(self, other: Usage | None) -> None:
        """Add another delta in place."""
        if other is None:
            return
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens


@dataclass(frozen=True)
class ToolCallDelta:
    """Fragment of a tool call. ``index`` identifies the call across fragments."""

    index: int
    id: str | None = None
    name: str | None = None
    arguments: str = ""


@dataclass(frozen=True)
class CanonicalEvent:
    content: str = ""
    reasoning: str = ""
    tool_calls: tuple[ToolCallDelta, ...] = ()
    usage: Usage | None = None
    finish_reason: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (
            self.content or self.reasoning or self.tool_calls or self.usage or self.finish_reason
        )


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: str = ""


@dataclass
class CanonicalResponse:
    content: str = ""
    reasoning: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    finish_reason: str | None = None
    id: str | None = None


class ResponseAccumulator:
    """Fold a canonical event stream into a CanonicalResponse.

    Tool call fragments are joined by index, usage deltas are summed.
    """

    def __init__(self) -> None:
        self._content: list[str] = []
        self._reasoning: list[str] = []
        self._tools: dict[int, ToolCall] = {}
        self.usage = Usage()
        self.finish_reason: str | None = None

    def add(self, event: CanonicalEvent) -> None:
        if event.content:
            self._content.append(event.content)
        if event.reasoning:
            self._reasoning.append(event.reasoning)
        for delta in event.tool_calls:
            call = self._tools.get(delta.index)
            if call is None:
                call = ToolCall(id=delta.id or f"call_{delta.index}", name=delta.name or "")
                self._tools[delta.index] = call
            if delta.id:
                call.id = delta.id
            if delta.name:
                call.name = delta.name
            call.arguments += delta.arguments
        self.usage.merge(event.usage)
        if event.finish_reason:
            self.finish_reason = event.finish_reason

    def result(self) -> CanonicalResponse:
        return CanonicalResponse(
            content="".join(self._content),
            reasoning="".join(self._reasoning),
            tool_calls=[self._tools[idx] for idx in sorted(self._tools)],
            usage=Usage(self.usage.input_tokens, self.usage.output_tokens),
            finish_reason=self.finish_reason,
        )

"""Inbound request shapes -> native OpenAI chat-completions payload.

Every provider client speaks one native shape (OpenAI chat completions), so
Anthropic messages and OpenAI responses requests are converted here. Lossy
mappings are listed explicitly:

    Anthropic tool_choice ``any``      -> ``"required"``
    Anthropic tool_choice ``tool``     -> ``{"type": "function", ...}``
    Anthropic ``thinking.enabled``     -> ``thinking_budget`` (default 10000)
    Anthropic ``stop_sequences``       -> ``stop``
    Anthropic thinking blocks          -> dropped (context only)
    Responses ``developer`` role       -> ``system``
    Responses ``fc_`` call ids         -> ``call_``
    Responses ``max_output_tokens``    -> ``max_tokens``
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from gateway.conversion.canonical import WireProtocol
from gateway.core.constants import Constants
from gateway.core.errors import InvalidRequest

logger = logging.getLogger(__name__)

# Gateway routing fields that never reach a provider
GATEWAY_FIELDS = frozenset({"provider_account_id"})


@dataclass(frozen=True)
class InboundRequest:
    """A validated inbound call, converted to the native payload.

    ``payload["model"]`` still holds the caller's model string; the
    orchestrator rewrites it once the provider is chosen.
    """

    protocol: WireProtocol
    model: str
    payload: dict[str, Any]
    stream: bool
    include_reasoning: bool
    provider_account_id: str | None = None


def _require_model(body: dict[str, Any]) -> str:
    model = body.get("model")
    if not isinstance(model, str) or not model.strip():
        raise InvalidRequest("'model' is required", param="model")
    return model.strip()


def _reasoning_requested(body: dict[str, Any]) -> bool:
    for field in Constants.REASONING_REQUEST_FIELDS:
        value = body.get(field)
        if value in (None, False, "none"):
            continue
        if isinstance(value, dict) and value.get("effort") == "none":
            continue
        return True
    return False


# ======================================================================
# OpenAI chat completions
# ======================================================================


def from_openai_chat(body: dict[str, Any]) -> InboundRequest:
    model = _require_model(body)
    messages = body.get("messages")
    if not isinstance(messages, list) or not messages:
        raise InvalidRequest("'messages' must be a non-empty array", param="messages")

    payload = {key: value for key, value in body.items() if key not in GATEWAY_FIELDS}
    return InboundRequest(
        protocol=WireProtocol.OPENAI_CHAT,
        model=model,
        payload=payload,
        stream=bool(body.get("stream", False)),
        include_reasoning=_reasoning_requested(body),
        provider_account_id=body.get("provider_account_id"),
    )


# ======================================================================
# Anthropic messages
# ======================================================================


def _anthropic_image_part(block: dict[str, Any]) -> dict[str, Any] | None:
    source = block.get("source") or {}
    if source.get("type") == "base64":
        url = f"data:{source.get('media_type', 'image/png')};base64,{source.get('data', '')}"
    elif source.get("type") == "url":
        url = source.get("url", "")
    else:
        return None
    return {"type": "image_url", "image_url": {"url": url}}


def _anthropic_tool_result_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            block.get("text", "")
            for block in content
            if isinstance(block, dict) and block.get("type") == Constants.CONTENT_TEXT
        )
    return json.dumps(content)


def _anthropic_system(system: Any) -> str:
    if isinstance(system, str):
        return system
    return "\n".join(
        block if isinstance(block, str) else block.get("text", "")
        for block in system
        if isinstance(block, str) or block.get("type") == Constants.CONTENT_TEXT
    )


def _convert_anthropic_message(message: dict[str, Any]) -> list[dict[str, Any]]:
    role = message.get("role", Constants.ROLE_USER)
    content = message.get("content")
    if isinstance(content, str):
        return [{"role": role, "content": content}]

    converted: list[dict[str, Any]] = []
    parts: list[dict[str, Any]] = []
    tool_calls: list[dict[str, Any]] = []

    for block in content or []:
        block_type = block.get("type")
        if block_type == Constants.CONTENT_TEXT:
            parts.append({"type": "text", "text": block.get("text", "")})
        elif block_type == Constants.CONTENT_IMAGE:
            image = _anthropic_image_part(block)
            if image is not None:
                parts.append(image)
        elif block_type == Constants.CONTENT_TOOL_USE:
            arguments = block.get("input")
            tool_calls.append(
                {
                    "id": block.get("id", ""),
                    "type": Constants.TOOL_FUNCTION,
                    "function": {
                        "name": block.get("name", ""),
                        "arguments": arguments
                        if isinstance(arguments, str)
                        else json.dumps(arguments or {}),
                    },
                }
            )
        elif block_type == Constants.CONTENT_TOOL_RESULT:
            # Tool results become their own messages, ahead of any remaining text
            converted.append(
                {
                    "role": Constants.ROLE_TOOL,
                    "tool_call_id": block.get("tool_use_id", ""),
                    "content": _anthropic_tool_result_text(block.get("content")),
                }
            )
        # thinking / redacted_thinking blocks are context only

    text = "".join(part["text"] for part in parts if part["type"] == "text")
    has_images = any(part["type"] == "image_url" for part in parts)

    if role == Constants.ROLE_ASSISTANT and tool_calls:
        converted.append({"role": role, "content": text or None, "tool_calls": tool_calls})
    elif has_images:
        converted.append({"role": role, "content": parts})
    elif text:
        converted.append({"role": role, "content": text})
    return converted


def _anthropic_tool_choice(choice: dict[str, Any]) -> Any:
    choice_type = choice.get("type")
    if choice_type == "auto":
        return "auto"
    if choice_type == "any":
        return "required"
    if choice_type == "none":
        return "none"
    if choice_type == "tool":
        return {"type": Constants.TOOL_FUNCTION, "function": {"name": choice.get("name", "")}}
    logger.debug("Ignoring unknown Anthropic tool_choice %r", choice_type)
    return None


def from_anthropic_messages(body: dict[str, Any]) -> InboundRequest:
    model = _require_model(body)
    messages = body.get("messages")
    if not isinstance(messages, list) or not messages:
        raise InvalidRequest("'messages' must be a non-empty array", param="messages")

    consumed = {
        "model",
        "messages",
        "system",
        "max_tokens",
        "stream",
        "tools",
        "tool_choice",
        "thinking",
        "stop_sequences",
        "metadata",
        *GATEWAY_FIELDS,
    }
    payload: dict[str, Any] = {key: value for key, value in body.items() if key not in consumed}

    native_messages: list[dict[str, Any]] = []
    if body.get("system"):
        native_messages.append(
            {"role": Constants.ROLE_SYSTEM, "content": _anthropic_system(body["system"])}
        )
    for message in messages:
        native_messages.extend(_convert_anthropic_message(message))

    stream = bool(body.get("stream", False))
    payload.update(
        model=model,
        messages=native_messages,
        max_tokens=body.get("max_tokens") or Constants.DEFAULT_ANTHROPIC_MAX_TOKENS,
        stream=stream,
    )
    if body.get("stop_sequences"):
        payload["stop"] = body["stop_sequences"]

    tools = body.get("tools") or []
    if tools:
        payload["tools"] = [
            {
                "type": Constants.TOOL_FUNCTION,
                "function": {
                    "name": tool["name"],
                    "description": tool.get("description", ""),
                    "parameters": tool.get("input_schema") or {},
                },
            }
            for tool in tools
        ]
    if body.get("tool_choice"):
        tool_choice = _anthropic_tool_choice(body["tool_choice"])
        if tool_choice is not None:
            payload["tool_choice"] = tool_choice

    thinking = body.get("thinking") or {}
    thinking_requested = thinking.get("type") == "enabled"
    if thinking_requested:
        payload["thinking_budget"] = (
            thinking.get("budget_tokens") or Constants.DEFAULT_THINKING_BUDGET
        )

    return InboundRequest(
        protocol=WireProtocol.ANTHROPIC_MESSAGES,
        model=model,
        payload=payload,
        stream=stream,
        include_reasoning=thinking_requested,
        provider_account_id=body.get("provider_account_id"),
    )


# ======================================================================
# OpenAI responses
# ======================================================================


def _normalize_call_id(raw_id: str) -> str:
    if raw_id.startswith(("fc_", "fc-")):
        return "call_" + raw_id[3:]
    return raw_id


def _responses_content(content: Any) -> Any:
    if not isinstance(content, list):
        return content
    parts: list[dict[str, Any]] = []
    for part in content:
        part_type = part.get("type")
        if part_type in ("input_text", "output_text", "text"):
            parts.append({"type": "text", "text": part.get("text", "")})
        elif part_type == "input_image":
            image_url = part.get("image_url")
            url = image_url.get("url", "") if isinstance(image_url, dict) else image_url or ""
            parts.append({"type": "image_url", "image_url": {"url": url}})
    if all(part["type"] == "text" for part in parts):
        return "".join(part["text"] for part in parts)
    return parts


def convert_responses_input(
    input_items: Any, instructions: str | None = None
) -> list[dict[str, Any]]:
    """Responses ``input`` -> chat ``messages``.

    Consecutive ``function_call`` items are grouped into one assistant
    message, flushed when a message or a call output follows.
    """
    messages: list[dict[str, Any]] = []
    if instructions:
        messages.append({"role": Constants.ROLE_SYSTEM, "content": instructions})
    if isinstance(input_items, str):
        messages.append({"role": Constants.ROLE_USER, "content": input_items})
        return messages

    pending_calls: list[dict[str, Any]] = []

    def flush_calls() -> None:
        if pending_calls:
            messages.append(
                {"role": Constants.ROLE_ASSISTANT, "content": "", "tool_calls": list(pending_calls)}
            )
            pending_calls.clear()

    for item in input_items or []:
        item_type = item.get("type", "message")
        if item_type == "message":
            flush_calls()
            role = item.get("role") or Constants.ROLE_USER
            if role == Constants.ROLE_DEVELOPER:
                role = Constants.ROLE_SYSTEM
            messages.append({"role": role, "content": _responses_content(item.get("content"))})
        elif item_type == "function_call":
            raw_id = item.get("call_id") or item.get("id") or f"call_{len(pending_calls)}"
            pending_calls.append(
                {
                    "id": _normalize_call_id(raw_id),
                    "type": Constants.TOOL_FUNCTION,
                    "function": {
                        "name": item.get("name", ""),
                        "arguments": item.get("arguments") or "{}",
                    },
                }
            )
        elif item_type == "function_call_output":
            flush_calls()
            messages.append(
                {
                    "role": Constants.ROLE_TOOL,
                    "tool_call_id": _normalize_call_id(item.get("call_id") or ""),
                    "content": item.get("output") or "",
                }
            )
    flush_calls()
    return messages


def _responses_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    converted = []
    for tool in tools:
        if tool.get("type") != Constants.TOOL_FUNCTION:
            logger.debug("Dropping unsupported responses tool type %r", tool.get("type"))
            continue
        if "function" in tool:
            converted.append(tool)
            continue
        converted.append(
            {
                "type": Constants.TOOL_FUNCTION,
                "function": {
                    "name": tool.get("name", ""),
                    "description": tool.get("description", ""),
                    "parameters": tool.get("parameters") or {},
                },
            }
        )
    return converted


def from_openai_responses(body: dict[str, Any]) -> InboundRequest:
    model = _require_model(body)
    if not body.get("input"):
        raise InvalidRequest("'input' is required", param="input")

    consumed = {
        "model",
        "input",
        "instructions",
        "stream",
        "max_output_tokens",
        "tools",
        "tool_choice",
        "store",
        "previous_response_id",
        "include",
        "text",
        *GATEWAY_FIELDS,
    }
    payload: dict[str, Any] = {key: value for key, value in body.items() if key not in consumed}
    stream = bool(body.get("stream", False))
    payload.update(
        model=model,
        messages=convert_responses_input(body["input"], body.get("instructions")),
        stream=stream,
    )
    if body.get("max_output_tokens"):
        payload["max_tokens"] = body["max_output_tokens"]

    tools = _responses_tools(body.get("tools") or [])
    if tools:
        payload["tools"] = tools
    tool_choice = body.get("tool_choice")
    if isinstance(tool_choice, dict) and "name" in tool_choice:
        payload["tool_choice"] = {
            "type": Constants.TOOL_FUNCTION,
            "function": {"name": tool_choice["name"]},
        }
    elif tool_choice is not None:
        payload["tool_choice"] = tool_choice

    return InboundRequest(
        protocol=WireProtocol.OPENAI_RESPONSES,
        model=model,
        payload=payload,
        stream=stream,
        include_reasoning=_reasoning_requested(body),
        provider_account_id=body.get("provider_account_id"),
    )


_PARSERS = {
    WireProtocol.OPENAI_CHAT: from_openai_chat,
    WireProtocol.ANTHROPIC_MESSAGES: from_anthropic_messages,
    WireProtocol.OPENAI_RESPONSES: from_openai_responses,
}


def parse_inbound(protocol: WireProtocol, body: dict[str, Any]) -> InboundRequest:
    return _PARSERS[protocol](body)

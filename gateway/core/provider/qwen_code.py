"""Qwen Code provider: device-code OAuth with PKCE, rotating refresh tokens.

Qwen streams its reasoning inline as ``<think>...</think>`` in
``delta.content``. The stream transform moves that text into
``delta.reasoning_content`` so downstream code sees the same shape as
every other provider.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from gateway.conversion.sse import aclose_stream
from gateway.conversion.think_tags import ThinkTagSplitter, split_think_tags
from gateway.core.oauth.constants import (
    OAuthProtocol,
    PkceProtocol,
    QwenEndpoints,
    TokenRefreshDefaults,
)
from gateway.core.oauth.exceptions import OAuthFlowError, TokenError
from gateway.core.oauth.http_client import HttpError
from gateway.core.oauth.pkce import generate_pkce
from gateway.core.provider.base import (
    AuthFlow,
    DeviceAuthorization,
    DevicePollResult,
    DevicePollStatus,
    ProviderClient,
    TokenSet,
    UpstreamStream,
    clean_tool_schemas,
    placeholder_tool,
)

logger = logging.getLogger(__name__)

QWEN_SUPPORTED_PARAMS = frozenset(
    {
        "model",
        "messages",
        "temperature",
        "top_p",
        "max_tokens",
        "stream",
        "tools",
        "tool_choice",
        "presence_penalty",
        "frequency_penalty",
        "n",
        "stop",
        "seed",
        "response_format",
    }
)


class QwenCodeClient(ProviderClient):
    name = "qwen_code"
    display_name = "Qwen Code"
    auth_flow = AuthFlow.DEVICE_CODE
    api_base_url = QwenEndpoints.API_BASE_URL
    supported_params = QWEN_SUPPORTED_PARAMS
    refresh_buffer_seconds = TokenRefreshDefaults.QWEN_BUFFER_SECONDS
    rotating_refresh_tokens = True

    # ------------------------------------------------------------------
    # Device flow
    # ------------------------------------------------------------------

    async def start_device_flow(self) -> DeviceAuthorization:
        pkce = generate_pkce()
        try:
            response = await self.http.post_form(
                QwenEndpoints.DEVICE_CODE_URL,
                {
                    "client_id": QwenEndpoints.CLIENT_ID,
                    "scope": QwenEndpoints.SCOPE,
                    "code_challenge": pkce.code_challenge,
                    "code_challenge_method": PkceProtocol.CODE_CHALLENGE_METHOD,
                },
            )
        except HttpError as e:
            raise OAuthFlowError(f"Device code request failed: {e.status_code} {e.body}") from e

        data = response.json()
        return DeviceAuthorization(
            device_code=data["device_code"],
            user_code=data["user_code"],
            verification_url=data["verification_uri"],
            verification_url_complete=data.get("verification_uri_complete"),
            expires_in=int(data.get("expires_in") or QwenEndpoints.DEFAULT_DEVICE_EXPIRY),
            interval=int(data.get("interval") or QwenEndpoints.DEFAULT_POLL_INTERVAL),
            code_verifier=pkce.code_verifier,
        )

    async def poll_device_flow(self, device_code: str, code_verifier: str) -> DevicePollResult:
        response = await self.http.post_form(
            QwenEndpoints.TOKEN_URL,
            {
                "grant_type": OAuthProtocol.GRANT_TYPE_DEVICE_CODE,
                "device_code": device_code,
                "client_id": QwenEndpoints.CLIENT_ID,
                "code_verifier": code_verifier,
            },
            raise_for_status=False,
        )

        if response.status_code == OAuthProtocol.HTTP_OK:
            tokens = self._token_set(response.json())
            return DevicePollResult(DevicePollStatus.SUCCESS, tokens=tokens)

        if response.status_code == OAuthProtocol.HTTP_BAD_REQUEST:
            try:
                body = response.json()
            except TokenError:
                body = {}
            error = body.get("error")
            if error == OAuthProtocol.ERROR_AUTHORIZATION_PENDING:
                return DevicePollResult(DevicePollStatus.PENDING)
            if error == OAuthProtocol.ERROR_SLOW_DOWN:
                return DevicePollResult(DevicePollStatus.PENDING, slow_down=True)
            if error == OAuthProtocol.ERROR_EXPIRED_TOKEN:
                return DevicePollResult(
                    DevicePollStatus.ERROR, error="Device code expired. Please start again."
                )
            if error == OAuthProtocol.ERROR_ACCESS_DENIED:
                return DevicePollResult(
                    DevicePollStatus.ERROR, error="Authorization was denied by the user."
                )
            return DevicePollResult(
                DevicePollStatus.ERROR, error=body.get("error_description") or error or "unknown"
            )

        return DevicePollResult(
            DevicePollStatus.ERROR,
            error=f"Unexpected error: {response.status_code} {response.text}",
        )

    async def exchange(self, code: str, code_verifier: str | None = None) -> TokenSet:
        # The device code doubles as the authorization code
        result = await self.poll_device_flow(code, code_verifier or "")
        if result.tokens is None:
            raise OAuthFlowError(result.error or "Device authorization is still pending")
        return result.tokens

    async def refresh(self, refresh_token: str) -> TokenSet:
        response = await self.http.post_form(
            QwenEndpoints.TOKEN_URL,
            {
                "grant_type": OAuthProtocol.GRANT_TYPE_REFRESH_TOKEN,
                "refresh_token": refresh_token,
                "client_id": QwenEndpoints.CLIENT_ID,
            },
        )
        return self._token_set(response.json(), previous_refresh_token=refresh_token)

    def _token_set(
        self, body: dict[str, Any], previous_refresh_token: str | None = None
    ) -> TokenSet:
        access_token = body.get("access_token")
        if not access_token:
            raise TokenError("Qwen token response has no access_token")
        email = body.get("email") or None
        extras = {"resource_url": body["resource_url"]} if body.get("resource_url") else {}
        return TokenSet(
            access_token=access_token,
            refresh_token=body.get("refresh_token") or previous_refresh_token,
            expires_at=self._expires_at(body.get("expires_in")),
            identity=email or f"{self.name}-{int(self.clock())}",
            email=email,
            extras=extras,
        )

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def upstream_model(self, model: str) -> str:
        return model.rsplit("/", 1)[-1]

    def build_payload(self, request: dict[str, Any], stream: bool) -> dict[str, Any]:
        payload = super().build_payload(request, stream)
        if stream:
            payload["stream_options"] = {"include_usage": True}

        tools = payload.get("tools")
        if isinstance(tools, list):
            if tools:
                payload["tools"] = clean_tool_schemas(tools)
            elif stream:
                # Streams without any tool come back corrupted
                payload["tools"] = [placeholder_tool("do_not_call_me", "Do not call this tool.")]
        return payload

    def transform_response(self, body: dict[str, Any]) -> dict[str, Any]:
        for choice in body.get("choices") or []:
            message = (choice.get("message") if isinstance(choice, dict) else None) or {}
            content = message.get("content")
            if isinstance(content, str):
                text, reasoning = split_think_tags(content)
                message["content"] = text or None
                if reasoning:
                    previous = message.get("reasoning_content") or ""
                    message["reasoning_content"] = previous + reasoning
        return body

    def transform_stream(self, lines: UpstreamStream) -> UpstreamStream:
        return _split_think_stream(lines)


async def _split_think_stream(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    splitter = ThinkTagSplitter()
    try:
        async for line in lines:
            if not line.startswith("data:"):
                yield line
                continue
            data = line[5:].strip()
            if data == "[DONE]":
                tail = _flush_line(splitter)
                if tail:
                    yield tail
                    yield ""
                yield line
                continue
            try:
                chunk = json.loads(data)
            except json.JSONDecodeError:
                yield line
                continue
            if not isinstance(chunk, dict):
                yield line
                continue
            for choice in chunk.get("choices") or []:
                delta = choice.get("delta") if isinstance(choice, dict) else None
                if not isinstance(delta, dict) or not isinstance(delta.get("content"), str):
                    continue
                content, reasoning = splitter.feed(delta["content"])
                delta["content"] = content or None
                if reasoning:
                    delta["reasoning_content"] = (delta.get("reasoning_content") or "") + reasoning
            yield "data: " + json.dumps(chunk, ensure_ascii=False)

        tail = _flush_line(splitter)
        if tail:
            yield tail
            yield ""
    finally:
        await aclose_stream(lines)


def _flush_line(splitter: ThinkTagSplitter) -> str | None:
    content, reasoning = splitter.flush()
    if not content and not reasoning:
        return None
    delta: dict[str, Any] = {}
    if content:
        delta["content"] = content
    if reasoning:
        delta["reasoning_content"] = reasoning
    return "data: " + json.dumps({"choices": [{"index": 0, "delta": delta}]}, ensure_ascii=False)

"""Common contract every upstream provider client implements.

The orchestrator and lifecycle manager depend only on ProviderClient. Each
concrete client encodes its own auth flow, the request fields its upstream
tolerates and any response quirks.
"""

from __future__ import annotations

import abc
import copy
import json
import logging
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from gateway.core.errors import UpstreamError
from gateway.core.oauth.constants import TokenRefreshDefaults
from gateway.core.oauth.exceptions import OAuthFlowError
from gateway.core.oauth.http_client import AsyncHttpClient
from gateway.core.oauth.pkce import PkceCodes

logger = logging.getLogger(__name__)

UpstreamStream = AsyncIterator[str]


class AuthFlow(str, Enum):
    REDIRECT = "redirect"
    DEVICE_CODE = "device_code"
    API_KEY = "api_key"


@dataclass(frozen=True)
class TokenSet:
    """Plaintext tokens as returned by a provider (never persisted as-is)."""

    access_token: str
    refresh_token: str | None
    expires_at: float | None
    identity: str
    email: str | None = None
    api_key: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Credential:
    """Decrypted, currently valid credential handed to ``call``."""

    access_token: str
    api_key: str | None = None
    account_id: str | None = None
    stale: bool = False


@dataclass(frozen=True)
class DeviceAuthorization:
    device_code: str
    user_code: str
    verification_url: str
    verification_url_complete: str | None
    expires_in: int
    interval: int
    code_verifier: str


class DevicePollStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class DevicePollResult:
    status: DevicePollStatus
    tokens: TokenSet | None = None
    error: str | None = None
    slow_down: bool = False


class ProviderClient(abc.ABC):
    """One instance per upstream provider.

    Subclasses set the class attributes and implement ``refresh``; redirect
    and device-code providers also implement the matching acquisition
    methods. ``call`` is shared: it strips unsupported fields, posts to the
    OpenAI-compatible chat endpoint and returns either the decoded JSON body
    or an async iterator over raw SSE lines. HTTP errors are raised as
    UpstreamError before any stream is returned.
    """

    name: str
    display_name: str
    auth_flow: AuthFlow
    api_base_url: str
    supported_params: frozenset[str]
    refresh_buffer_seconds: int = TokenRefreshDefaults.DEFAULT_BUFFER_SECONDS
    rotating_refresh_tokens: bool = False

    def __init__(self, http: AsyncHttpClient, clock: Callable[[], float] = time.time) -> None:
        self.http = http
        self.clock = clock

    # ------------------------------------------------------------------
    # Credential acquisition
    # ------------------------------------------------------------------

    def build_authorize_url(self, state: str, pkce: PkceCodes | None = None) -> str:
        raise OAuthFlowError(f"{self.display_name} does not support redirect login")

    async def start_device_flow(self) -> DeviceAuthorization:
        raise OAuthFlowError(f"{self.display_name} does not support device login")

    async def poll_device_flow(self, device_code: str, code_verifier: str) -> DevicePollResult:
        raise OAuthFlowError(f"{self.display_name} does not support device login")

    async def exchange(self, code: str, code_verifier: str | None = None) -> TokenSet:
        raise OAuthFlowError(f"{self.display_name} does not support code exchange")

    def token_from_api_key(self, api_key: str) -> TokenSet:
        raise OAuthFlowError(f"{self.display_name} does not accept API keys")

    @abc.abstractmethod
    async def refresh(self, refresh_token: str) -> TokenSet:
        """Exchange a refresh token for a new token set."""

    def _expires_at(self, expires_in: Any) -> float:
        try:
            seconds = float(expires_in)
        except (TypeError, ValueError):
            seconds = TokenRefreshDefaults.DEFAULT_TOKEN_LIFETIME_SECONDS
        return self.clock() + seconds

    # ------------------------------------------------------------------
    # Chat requests
    # ------------------------------------------------------------------

    def bearer_for(self, credential: Credential) -> str:
        return credential.access_token

    def upstream_model(self, model: str) -> str:
        return model

    async def list_upstream_models(self, credential: Credential) -> list[str] | None:
        """Model ids the upstream advertises, or None when it publishes no listing."""
        return None

    def build_payload(self, request: dict[str, Any], stream: bool) -> dict[str, Any]:
        """Keep only the fields the upstream accepts, then apply quirks."""
        payload = {
            key: value
            for key, value in request.items()
            if key in self.supported_params and value is not None
        }
        payload["model"] = self.upstream_model(request["model"])
        payload["stream"] = stream
        return payload

    def request_headers(self, bearer: str, stream: bool) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {bearer}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream" if stream else "application/json",
        }

    def transform_response(self, body: dict[str, Any]) -> dict[str, Any]:
        return body

    def transform_stream(self, lines: UpstreamStream) -> UpstreamStream:
        return lines

    async def call(
        self, credential: Credential, request: dict[str, Any], stream: bool
    ) -> dict[str, Any] | UpstreamStream:
        payload = self.build_payload(request, stream)
        headers = self.request_headers(self.bearer_for(credential), stream)
        url = f"{self.api_base_url}/chat/completions"
        client = self.http.client

        if not stream:
            try:
                response = await client.post(url, json=payload, headers=headers)
            except httpx.TimeoutException as e:
                raise UpstreamError(
                    f"{self.display_name} request timed out", status_code=504, provider=self.name
                ) from e
            except httpx.TransportError as e:
                raise UpstreamError(
                    f"{self.display_name} connection failed: {e}",
                    status_code=502,
                    provider=self.name,
                ) from e
            if not response.is_success:
                raise self._upstream_error(response.status_code, response.text)
            try:
                body = response.json()
            except json.JSONDecodeError as e:
                raise UpstreamError(
                    f"{self.display_name} returned an invalid response", provider=self.name
                ) from e
            return self.transform_response(body)

        http_request = client.build_request(
            "POST", url, json=payload, headers=headers, timeout=self.http.stream_timeout()
        )
        try:
            response = await client.send(http_request, stream=True)
        except httpx.TimeoutException as e:
            raise UpstreamError(
                f"{self.display_name} request timed out", status_code=504, provider=self.name
            ) from e
        except httpx.TransportError as e:
            raise UpstreamError(
                f"{self.display_name} connection failed: {e}", status_code=502, provider=self.name
            ) from e
        if not response.is_success:
            try:
                text = (await response.aread()).decode("utf-8", errors="replace")
            finally:
                await response.aclose()
            raise self._upstream_error(response.status_code, text)
        return self.transform_stream(self._iter_lines(response))

    async def _iter_lines(self, response: httpx.Response) -> UpstreamStream:
        # Closing the response here releases the connection on completion,
        # failure and cancellation alike.
        try:
            async for line in response.aiter_lines():
                yield line
        except httpx.TransportError as e:
            raise UpstreamError(
                f"{self.display_name} stream interrupted: {e}", status_code=502, provider=self.name
            ) from e
        finally:
            await response.aclose()

    def _upstream_error(self, status_code: int, text: str) -> UpstreamError:
        logger.warning("%s returned HTTP %d: %s", self.display_name, status_code, text[:200])
        return UpstreamError(
            f"{self.display_name} API error: {text}", status_code=status_code, provider=self.name
        )


def clean_tool_schemas(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Drop ``strict`` and ``additionalProperties`` everywhere in tool schemas.

    Some upstreams reject either keyword with a 400. Input is not mutated.
    """
    cleaned = []
    for tool in tools:
        tool = copy.deepcopy(tool)
        function = tool.get("function")
        if isinstance(function, dict):
            function.pop("strict", None)
            if isinstance(function.get("parameters"), dict):
                _clean_schema(function["parameters"])
        cleaned.append(tool)
    return cleaned


def _clean_schema(schema: dict[str, Any]) -> None:
    schema.pop("strict", None)
    schema.pop("additionalProperties", None)
    for prop in (schema.get("properties") or {}).values():
        if isinstance(prop, dict):
            _clean_schema(prop)
    if isinstance(schema.get("items"), dict):
        _clean_schema(schema["items"])
    for key in ("anyOf", "oneOf", "allOf"):
        for sub in schema.get(key) or []:
            if isinstance(sub, dict):
                _clean_schema(sub)


def placeholder_tool(name: str, description: str) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {"type": "object", "properties": {}},
        },
    }

"""iFlow provider: redirect OAuth, API calls authenticated with the account's API key.

The OAuth access token is only used to fetch user info. The ``apiKey`` in
that response is what chat requests send as the bearer token, so both
exchange and refresh re-read it.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import urlencode

from gateway.core.oauth.constants import IflowEndpoints, OAuthProtocol, TokenRefreshDefaults
from gateway.core.oauth.exceptions import ConfigurationError, TokenError
from gateway.core.oauth.http_client import AsyncHttpClient
from gateway.core.oauth.pkce import PkceCodes
from gateway.core.provider.base import (
    AuthFlow,
    Credential,
    ProviderClient,
    TokenSet,
    clean_tool_schemas,
    placeholder_tool,
)

logger = logging.getLogger(__name__)

IFLOW_SUPPORTED_PARAMS = frozenset(
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
        "reasoning_effort",
        "reasoning",
    }
)


class IflowClient(ProviderClient):
    name = "iflow"
    display_name = "iFlow"
    auth_flow = AuthFlow.REDIRECT
    api_base_url = IflowEndpoints.API_BASE_URL
    supported_params = IFLOW_SUPPORTED_PARAMS
    refresh_buffer_seconds = TokenRefreshDefaults.IFLOW_BUFFER_SECONDS
    rotating_refresh_tokens = True

    def __init__(
        self,
        http: AsyncHttpClient,
        client_id: str,
        client_secret: str | None,
        redirect_uri: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(http, clock)
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def _basic_auth(self) -> str:
        if not self.client_secret:
            raise ConfigurationError("IFLOW_CLIENT_SECRET is required for iFlow OAuth")
        raw = f"{self.client_id}:{self.client_secret}".encode()
        return "Basic " + base64.b64encode(raw).decode()

    def build_authorize_url(self, state: str, pkce: PkceCodes | None = None) -> str:
        # iFlow's authorize endpoint does not take a PKCE challenge
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": IflowEndpoints.SCOPE,
            "state": state,
        }
        return f"{IflowEndpoints.AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange(self, code: str, code_verifier: str | None = None) -> TokenSet:
        data = {
            "grant_type": OAuthProtocol.GRANT_TYPE_AUTH_CODE,
            "code": code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
            "client_secret": self.client_secret or "",
        }
        response = await self.http.post_form(
            IflowEndpoints.TOKEN_URL, data, headers={"Authorization": self._basic_auth()}
        )
        return await self._token_set(response.json())

    async def refresh(self, refresh_token: str) -> TokenSet:
        data = {
            "grant_type": OAuthProtocol.GRANT_TYPE_REFRESH_TOKEN,
            "refresh_token": refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret or "",
        }
        response = await self.http.post_form(
            IflowEndpoints.TOKEN_URL, data, headers={"Authorization": self._basic_auth()}
        )
        body = response.json()
        # Refresh responses are sometimes wrapped as {"data": {...}}
        if isinstance(body.get("data"), dict):
            body = body["data"]
        return await self._token_set(body, previous_refresh_token=refresh_token)

    async def _token_set(
        self, body: dict[str, Any], previous_refresh_token: str | None = None
    ) -> TokenSet:
        access_token = body.get("access_token")
        if not access_token:
            raise TokenError("iFlow token response has no access_token")

        api_key, email = await self.fetch_user_info(access_token)
        identity = email or f"iflow-{hashlib.sha256(api_key.encode()).hexdigest()[:12]}"
        return TokenSet(
            access_token=access_token,
            refresh_token=body.get("refresh_token") or previous_refresh_token,
            expires_at=self._expires_at(body.get("expires_in")),
            identity=identity,
            email=email or None,
            api_key=api_key,
        )

    async def fetch_user_info(self, access_token: str) -> tuple[str, str]:
        """Return ``(api_key, email_or_phone)`` for an access token."""
        result = await self.http.get_json(
            IflowEndpoints.USER_INFO_URL, params={"accessToken": access_token}
        )
        if not result.get("success"):
            raise TokenError("iFlow user info request was not successful")
        data = result.get("data") or {}
        api_key = (data.get("apiKey") or "").strip()
        if not api_key:
            raise TokenError("Missing API key in iFlow user info response")
        email = (data.get("email") or data.get("phone") or "").strip()
        return api_key, email

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def bearer_for(self, credential: Credential) -> str:
        return credential.api_key or credential.access_token

    def upstream_model(self, model: str) -> str:
        return model.rsplit("/", 1)[-1]

    def request_headers(self, bearer: str, stream: bool) -> dict[str, str]:
        headers = super().request_headers(bearer, stream)
        headers["User-Agent"] = IflowEndpoints.USER_AGENT
        return headers

    def build_payload(self, request: dict[str, Any], stream: bool) -> dict[str, Any]:
        payload = super().build_payload(request, stream)

        reasoning = payload.pop("reasoning", None)
        effort = reasoning.get("effort") if isinstance(reasoning, dict) else None
        effort = effort or payload.pop("reasoning_effort", None)
        if effort and effort != "none":
            payload["reasoning_effort"] = effort

        tools = payload.get("tools")
        if isinstance(tools, list):
            if tools:
                payload["tools"] = clean_tool_schemas(tools)
            elif stream:
                payload["tools"] = [
                    placeholder_tool("noop", "Placeholder tool to stabilise streaming")
                ]
        return payload

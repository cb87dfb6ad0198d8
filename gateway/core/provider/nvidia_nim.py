"""NVIDIA NIM provider: static API key, upstream model ids from an allow-map."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from gateway.core.models.catalog import NVIDIA_NIM_MODEL_MAP
from gateway.core.oauth.constants import NvidiaNimEndpoints, TokenRefreshDefaults
from gateway.core.oauth.exceptions import ValidationError
from gateway.core.oauth.http_client import AsyncHttpClient
from gateway.core.provider.base import AuthFlow, Credential, ProviderClient, TokenSet

logger = logging.getLogger(__name__)

NVIDIA_SUPPORTED_PARAMS = frozenset(
    {
        "model",
        "messages",
        "temperature",
        "top_p",
        "max_tokens",
        "stream",
        "stream_options",
        "tools",
        "tool_choice",
        "presence_penalty",
        "frequency_penalty",
        "stop",
        "seed",
        "response_format",
    }
)


class NvidiaNimClient(ProviderClient):
    name = "nvidia_nim"
    display_name = "NVIDIA NIM"
    auth_flow = AuthFlow.API_KEY
    api_base_url = NvidiaNimEndpoints.API_BASE_URL
    supported_params = NVIDIA_SUPPORTED_PARAMS

    def __init__(
        self,
        http: AsyncHttpClient,
        model_map: Mapping[str, str] = NVIDIA_NIM_MODEL_MAP,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(http, clock)
        self.model_map = dict(model_map)

    def token_from_api_key(self, api_key: str) -> TokenSet:
        api_key = api_key.strip()
        if not api_key:
            raise ValidationError("api_key", api_key, "API key must not be empty")
        return TokenSet(
            access_token=api_key,
            refresh_token=None,
            expires_at=TokenRefreshDefaults.API_KEY_EXPIRY,
            identity=f"{self.name}-{api_key[-6:]}",
            api_key=api_key,
        )

    async def refresh(self, refresh_token: str) -> TokenSet:
        # API keys do not expire; refreshing hands back the same key
        return self.token_from_api_key(refresh_token)

    def upstream_model(self, model: str) -> str:
        prefix = f"{self.name}/"
        if model.startswith(prefix):
            model = model[len(prefix) :]
        return self.model_map.get(model, model)

    async def list_upstream_models(self, credential: Credential) -> list[str]:
        """Model ids advertised by ``GET /models``."""
        body: dict[str, Any] = await self.http.get_json(
            f"{self.api_base_url}/models",
            headers={"Authorization": f"Bearer {self.bearer_for(credential)}"},
        )
        ids = [item["id"] for item in body.get("data") or [] if item.get("id")]
        logger.debug("NVIDIA NIM lists %d models", len(ids))
        return ids

"""Registry of upstream provider clients, keyed by provider name."""

from __future__ import annotations

from typing import TYPE_CHECKING

from gateway.core.oauth.exceptions import ValidationError
from gateway.core.oauth.http_client import AsyncHttpClient
from gateway.core.provider.base import ProviderClient

if TYPE_CHECKING:
    from gateway.core.config import Config


class ProviderRegistry:
    """Central registry for provider clients.

    Responsibilities:
    - Store and retrieve clients by provider name
    - List all registered providers
    """

    def __init__(self) -> None:
        self._clients: dict[str, ProviderClient] = {}

    def register(self, client: ProviderClient) -> None:
        self._clients[client.name] = client

    def get(self, provider_name: str) -> ProviderClient:
        """Get a client by name.

        Raises:
            ValidationError: No client is registered under that name
        """
        client = self._clients.get(provider_name)
        if client is None:
            raise ValidationError("provider", provider_name, "unknown provider")
        return client

    def find(self, provider_name: str) -> ProviderClient | None:
        return self._clients.get(provider_name)

    def list_all(self) -> dict[str, ProviderClient]:
        return self._clients.copy()

    def exists(self, provider_name: str) -> bool:
        return provider_name in self._clients

    def __contains__(self, provider_name: object) -> bool:
        return provider_name in self._clients

    def clear(self) -> None:
        """Clear all registered providers. Primarily useful for testing."""
        self._clients.clear()


def build_default_registry(http: AsyncHttpClient, config: Config) -> ProviderRegistry:
    """Register the iflow, qwen_code and nvidia_nim clients on one shared HTTP pool."""
    from gateway.core.provider.iflow import IflowClient
    from gateway.core.provider.nvidia_nim import NvidiaNimClient
    from gateway.core.provider.qwen_code import QwenCodeClient

    registry = ProviderRegistry()
    registry.register(
        IflowClient(
            http,
            client_id=config.iflow_client_id,
            client_secret=config.iflow_client_secret,
            redirect_uri=config.iflow_redirect_uri,
        )
    )
    registry.register(QwenCodeClient(http))
    registry.register(NvidiaNimClient(http))
    return registry

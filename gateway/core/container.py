"""Service container: builds and owns every long-lived gateway component.

The FastAPI app, the CLI and tests all obtain their services from one
Container so the wiring lives in a single place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from gateway.core.accounts.access import GatewayKeyring, ModelAccessPolicy
from gateway.core.accounts.cipher import FernetTokenCipher, TokenCipher
from gateway.core.accounts.store import (
    CredentialStore,
    InMemoryCredentialStore,
    JsonFileCredentialStore,
)
from gateway.core.accounts.usage import LoggingUsageSink, UsageSink
from gateway.core.background import BackgroundTasks
from gateway.core.config import Config
from gateway.core.errors import GatewayError
from gateway.core.models.registry import ModelRegistry
from gateway.core.oauth.exceptions import OAuthError
from gateway.core.oauth.flows import AccountLinker
from gateway.core.oauth.http_client import AsyncHttpClient, HttpClientConfig
from gateway.core.oauth.lifecycle import CredentialLifecycleManager
from gateway.core.provider.failure_policy import (
    FailurePolicy,
    HealthTrackingFailurePolicy,
    NoopFailurePolicy,
)
from gateway.core.provider.load_balancer import LoadBalancer
from gateway.core.provider.registry import ProviderRegistry, build_default_registry

logger = logging.getLogger(__name__)


@dataclass
class Container:
    config: Config
    http: AsyncHttpClient
    models: ModelRegistry
    providers: ProviderRegistry
    cipher: TokenCipher
    store: CredentialStore
    lifecycle: CredentialLifecycleManager
    balancer: LoadBalancer
    usage_sink: UsageSink
    keyring: GatewayKeyring
    access_policy: ModelAccessPolicy
    linker: AccountLinker
    background: BackgroundTasks

    async def sync_model_catalogs(self) -> dict[str, list[str]]:
        """Narrow each dynamic provider to the models its upstream lists.

        The first active linked account of a provider is used to ask for the
        listing. A provider with no usable account, or whose listing fails,
        keeps its full catalog and is left out of the result.
        """
        accounts = await self.store.list_all(active_only=True)
        synced: dict[str, list[str]] = {}
        for name in self.models.dynamic_providers():
            account = next((a for a in accounts if a.provider == name), None)
            if account is None or name not in self.providers:
                logger.debug("No linked %s account; keeping its full catalog", name)
                continue
            try:
                credential = await self.lifecycle.get_valid_token(account)
                upstream_ids = await self.providers.get(name).list_upstream_models(credential)
            except (GatewayError, OAuthError) as e:
                logger.warning("Could not list %s models, keeping full catalog: %s", name, e)
                continue
            if upstream_ids is None:
                continue
            synced[name] = self.models.sync_dynamic_catalog(name, upstream_ids)
            logger.info("Synced %s catalog: %d model(s)", name, len(synced[name]))
        return synced

    async def aclose(self) -> None:
        await self.background.drain()
        await self.http.aclose()


def build_failure_policy(name: str, store: CredentialStore) -> FailurePolicy:
    if name == "health":
        return HealthTrackingFailurePolicy(store)
    return NoopFailurePolicy()


def build_container(
    config: Config,
    *,
    http: AsyncHttpClient | None = None,
    store: CredentialStore | None = None,
    cipher: TokenCipher | None = None,
    providers: ProviderRegistry | None = None,
    usage_sink: UsageSink | None = None,
) -> Container:
    """Wire the default services from ``config``; any piece may be injected.

    Raises:
        ConfigurationError: GATEWAY_SECRET is unset and no cipher was injected
    """
    http = http or AsyncHttpClient(
        HttpClientConfig(
            timeout=config.request_timeout,
            stream_connect_timeout=config.streaming_connect_timeout,
            stream_read_timeout=config.streaming_read_timeout,
        )
    )
    cipher = cipher or FernetTokenCipher(config.gateway_secret or "")
    if store is None:
        if config.accounts_file:
            store = JsonFileCredentialStore(config.accounts_file)
        else:
            logger.warning("ACCOUNTS_FILE not set; linked accounts are kept in memory only")
            store = InMemoryCredentialStore()

    models = ModelRegistry()
    providers = providers or build_default_registry(http, config)
    background = BackgroundTasks()
    lifecycle = CredentialLifecycleManager(store, providers, cipher)
    balancer = LoadBalancer(
        store,
        models,
        failure_policy=build_failure_policy(config.failure_policy, store),
        background=background,
    )

    return Container(
        config=config,
        http=http,
        models=models,
        providers=providers,
        cipher=cipher,
        store=store,
        lifecycle=lifecycle,
        balancer=balancer,
        usage_sink=usage_sink or LoggingUsageSink(),
        keyring=GatewayKeyring.from_mapping(config.gateway_api_keys),
        access_policy=ModelAccessPolicy(models, config.disabled_models),
        linker=AccountLinker(store, providers, lifecycle),
        background=background,
    )

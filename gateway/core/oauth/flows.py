"""Account linking: redirect OAuth, device-code OAuth and API-key registration.

Each flow ends in the same upsert: an existing (user, provider, identity)
row is refreshed and reactivated, otherwise a new row is created with a
generated display name. Pending redirect states and device codes live in
memory only and expire after ``PENDING_AUTH_TTL_SECONDS``.

Example:
    >>> linker = AccountLinker(store, providers, lifecycle)
    >>> url, state = linker.begin_authorization("u1", "iflow")
    >>> result = await linker.complete_authorization("u1", callback_url)
    >>> result.is_new_account
    True
"""

from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

from gateway.core.accounts.account import HealthStatus, ProviderAccount, new_account_id
from gateway.core.accounts.store import CredentialStore
from gateway.core.oauth.constants import TokenRefreshDefaults
from gateway.core.oauth.exceptions import OAuthFlowError, ValidationError
from gateway.core.oauth.lifecycle import CredentialLifecycleManager
from gateway.core.oauth.pkce import PkceCodes, generate_pkce, generate_state
from gateway.core.provider.base import (
    AuthFlow,
    DeviceAuthorization,
    DevicePollStatus,
    ProviderClient,
    TokenSet,
)
from gateway.core.provider.registry import ProviderRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingAuthorization:
    user_id: str
    provider: str
    code_verifier: str
    created_at: float


@dataclass(frozen=True)
class LinkResult:
    account: ProviderAccount
    is_new_account: bool


@dataclass(frozen=True)
class DeviceLinkResult:
    status: DevicePollStatus
    link: LinkResult | None = None
    error: str | None = None
    slow_down: bool = False


class AccountLinker:
    def __init__(
        self,
        store: CredentialStore,
        providers: ProviderRegistry,
        lifecycle: CredentialLifecycleManager,
        clock: Callable[[], float] = time.time,
        pending_ttl: float = TokenRefreshDefaults.PENDING_AUTH_TTL_SECONDS,
    ) -> None:
        self.store = store
        self.providers = providers
        self.lifecycle = lifecycle
        self.clock = clock
        self.pending_ttl = pending_ttl
        # keyed by OAuth state (redirect) or device code (device flow)
        self._pending: dict[str, PendingAuthorization] = {}

    # ------------------------------------------------------------------
    # Pending state
    # ------------------------------------------------------------------

    def _client(self, provider: str, flow: AuthFlow) -> ProviderClient:
        client = self.providers.get(provider)
        if client.auth_flow is not flow:
            raise ValidationError(
                "provider", provider, f"does not support {flow.value.replace('_', ' ')} login"
            )
        return client

    def _purge_expired(self) -> None:
        cutoff = self.clock() - self.pending_ttl
        for key in [k for k, p in self._pending.items() if p.created_at < cutoff]:
            del self._pending[key]

    def _take_pending(self, key: str, user_id: str, what: str) -> PendingAuthorization:
        self._purge_expired()
        pending = self._pending.get(key)
        if pending is None or pending.user_id != user_id:
            raise OAuthFlowError(f"Unknown or expired {what}")
        return pending

    # ------------------------------------------------------------------
    # Redirect flow
    # ------------------------------------------------------------------

    def begin_authorization(self, user_id: str, provider: str) -> tuple[str, str]:
        """Return ``(authorize_url, state)`` for a redirect-flow provider."""
        client = self._client(provider, AuthFlow.REDIRECT)
        self._purge_expired()
        pkce: PkceCodes = generate_pkce()
        state = generate_state()
        self._pending[state] = PendingAuthorization(
            user_id, provider, pkce.code_verifier, self.clock()
        )
        return client.build_authorize_url(state, pkce), state

    async def complete_authorization(self, user_id: str, callback_url: str) -> LinkResult:
        """Exchange the code carried by ``callback_url`` and upsert the account.

        Raises:
            OAuthFlowError: Provider returned an error, or the state is unknown
        """
        query = parse_qs(urlparse(callback_url).query)
        if "error" in query:
            description = query.get("error_description", query["error"])[0]
            raise OAuthFlowError(f"Authorization failed: {description}")
        code = query.get("code", [""])[0]
        state = query.get("state", [""])[0]
        if not code or not state:
            raise OAuthFlowError("Callback URL is missing code or state")

        pending = self._take_pending(state, user_id, "OAuth state")
        del self._pending[state]
        client = self.providers.get(pending.provider)
        tokens = await client.exchange(code, pending.code_verifier)
        return await self.upsert(user_id, client, tokens)

    # ------------------------------------------------------------------
    # Device flow
    # ------------------------------------------------------------------

    async def begin_device_authorization(
        self, user_id: str, provider: str
    ) -> DeviceAuthorization:
        client = self._client(provider, AuthFlow.DEVICE_CODE)
        self._purge_expired()
        device = await client.start_device_flow()
        self._pending[device.device_code] = PendingAuthorization(
            user_id, provider, device.code_verifier, self.clock()
        )
        return device

    async def poll_device_authorization(
        self, user_id: str, device_code: str, identity: str | None = None
    ) -> DeviceLinkResult:
        """Poll once. On success the account is upserted under ``identity`` when given."""
        pending = self._take_pending(device_code, user_id, "device code")
        client = self.providers.get(pending.provider)
        result = await client.poll_device_flow(device_code, pending.code_verifier)

        if result.status is DevicePollStatus.PENDING:
            return DeviceLinkResult(DevicePollStatus.PENDING, slow_down=result.slow_down)

        del self._pending[device_code]
        if result.status is DevicePollStatus.ERROR or result.tokens is None:
            logger.info("Device authorization for %s failed: %s", pending.provider, result.error)
            return DeviceLinkResult(DevicePollStatus.ERROR, error=result.error)

        tokens = result.tokens
        if identity:
            tokens = dataclasses.replace(tokens, identity=identity)
        link = await self.upsert(user_id, client, tokens)
        return DeviceLinkResult(DevicePollStatus.SUCCESS, link=link)

    # ------------------------------------------------------------------
    # API keys
    # ------------------------------------------------------------------

    async def register_api_key(
        self, user_id: str, provider: str, api_key: str, name: str | None = None
    ) -> LinkResult:
        client = self._client(provider, AuthFlow.API_KEY)
        return await self.upsert(user_id, client, client.token_from_api_key(api_key), name)

    # ------------------------------------------------------------------
    # Upsert
    # ------------------------------------------------------------------

    async def upsert(
        self,
        user_id: str,
        client: ProviderClient,
        tokens: TokenSet,
        name: str | None = None,
    ) -> LinkResult:
        patch = self.lifecycle.encrypt_tokens(tokens)
        existing = await self.store.find_by_identity(user_id, client.name, tokens.identity)

        if existing is not None:
            patch.update(
                is_active=True,
                health=HealthStatus.ACTIVE,
                consecutive_errors=0,
                last_error=None,
                last_error_at=None,
                extras={**existing.extras, **tokens.extras},
            )
            if name:
                patch["name"] = name
            account = await self.store.update_account(existing.id, patch)
            logger.info("Re-linked %s account %s for user %s", client.name, account.id, user_id)
            return LinkResult(account, is_new_account=False)

        if not name:
            owned = await self.store.find_accounts(user_id, [client.name], active_only=False)
            name = f"{client.display_name} {len(owned) + 1}"
        account = ProviderAccount(
            id=new_account_id(),
            user_id=user_id,
            provider=client.name,
            name=name,
            identity=tokens.identity,
            created_at=self.clock(),
            extras=dict(tokens.extras),
            **patch,
        )
        account = await self.store.create_account(account)
        logger.info("Linked new %s account %s for user %s", client.name, account.id, user_id)
        return LinkResult(account, is_new_account=True)

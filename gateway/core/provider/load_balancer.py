"""Account pool and round-robin load balancer."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Collection
from typing import Any

from gateway.core.accounts.account import ProviderAccount
from gateway.core.accounts.store import CredentialStore
from gateway.core.background import BackgroundTasks
from gateway.core.models.registry import ModelRegistry
from gateway.core.oauth.exceptions import StorageError
from gateway.core.provider.failure_policy import FailurePolicy, NoopFailurePolicy
from gateway.core.provider.rotation import InMemoryRotationState, RotationState

logger = logging.getLogger(__name__)


class LoadBalancer:
    """Pick which of a user's accounts serves a request.

    Candidates are the user's active accounts for every provider able to
    serve the model (or the one explicit provider), in creation order.
    Selection is round robin per routing key. The request counter and
    last-used timestamp of the chosen account are updated in the background
    so the response path never waits on the store.
    """

    def __init__(
        self,
        store: CredentialStore,
        registry: ModelRegistry,
        rotation: RotationState | None = None,
        failure_policy: FailurePolicy | None = None,
        background: BackgroundTasks | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.registry = registry
        self.rotation = rotation or InMemoryRotationState()
        self.failure_policy = failure_policy or NoopFailurePolicy()
        self.background = background or BackgroundTasks()
        self.clock = clock

    @staticmethod
    def routing_key(user_id: str, model: str, provider: str | None = None) -> str:
        if provider:
            return f"{user_id}:{provider}:{model}"
        return f"{user_id}:{model}"

    async def next_account(
        self,
        user_id: str,
        model: str,
        provider: str | None = None,
        exclude: Collection[str] = (),
    ) -> ProviderAccount | None:
        """Return the next account for ``model`` or None if nothing is eligible."""
        canonical = self.registry.resolve_alias(model)
        if provider:
            providers = [provider] if self.registry.is_supported_by(canonical, provider) else []
        else:
            providers = self.registry.providers_for(canonical)
        if not providers:
            logger.debug("No provider serves model %s", model)
            return None

        key = self.routing_key(user_id, canonical, provider)
        return await self._select(key, user_id, providers, exclude)

    async def next_account_for_provider(
        self, user_id: str, provider: str, exclude: Collection[str] = ()
    ) -> ProviderAccount | None:
        """Same rotation restricted to one provider, under its own key."""
        key = f"{user_id}:provider:{provider}"
        return await self._select(key, user_id, [provider], exclude)

    async def _select(
        self,
        key: str,
        user_id: str,
        providers: list[str],
        exclude: Collection[str],
    ) -> ProviderAccount | None:
        candidates = [
            account
            for account in await self.store.find_accounts(user_id, providers, active_only=True)
            if account.id not in exclude
        ]
        if not candidates:
            return None

        idx = await self.rotation.next_index(key, len(candidates))
        account = candidates[idx]
        logger.debug(
            "Routing key %s -> account %s (%d/%d)", key, account.id, idx + 1, len(candidates)
        )
        self.background.spawn(self.record_use(account.id), name=f"touch-{account.id}")
        return account

    async def record_use(self, account_id: str) -> None:
        """Bump request_count and last_used_at. Store errors are logged only."""
        now = self.clock()
        try:
            await self.store.update_account(
                account_id,
                lambda account: {"request_count": account.request_count + 1, "last_used_at": now},
            )
        except StorageError as e:
            logger.warning("Failed to update usage counters for %s: %s", account_id, e)

    # ------------------------------------------------------------------
    # Failure hooks
    # ------------------------------------------------------------------

    async def mark_failed(self, account_id: str, status_code: int = 0, message: str = "") -> None:
        await self.failure_policy.on_failure(account_id, status_code, message)

    async def mark_succeeded(self, account_id: str) -> None:
        await self.failure_policy.on_success(account_id)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    async def get_account_stats(self, user_id: str) -> dict[str, Any]:
        accounts = await self.store.find_accounts(user_id, active_only=False)
        by_provider: dict[str, dict[str, int]] = {}
        for account in accounts:
            stats = by_provider.setdefault(
                account.provider, {"total": 0, "active": 0, "requests": 0}
            )
            stats["total"] += 1
            stats["active"] += int(account.is_active)
            stats["requests"] += account.request_count
        return {
            "total_accounts": len(accounts),
            "active_accounts": sum(1 for account in accounts if account.is_active),
            "total_requests": sum(account.request_count for account in accounts),
            "by_provider": by_provider,
        }

    async def get_accounts_by_provider(self, user_id: str) -> dict[str, list[ProviderAccount]]:
        grouped: dict[str, list[ProviderAccount]] = {}
        for account in await self.store.find_accounts(user_id, active_only=False):
            grouped.setdefault(account.provider, []).append(account)
        return grouped

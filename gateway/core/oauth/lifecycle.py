"""Credential lifecycle management.

CredentialLifecycleManager turns a stored ProviderAccount into a usable
Credential, refreshing the access token when it is inside the provider's
refresh buffer. Two rules matter most:

* Refresh is single-flight per account. Concurrent callers wait on one lock
  and re-read the account after acquiring it, so only the first performs
  the network refresh.
* New tokens are persisted before they are returned. With rotating refresh
  tokens the old refresh token is dead the moment the new one is issued, so
  handing out an access token whose companion refresh token never reached
  the store would orphan the account on the next expiry.

Example:
    >>> lifecycle = CredentialLifecycleManager(store, providers, cipher)
    >>> credential = await lifecycle.get_valid_token(account)
    >>> credential.access_token
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from gateway.core.accounts.account import ProviderAccount
from gateway.core.accounts.cipher import TokenCipher
from gateway.core.accounts.store import CredentialStore
from gateway.core.errors import AuthExpired
from gateway.core.oauth.constants import TokenRefreshDefaults
from gateway.core.oauth.exceptions import OAuthError, StorageError, TokenError
from gateway.core.provider.base import AuthFlow, Credential, ProviderClient, TokenSet
from gateway.core.provider.registry import ProviderRegistry

_logger = logging.getLogger(__name__)


class RefreshStatus(str, Enum):
    REFRESHED = "refreshed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RefreshReport:
    account_id: str
    provider: str
    status: RefreshStatus
    message: str = ""


class CredentialLifecycleManager:
    def __init__(
        self,
        store: CredentialStore,
        providers: ProviderRegistry,
        cipher: TokenCipher,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.providers = providers
        self.cipher = cipher
        self.clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, account_id: str) -> asyncio.Lock:
        return self._locks.setdefault(account_id, asyncio.Lock())

    def needs_refresh(self, account: ProviderAccount, client: ProviderClient) -> bool:
        """True once ``now > expires_at - refresh_buffer``.

        API-key accounts and accounts without an expiry never need a refresh.
        """
        if client.auth_flow is AuthFlow.API_KEY or account.expires_at is None:
            return False
        return self.clock() > account.expires_at - client.refresh_buffer_seconds

    def credential_for(self, account: ProviderAccount, *, stale: bool = False) -> Credential:
        return Credential(
            access_token=self.cipher.decrypt(account.access_token),
            api_key=self.cipher.decrypt(account.api_key) if account.api_key else None,
            account_id=account.id,
            stale=stale,
        )

    def encrypt_tokens(self, tokens: TokenSet) -> dict[str, Any]:
        """Store-ready patch for a token set. Plaintext never leaves this method."""
        patch: dict[str, Any] = {
            "access_token": self.cipher.encrypt(tokens.access_token),
            "expires_at": tokens.expires_at,
        }
        if tokens.refresh_token:
            patch["refresh_token"] = self.cipher.encrypt(tokens.refresh_token)
        if tokens.api_key:
            patch["api_key"] = self.cipher.encrypt(tokens.api_key)
        if tokens.email:
            patch["email"] = tokens.email
        return patch

    async def get_valid_token(self, account: ProviderAccount) -> Credential:
        """Return a credential that is valid right now.

        Raises:
            AuthExpired: Refresh failed and the stored token has expired
            TokenError: Refresh succeeded but the new tokens could not be stored
        """
        client = self.providers.get(account.provider)
        if not self.needs_refresh(account, client):
            return self.credential_for(account)

        async with self._lock_for(account.id):
            current = await self.store.get_account(account.id) or account
            if not self.needs_refresh(current, client):
                _logger.debug("Account %s was refreshed by a concurrent request", account.id)
                return self.credential_for(current)
            return await self._refresh_locked(current, client)

    async def _refresh_locked(self, account: ProviderAccount, client: ProviderClient) -> Credential:
        if not account.refresh_token:
            return self._fallback(account, TokenError("No refresh token stored"))

        _logger.info("Refreshing %s token for account %s", client.display_name, account.id)
        try:
            tokens = await client.refresh(self.cipher.decrypt(account.refresh_token))
        except OAuthError as e:
            return self._fallback(account, e)

        updated = await self._persist(account, tokens)
        return self.credential_for(updated)

    async def _persist(self, account: ProviderAccount, tokens: TokenSet) -> ProviderAccount:
        try:
            return await self.store.update_account(account.id, self.encrypt_tokens(tokens))
        except StorageError as e:
            _logger.critical(
                "Refreshed tokens for account %s (%s) could not be stored; "
                "the account must be re-linked if its refresh token rotated: %s",
                account.id,
                account.provider,
                e,
            )
            raise TokenError(f"Token refresh succeeded but storage failed: {e}") from e

    def _fallback(self, account: ProviderAccount, error: Exception) -> Credential:
        if account.expires_at is not None and self.clock() < account.expires_at:
            _logger.warning(
                "Token refresh failed for account %s, using existing token (may be stale): %s",
                account.id,
                error,
            )
            return self.credential_for(account, stale=True)

        _logger.warning(
            "Token refresh failed for account %s and token expired: %s", account.id, error
        )
        raise AuthExpired(
            f"Credentials for {account.provider} account '{account.name}' expired "
            f"and could not be refreshed: {error}",
            account_id=account.id,
        )

    async def refresh_expiring(self, threshold_seconds: float | None = None) -> list[RefreshReport]:
        """Proactively refresh every active OAuth account expiring soon.

        Uses the same per-account lock as ``get_valid_token``. Failures are
        reported, never raised.
        """
        threshold = (
            TokenRefreshDefaults.PROACTIVE_THRESHOLD_SECONDS
            if threshold_seconds is None
            else threshold_seconds
        )
        reports: list[RefreshReport] = []

        for account in await self.store.list_all(active_only=True):
            client = self.providers.find(account.provider)
            if client is None or client.auth_flow is AuthFlow.API_KEY:
                reports.append(self._report(account, RefreshStatus.SKIPPED, "no refresh flow"))
                continue
            if account.expires_at is None or not account.refresh_token:
                reports.append(self._report(account, RefreshStatus.SKIPPED, "no refresh token"))
                continue
            if account.expires_at - self.clock() > threshold:
                reports.append(self._report(account, RefreshStatus.SKIPPED, "not expiring"))
                continue
            reports.append(await self._refresh_one(account, client, threshold))

        refreshed = sum(1 for r in reports if r.status is RefreshStatus.REFRESHED)
        failed = sum(1 for r in reports if r.status is RefreshStatus.FAILED)
        if refreshed or failed:
            _logger.info("Proactive refresh: %d refreshed, %d failed", refreshed, failed)
        return reports

    async def _refresh_one(
        self, account: ProviderAccount, client: ProviderClient, threshold: float
    ) -> RefreshReport:
        async with self._lock_for(account.id):
            current = await self.store.get_account(account.id)
            if current is None:
                return self._report(account, RefreshStatus.SKIPPED, "account removed")
            if current.expires_at is not None and current.expires_at - self.clock() > threshold:
                return self._report(current, RefreshStatus.SKIPPED, "refreshed concurrently")
            try:
                tokens = await client.refresh(self.cipher.decrypt(current.refresh_token or ""))
                await self._persist(current, tokens)
            except OAuthError as e:
                _logger.warning("Proactive refresh failed for account %s: %s", current.id, e)
                return self._report(current, RefreshStatus.FAILED, str(e))
        return self._report(current, RefreshStatus.REFRESHED)

    @staticmethod
    def _report(
        account: ProviderAccount, status: RefreshStatus, message: str = ""
    ) -> RefreshReport:
        return RefreshReport(account.id, account.provider, status, message)


def as_dict(report: RefreshReport) -> dict[str, Any]:
    data = dataclasses.asdict(report)
    data["status"] = report.status.value
    return data

"""Credential store adapter.

The gateway only talks to accounts through CredentialStore. Two backends are
provided: an in-memory store and a JSON file store that writes the whole
snapshot atomically with owner-only permissions.
"""

from __future__ import annotations

import abc
import asyncio
import json
import logging
import os
import tempfile
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any

from gateway.core.accounts.account import ProviderAccount
from gateway.core.oauth.constants import StorageDefaults
from gateway.core.oauth.exceptions import StorageError

_logger = logging.getLogger(__name__)

# A fixed patch, or a function computing one from the current row under the store lock
AccountPatch = Mapping[str, Any] | Callable[[ProviderAccount], Mapping[str, Any]]


class CredentialStore(abc.ABC):
    """Account persistence boundary. All token fields arrive pre-encrypted."""

    @abc.abstractmethod
    async def find_accounts(
        self,
        user_id: str,
        providers: Iterable[str] | None = None,
        active_only: bool = True,
    ) -> list[ProviderAccount]:
        """Accounts of ``user_id``, ordered by creation time (then id)."""

    @abc.abstractmethod
    async def get_account(self, account_id: str) -> ProviderAccount | None:
        pass

    @abc.abstractmethod
    async def find_by_identity(
        self, user_id: str, provider: str, identity: str
    ) -> ProviderAccount | None:
        pass

    @abc.abstractmethod
    async def create_account(self, account: ProviderAccount) -> ProviderAccount:
        """Insert a new account.

        Raises:
            StorageError: If (user, provider, identity) already exists
        """

    @abc.abstractmethod
    async def update_account(self, account_id: str, patch: AccountPatch) -> ProviderAccount:
        """Apply ``patch`` to an account and return the stored result.

        A callable patch receives the current account and is evaluated atomically
        with the write, so read-modify-write counters never lose increments.

        Raises:
            StorageError: If the account does not exist or the write fails
        """

    @abc.abstractmethod
    async def delete_account(self, account_id: str) -> bool:
        pass

    @abc.abstractmethod
    async def list_all(self, active_only: bool = False) -> list[ProviderAccount]:
        pass


def _ordered(accounts: Iterable[ProviderAccount]) -> list[ProviderAccount]:
    return sorted(accounts, key=lambda account: (account.created_at, account.id))


class InMemoryCredentialStore(CredentialStore):
    """Process-local store. Mutations are serialized by a single lock."""

    def __init__(self, accounts: Iterable[ProviderAccount] = ()) -> None:
        self._accounts: dict[str, ProviderAccount] = {account.id: account for account in accounts}
        self._lock = asyncio.Lock()

    async def find_accounts(
        self,
        user_id: str,
        providers: Iterable[str] | None = None,
        active_only: bool = True,
    ) -> list[ProviderAccount]:
        provider_set = set(providers) if providers is not None else None
        return _ordered(
            account
            for account in self._accounts.values()
            if account.user_id == user_id
            and (provider_set is None or account.provider in provider_set)
            and (account.is_active or not active_only)
        )

    async def get_account(self, account_id: str) -> ProviderAccount | None:
        return self._accounts.get(account_id)

    async def find_by_identity(
        self, user_id: str, provider: str, identity: str
    ) -> ProviderAccount | None:
        for account in self._accounts.values():
            if (account.user_id, account.provider, account.identity) == (
                user_id,
                provider,
                identity,
            ):
                return account
        return None

    async def create_account(self, account: ProviderAccount) -> ProviderAccount:
        async with self._lock:
            existing = await self.find_by_identity(
                account.user_id, account.provider, account.identity
            )
            if existing is not None or account.id in self._accounts:
                raise StorageError(
                    f"Account already exists for {account.provider}:{account.identity}"
                )
            self._accounts[account.id] = account
            try:
                await self._persist()
            except StorageError:
                del self._accounts[account.id]
                raise
            return account

    async def update_account(self, account_id: str, patch: AccountPatch) -> ProviderAccount:
        async with self._lock:
            current = self._accounts.get(account_id)
            if current is None:
                raise StorageError(f"Account {account_id} not found")
            values = patch(current) if callable(patch) else patch
            try:
                updated = current.with_patch(dict(values))
            except (KeyError, ValueError) as e:
                raise StorageError(f"Invalid account patch for {account_id}: {e}") from e
            self._accounts[account_id] = updated
            try:
                await self._persist()
            except StorageError:
                self._accounts[account_id] = current
                raise
            return updated

    async def delete_account(self, account_id: str) -> bool:
        async with self._lock:
            removed = self._accounts.pop(account_id, None)
            if removed is None:
                return False
            try:
                await self._persist()
            except StorageError:
                self._accounts[account_id] = removed
                raise
            return True

    async def list_all(self, active_only: bool = False) -> list[ProviderAccount]:
        return _ordered(
            account for account in self._accounts.values() if account.is_active or not active_only
        )

    async def _persist(self) -> None:
        """Hook for durable subclasses; called with the lock held."""


class JsonFileCredentialStore(InMemoryCredentialStore):
    """JSON file backed store.

    The snapshot is written to a temp file in the same directory (mode 0600)
    and renamed over the target, so readers never observe a torn write. An
    update whose write fails is rolled back in memory and raises StorageError.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        super().__init__(self._read_snapshot())

    def _read_snapshot(self) -> list[ProviderAccount]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            return [ProviderAccount.from_dict(item) for item in data.get("accounts", [])]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            _logger.error("Corrupted accounts file %s: %s", self.path, e)
            raise StorageError(f"Invalid account data in {self.path}: {e}") from e
        except OSError as e:
            _logger.error("Failed to read accounts file %s: %s", self.path, e)
            raise StorageError(f"Cannot read accounts file: {e}") from e

    def _write_snapshot(self, payload: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=".accounts-", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    if hasattr(os, "fchmod"):
                        os.fchmod(f.fileno(), StorageDefaults.FILE_PERMISSIONS)
                    json.dump(payload, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                Path(tmp_path).unlink(missing_ok=True)
                raise
        except OSError as e:
            _logger.error("Failed to write accounts file %s: %s", self.path, e)
            raise StorageError(f"Cannot write accounts file: {e}") from e

    async def _persist(self) -> None:
        payload = {"accounts": [account.to_dict() for account in _ordered(self._accounts.values())]}
        await asyncio.to_thread(self._write_snapshot, payload)

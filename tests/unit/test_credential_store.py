"""Tests for the in-memory and JSON file credential stores."""

import asyncio
import json
import os
import stat

import pytest

from gateway.core.accounts.account import HealthStatus, ProviderAccount
from gateway.core.accounts.store import InMemoryCredentialStore, JsonFileCredentialStore
from gateway.core.oauth.exceptions import StorageError


def make_account(account_id="acct_1", user_id="user-1", provider="iflow", **overrides):
    values = {
        "id": account_id,
        "user_id": user_id,
        "provider": provider,
        "name": f"{provider} account",
        "identity": f"{account_id}@example.com",
        "access_token": "enc-access",
        "created_at": 100.0,
    }
    values.update(overrides)
    return ProviderAccount(**values)


@pytest.mark.unit
@pytest.mark.asyncio
class TestInMemoryCredentialStore:
    async def test_find_accounts_filters_by_user_provider_and_active(self):
        store = InMemoryCredentialStore(
            [
                make_account("a1", created_at=3.0),
                make_account("a2", provider="qwen_code", created_at=2.0),
                make_account("a3", is_active=False, created_at=1.0),
                make_account("a4", user_id="user-2"),
            ]
        )

        active = await store.find_accounts("user-1")
        assert [a.id for a in active] == ["a2", "a1"]

        everything = await store.find_accounts("user-1", active_only=False)
        assert [a.id for a in everything] == ["a3", "a2", "a1"]

        iflow_only = await store.find_accounts("user-1", ["iflow"])
        assert [a.id for a in iflow_only] == ["a1"]

    async def test_create_rejects_duplicate_identity(self):
        store = InMemoryCredentialStore([make_account("a1")])

        with pytest.raises(StorageError):
            await store.create_account(make_account("a2", identity="a1@example.com"))

    async def test_same_identity_allowed_for_other_user(self):
        store = InMemoryCredentialStore([make_account("a1")])

        created = await store.create_account(
            make_account("a2", user_id="user-2", identity="a1@example.com")
        )
        assert created.id == "a2"

    async def test_update_applies_patch(self):
        store = InMemoryCredentialStore([make_account("a1")])

        updated = await store.update_account("a1", {"name": "Renamed", "health": "degraded"})

        assert updated.name == "Renamed"
        assert updated.health is HealthStatus.DEGRADED
        assert (await store.get_account("a1")).name == "Renamed"

    async def test_update_rejects_immutable_field(self):
        store = InMemoryCredentialStore([make_account("a1")])

        with pytest.raises(StorageError):
            await store.update_account("a1", {"user_id": "someone-else"})

    async def test_update_unknown_account(self):
        store = InMemoryCredentialStore()

        with pytest.raises(StorageError):
            await store.update_account("missing", {"name": "x"})

    async def test_delete(self):
        store = InMemoryCredentialStore([make_account("a1")])

        assert await store.delete_account("a1") is True
        assert await store.delete_account("a1") is False
        assert await store.get_account("a1") is None

    async def test_find_by_identity(self):
        store = InMemoryCredentialStore([make_account("a1")])

        found = await store.find_by_identity("user-1", "iflow", "a1@example.com")
        assert found is not None and found.id == "a1"
        assert await store.find_by_identity("user-1", "qwen_code", "a1@example.com") is None


@pytest.mark.unit
@pytest.mark.asyncio
class TestJsonFileCredentialStore:
    async def test_round_trips_through_file(self, tmp_path):
        path = tmp_path / "accounts.json"
        store = JsonFileCredentialStore(path)
        await store.create_account(make_account("a1", extras={"resource_url": "portal"}))

        reopened = JsonFileCredentialStore(path)
        account = await reopened.get_account("a1")

        assert account == make_account("a1", extras={"resource_url": "portal"})

    async def test_file_is_owner_only(self, tmp_path):
        path = tmp_path / "accounts.json"
        store = JsonFileCredentialStore(path)
        await store.create_account(make_account("a1"))

        if hasattr(os, "fchmod"):
            assert stat.S_IMODE(path.stat().st_mode) == 0o600

    async def test_failed_write_rolls_back(self, tmp_path, monkeypatch):
        path = tmp_path / "accounts.json"
        store = JsonFileCredentialStore(path)
        await store.create_account(make_account("a1"))

        def broken_write(payload):
            raise StorageError("disk full")

        monkeypatch.setattr(store, "_write_snapshot", broken_write)

        with pytest.raises(StorageError):
            await store.update_account("a1", {"name": "Renamed"})

        assert (await store.get_account("a1")).name == "iflow account"
        on_disk = json.loads(path.read_text())
        assert on_disk["accounts"][0]["name"] == "iflow account"

    async def test_concurrent_callable_patches_do_not_lose_updates(self, tmp_path):
        store = JsonFileCredentialStore(tmp_path / "accounts.json")
        await store.create_account(make_account("a1"))

        await asyncio.gather(
            *(
                store.update_account("a1", lambda a: {"request_count": a.request_count + 1})
                for _ in range(10)
            )
        )

        assert (await store.get_account("a1")).request_count == 10
        on_disk = json.loads((tmp_path / "accounts.json").read_text())
        assert on_disk["accounts"][0]["request_count"] == 10

    async def test_corrupted_file_raises(self, tmp_path):
        path = tmp_path / "accounts.json"
        path.write_text("{not json")

        with pytest.raises(StorageError):
            JsonFileCredentialStore(path)

    async def test_missing_file_starts_empty(self, tmp_path):
        store = JsonFileCredentialStore(tmp_path / "nested" / "accounts.json")

        assert await store.list_all() == []

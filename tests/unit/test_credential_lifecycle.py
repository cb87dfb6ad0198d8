"""Tests for CredentialLifecycleManager refresh behavior."""

import asyncio

import httpx
import pytest

from gateway.core.accounts.cipher import PlaintextTokenCipher
from gateway.core.accounts.store import InMemoryCredentialStore
from gateway.core.errors import AuthExpired
from gateway.core.oauth.constants import QwenEndpoints
from gateway.core.oauth.exceptions import StorageError, TokenError
from gateway.core.oauth.http_client import AsyncHttpClient
from gateway.core.oauth.lifecycle import CredentialLifecycleManager, RefreshStatus
from gateway.core.provider.base import AuthFlow
from gateway.core.provider.qwen_code import QwenCodeClient
from gateway.core.provider.registry import ProviderRegistry
from tests.fixtures.fakes import FakeProvider, make_account


def _lifecycle(provider, accounts, clock, store=None):
    registry = ProviderRegistry()
    registry.register(provider)
    store = store or InMemoryCredentialStore(accounts)
    return CredentialLifecycleManager(store, registry, PlaintextTokenCipher(), clock=clock), store


@pytest.mark.unit
@pytest.mark.asyncio
class TestGetValidToken:
    async def test_fresh_token_is_returned_without_refresh(self, clock):
        provider = FakeProvider(clock=clock)
        account = make_account(expires_at=clock() + 3600)
        lifecycle, _ = _lifecycle(provider, [account], clock)

        credential = await lifecycle.get_valid_token(account)

        assert credential.access_token == "token-acct_1"
        assert credential.account_id == "acct_1"
        assert provider.refresh_calls == []

    async def test_token_inside_buffer_is_refreshed_and_persisted(self, clock):
        provider = FakeProvider(clock=clock, buffer_seconds=300)
        account = make_account(expires_at=clock() + 60)
        lifecycle, store = _lifecycle(provider, [account], clock)

        credential = await lifecycle.get_valid_token(account)

        assert credential.access_token == "access-1"
        assert provider.refresh_calls == ["refresh-acct_1"]
        stored = await store.get_account("acct_1")
        assert stored.access_token == "access-1"
        assert stored.refresh_token == "refresh-1"
        assert stored.expires_at == clock() + 3600

    async def test_api_key_accounts_never_refresh(self, clock):
        provider = FakeProvider("nvidia_nim", AuthFlow.API_KEY, clock=clock)
        account = make_account(provider="nvidia_nim", expires_at=None, refresh_token=None)
        lifecycle, _ = _lifecycle(provider, [account], clock)

        credential = await lifecycle.get_valid_token(account)

        assert credential.access_token == "token-acct_1"
        assert provider.refresh_calls == []

    async def test_concurrent_callers_share_one_refresh(self, clock):
        provider = FakeProvider(clock=clock, refresh_delay=0.01)
        account = make_account(expires_at=clock() - 10)
        lifecycle, _ = _lifecycle(provider, [account], clock)

        credentials = await asyncio.gather(
            *(lifecycle.get_valid_token(account) for _ in range(5))
        )

        assert len(provider.refresh_calls) == 1
        assert {c.access_token for c in credentials} == {"access-1"}

    async def test_failed_refresh_falls_back_to_unexpired_token(self, clock):
        provider = FakeProvider(clock=clock, refresh_error=TokenError("upstream said no"))
        account = make_account(expires_at=clock() + 60)
        lifecycle, _ = _lifecycle(provider, [account], clock)

        credential = await lifecycle.get_valid_token(account)

        assert credential.access_token == "token-acct_1"
        assert credential.stale is True

    async def test_failed_refresh_of_expired_token_raises_auth_expired(self, clock):
        provider = FakeProvider(clock=clock, refresh_error=TokenError("upstream said no"))
        account = make_account(expires_at=clock() - 1)
        lifecycle, _ = _lifecycle(provider, [account], clock)

        with pytest.raises(AuthExpired) as exc_info:
            await lifecycle.get_valid_token(account)
        assert exc_info.value.account_id == "acct_1"

    async def test_missing_refresh_token_with_expired_access_token(self, clock):
        provider = FakeProvider(clock=clock)
        account = make_account(expires_at=clock() - 1, refresh_token=None)
        lifecycle, _ = _lifecycle(provider, [account], clock)

        with pytest.raises(AuthExpired):
            await lifecycle.get_valid_token(account)
        assert provider.refresh_calls == []

    async def test_refreshed_tokens_that_cannot_be_stored_are_not_returned(self, clock):
        class BrokenStore(InMemoryCredentialStore):
            async def update_account(self, account_id, patch):
                raise StorageError("disk full")

        provider = FakeProvider(clock=clock)
        account = make_account(expires_at=clock() - 1)
        lifecycle, _ = _lifecycle(provider, [account], clock, BrokenStore([account]))

        with pytest.raises(TokenError, match="storage failed"):
            await lifecycle.get_valid_token(account)
        assert len(provider.refresh_calls) == 1


@pytest.mark.unit
@pytest.mark.asyncio
class TestGarbledTokenEndpoint:
    """A 200 token response that is not JSON counts as a failed refresh."""

    @pytest.fixture
    def qwen(self, clock, mock_upstream):
        mock_upstream.post(QwenEndpoints.TOKEN_URL).mock(
            return_value=httpx.Response(200, text="<html>maintenance</html>")
        )
        return QwenCodeClient(AsyncHttpClient(), clock=clock)

    async def test_falls_back_to_unexpired_token(self, qwen, clock):
        account = make_account(provider="qwen_code", expires_at=clock() + 60)
        lifecycle, store = _lifecycle(qwen, [account], clock)

        credential = await lifecycle.get_valid_token(account)

        assert credential.access_token == "token-acct_1"
        assert credential.stale is True
        assert (await store.get_account("acct_1")).access_token == "token-acct_1"

    async def test_expired_token_raises_auth_expired(self, qwen, clock):
        account = make_account(provider="qwen_code", expires_at=clock() - 1)
        lifecycle, _ = _lifecycle(qwen, [account], clock)

        with pytest.raises(AuthExpired):
            await lifecycle.get_valid_token(account)


@pytest.mark.unit
@pytest.mark.asyncio
class TestRefreshExpiring:
    async def test_refreshes_only_accounts_inside_threshold(self, clock):
        provider = FakeProvider(clock=clock)
        soon = make_account("soon", expires_at=clock() + 60, created_at=1.0)
        later = make_account("later", expires_at=clock() + 10_000, created_at=2.0)
        lifecycle, store = _lifecycle(provider, [soon, later], clock)

        reports = await lifecycle.refresh_expiring(threshold_seconds=600)

        statuses = {r.account_id: r.status for r in reports}
        assert statuses == {"soon": RefreshStatus.REFRESHED, "later": RefreshStatus.SKIPPED}
        assert (await store.get_account("soon")).access_token == "access-1"

    async def test_failures_are_reported_not_raised(self, clock):
        provider = FakeProvider(clock=clock, refresh_error=TokenError("nope"))
        account = make_account(expires_at=clock() + 60)
        lifecycle, _ = _lifecycle(provider, [account], clock)

        [report] = await lifecycle.refresh_expiring(threshold_seconds=600)

        assert report.status is RefreshStatus.FAILED
        assert "nope" in report.message

    async def test_api_key_accounts_are_skipped(self, clock):
        provider = FakeProvider("nvidia_nim", AuthFlow.API_KEY, clock=clock)
        account = make_account(provider="nvidia_nim", expires_at=None)
        lifecycle, _ = _lifecycle(provider, [account], clock)

        [report] = await lifecycle.refresh_expiring(threshold_seconds=600)

        assert report.status is RefreshStatus.SKIPPED
        assert provider.refresh_calls == []

"""Tests for narrowing dynamic provider catalogs to what upstream lists."""

import pytest
from fastapi.testclient import TestClient

from gateway.core.config import Config
from gateway.core.oauth.http_client import HttpError
from gateway.core.provider.base import AuthFlow
from gateway.main import create_app
from tests.fixtures.fakes import FakeProvider, build_test_container, make_account


def _nvidia(upstream_models):
    provider = FakeProvider("nvidia_nim", AuthFlow.API_KEY)
    provider.upstream_models = upstream_models
    return provider


def _nvidia_account(**overrides):
    return make_account(
        "acct_n", provider="nvidia_nim", expires_at=None, refresh_token=None, **overrides
    )


@pytest.mark.unit
@pytest.mark.asyncio
class TestSyncModelCatalogs:
    async def test_narrows_to_listed_models(self):
        container = build_test_container([_nvidia(["z-ai/glm4.7"])], [_nvidia_account()])

        synced = await container.sync_model_catalogs()

        assert synced == {"nvidia_nim": ["glm-4.7"]}
        assert container.models.is_supported_by("glm-4.7", "nvidia_nim")
        assert not container.models.is_supported_by("kimi-k2", "nvidia_nim")

    async def test_without_linked_account_keeps_full_catalog(self):
        container = build_test_container([_nvidia(["z-ai/glm4.7"])])

        assert await container.sync_model_catalogs() == {}
        assert container.models.is_supported_by("kimi-k2", "nvidia_nim")

    async def test_inactive_account_is_not_used(self):
        container = build_test_container(
            [_nvidia(["z-ai/glm4.7"])], [_nvidia_account(is_active=False)]
        )

        assert await container.sync_model_catalogs() == {}

    async def test_listing_failure_keeps_full_catalog(self):
        failure = HttpError(401, "Unauthorized", "", "https://fake.invalid/v1/models")
        container = build_test_container([_nvidia(failure)], [_nvidia_account()])

        assert await container.sync_model_catalogs() == {}
        assert container.models.is_supported_by("kimi-k2", "nvidia_nim")


@pytest.mark.unit
class TestStartupSync:
    def _container(self):
        return build_test_container([_nvidia(["z-ai/glm4.7"])], [_nvidia_account()])

    def test_runs_when_enabled(self, monkeypatch):
        monkeypatch.setenv("SYNC_MODEL_CATALOGS", "true")
        Config.reset_singleton()
        container = self._container()

        with TestClient(create_app(container)):
            assert not container.models.is_supported_by("kimi-k2", "nvidia_nim")

    def test_disabled_by_default(self):
        container = self._container()

        with TestClient(create_app(container)):
            assert container.models.is_supported_by("kimi-k2", "nvidia_nim")

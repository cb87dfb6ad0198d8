"""Tests for the gateway command line."""

import json

import pytest
from typer.testing import CliRunner

from gateway import __version__
from gateway.cli.main import app
from gateway.core.config import Config

runner = CliRunner()


@pytest.fixture
def accounts_file(tmp_path, monkeypatch):
    path = tmp_path / "accounts.json"
    monkeypatch.setenv("ACCOUNTS_FILE", str(path))
    Config.reset_singleton()
    return path


@pytest.mark.unit
def test_version():
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert __version__ in result.output


@pytest.mark.unit
class TestModelsCommand:
    def test_list_all(self):
        result = runner.invoke(app, ["models", "list"])

        assert result.exit_code == 0
        assert "glm-4.7" in result.output
        assert "glm-4.6" in result.output

    def test_filter_by_provider(self):
        result = runner.invoke(app, ["models", "list", "--provider", "qwen_code"])

        assert result.exit_code == 0
        assert "qwen3-coder-flash" in result.output
        assert "glm-4.6" not in result.output

    def test_unknown_provider(self):
        result = runner.invoke(app, ["models", "list", "-p", "nope"])

        assert result.exit_code == 1
        assert "No models found" in result.output

    def test_sync_without_linked_accounts(self, accounts_file):
        result = runner.invoke(app, ["models", "sync"])

        assert result.exit_code == 0
        assert "No dynamic provider catalog could be synced" in result.output


@pytest.mark.unit
class TestCheckCommand:
    def test_valid_environment(self):
        result = runner.invoke(app, ["check"])

        assert result.exit_code == 0
        assert "All settings are valid" in result.output

    def test_invalid_port(self, monkeypatch):
        monkeypatch.setenv("PORT", "not-a-port")

        result = runner.invoke(app, ["check"])

        assert result.exit_code == 1
        assert "PORT" in result.output


@pytest.mark.unit
class TestAccountsCommands:
    def test_add_key_then_stats_and_remove(self, accounts_file):
        added = runner.invoke(
            app, ["accounts", "add-key", "nvidia_nim", "--api-key", "nvapi-abc123", "-u", "u1"]
        )

        assert added.exit_code == 0, added.output
        assert "Added account" in added.output

        [stored] = json.loads(accounts_file.read_text())["accounts"]
        assert stored["provider"] == "nvidia_nim"
        assert stored["access_token"] != "nvapi-abc123"

        stats = runner.invoke(app, ["accounts", "stats", "-u", "u1"])
        assert stats.exit_code == 0
        assert json.loads(stats.output)["by_provider"]["nvidia_nim"]["total"] == 1

        again = runner.invoke(
            app, ["accounts", "add-key", "nvidia_nim", "--api-key", "nvapi-abc123", "-u", "u1"]
        )
        assert "Updated account" in again.output

        removed = runner.invoke(app, ["accounts", "remove", stored["id"], "-u", "u1"])
        assert removed.exit_code == 0
        assert json.loads(accounts_file.read_text())["accounts"] == []

    def test_add_key_for_oauth_provider_fails(self, accounts_file):
        result = runner.invoke(
            app, ["accounts", "add-key", "iflow", "--api-key", "sk-1", "-u", "u1"]
        )

        assert result.exit_code == 1
        assert "ValidationError" in result.output

    def test_list_without_accounts(self, accounts_file):
        result = runner.invoke(app, ["accounts", "list", "-u", "nobody"])

        assert result.exit_code == 0
        assert "No accounts linked" in result.output

    def test_remove_foreign_account(self, accounts_file):
        result = runner.invoke(app, ["accounts", "remove", "acct_missing", "-u", "u1"])

        assert result.exit_code == 1


@pytest.mark.unit
class TestTokensCommand:
    def test_refresh_with_no_accounts(self, accounts_file):
        result = runner.invoke(app, ["tokens", "refresh"])

        assert result.exit_code == 0
        assert "No active accounts" in result.output

    def test_refresh_skips_api_key_accounts_as_json(self, accounts_file):
        runner.invoke(
            app, ["accounts", "add-key", "nvidia_nim", "--api-key", "nvapi-abc123", "-u", "u1"]
        )

        result = runner.invoke(app, ["tokens", "refresh", "--json"])

        assert result.exit_code == 0
        [report] = json.loads(result.output)
        assert report["provider"] == "nvidia_nim"
        assert report["status"] == "skipped"

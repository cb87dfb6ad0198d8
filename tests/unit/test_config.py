"""Tests for environment-driven configuration."""

import importlib
import os

import pytest

config_module = importlib.import_module("gateway.core.config.config")
from gateway.core.config import Config, ConfigError, ConfigSchema, validate_all
from gateway.core.config.validation import load_env_var


@pytest.mark.unit
class TestConfig:
    def test_defaults(self):
        cfg = Config()

        assert cfg.port == 8082
        assert cfg.host == "0.0.0.0"
        assert cfg.max_account_retries == 5
        assert cfg.failure_policy == "none"
        assert cfg.accounts_file is None
        assert cfg.streaming_read_timeout is None

    def test_gateway_keys_and_disabled_models(self, monkeypatch):
        monkeypatch.setenv("GATEWAY_API_KEYS", "k1=alice, k2=bob")
        monkeypatch.setenv("DISABLED_MODELS", "alice:glm-4.7,alice:kimi-k2,bob:deepseek-r1")

        cfg = Config()

        assert cfg.gateway_api_keys == {"k1": "alice", "k2": "bob"}
        assert cfg.disabled_models == {"alice": {"glm-4.7", "kimi-k2"}, "bob": {"deepseek-r1"}}

    @pytest.mark.parametrize(
        "name,value",
        [
            ("PORT", "not-a-number"),
            ("PORT", "70000"),
            ("FAILURE_POLICY", "aggressive"),
            ("GATEWAY_API_KEYS", "no-separator"),
            ("MAX_ACCOUNT_RETRIES", "0"),
        ],
    )
    def test_invalid_values_raise(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)

        with pytest.raises(ConfigError) as exc_info:
            Config()
        assert exc_info.value.env_var == name

    def test_validate_all_collects_every_error(self, monkeypatch):
        monkeypatch.setenv("PORT", "0")
        monkeypatch.setenv("REQUEST_TIMEOUT", "-1")

        names = {error.env_var for error in validate_all()}

        assert names == {"PORT", "REQUEST_TIMEOUT"}

    def test_secret_hash_never_shows_the_secret(self):
        cfg = Config()

        assert cfg.secret_hash.startswith("sha256:")
        assert os.environ["GATEWAY_SECRET"] not in cfg.secret_hash

    def test_secret_hash_when_unset(self, monkeypatch):
        monkeypatch.delenv("GATEWAY_SECRET")

        assert Config().secret_hash == "<not-set>"

    def test_reset_singleton_rereads_environment(self, monkeypatch):
        monkeypatch.setenv("PORT", "9000")

        Config.reset_singleton()

        assert config_module.config.port == 9000


@pytest.mark.unit
class TestLoadEnvVar:
    def test_bool_parsing(self, monkeypatch):
        monkeypatch.setenv("LOG_REQUEST_METRICS", "yes")

        assert load_env_var(ConfigSchema.LOG_REQUEST_METRICS) is True

    def test_empty_value_uses_default(self, monkeypatch):
        monkeypatch.setenv("PORT", "")

        assert load_env_var(ConfigSchema.PORT) == 8082

    def test_tuple_parsing_drops_blanks(self, monkeypatch):
        monkeypatch.setenv("GATEWAY_API_KEYS", "a=1,, b=2 ,")

        assert load_env_var(ConfigSchema.GATEWAY_API_KEYS) == ("a=1", "b=2")

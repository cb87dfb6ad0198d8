"""Configuration singleton for the provider gateway.

All values are loaded once at construction from environment variables
using the declarative ConfigSchema. Values that need structure (gateway
keys, disabled models) are parsed into plain mappings here so callers
never touch raw strings.
"""

import hashlib

from gateway.core.config.schema import ConfigSchema
from gateway.core.config.validation import ConfigError, load_env_var


def _parse_key_pairs(pairs: tuple[str, ...]) -> dict[str, str]:
    keys: dict[str, str] = {}
    for pair in pairs:
        key, _, user_id = pair.partition("=")
        if not key.strip() or not user_id.strip():
            raise ConfigError("GATEWAY_API_KEYS", pair, "Expected key=user_id")
        keys[key.strip()] = user_id.strip()
    return keys


def _parse_disabled_models(pairs: tuple[str, ...]) -> dict[str, set[str]]:
    disabled: dict[str, set[str]] = {}
    for pair in pairs:
        user_id, _, model = pair.partition(":")
        if not user_id.strip() or not model.strip():
            raise ConfigError("DISABLED_MODELS", pair, "Expected user_id:model")
        disabled.setdefault(user_id.strip(), set()).add(model.strip())
    return disabled


class Config:
    """Configuration singleton with direct access to all settings."""

    def __init__(self) -> None:
        s = ConfigSchema
        self._host: str = load_env_var(s.HOST)
        self._port: int = load_env_var(s.PORT)
        self._log_level: str = load_env_var(s.LOG_LEVEL)
        self._log_request_metrics: bool = load_env_var(s.LOG_REQUEST_METRICS)

        self._request_timeout: int = load_env_var(s.REQUEST_TIMEOUT)
        self._streaming_read_timeout: float | None = load_env_var(s.STREAMING_READ_TIMEOUT_SECONDS)
        self._streaming_connect_timeout: float = load_env_var(s.STREAMING_CONNECT_TIMEOUT_SECONDS)

        self._gateway_secret: str | None = load_env_var(s.GATEWAY_SECRET)
        self._gateway_api_keys = _parse_key_pairs(load_env_var(s.GATEWAY_API_KEYS))
        self._disabled_models = _parse_disabled_models(load_env_var(s.DISABLED_MODELS))

        self._accounts_file: str | None = load_env_var(s.ACCOUNTS_FILE)
        self._max_account_retries: int = load_env_var(s.MAX_ACCOUNT_RETRIES)
        self._failure_policy: str = load_env_var(s.FAILURE_POLICY)
        self._token_refresh_interval: int = load_env_var(s.TOKEN_REFRESH_INTERVAL_SECONDS)
        self._token_refresh_threshold: int = load_env_var(s.TOKEN_REFRESH_THRESHOLD_SECONDS)
        self._sync_model_catalogs: bool = load_env_var(s.SYNC_MODEL_CATALOGS)

        self._iflow_client_id: str = load_env_var(s.IFLOW_CLIENT_ID)
        self._iflow_client_secret: str | None = load_env_var(s.IFLOW_CLIENT_SECRET)
        self._iflow_redirect_uri: str = load_env_var(s.IFLOW_REDIRECT_URI)

    # Server settings
    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def log_level(self) -> str:
        return self._log_level

    @property
    def log_request_metrics(self) -> bool:
        return self._log_request_metrics

    # Timeout settings
    @property
    def request_timeout(self) -> int:
        return self._request_timeout

    @property
    def streaming_read_timeout(self) -> float | None:
        return self._streaming_read_timeout

    @property
    def streaming_connect_timeout(self) -> float:
        return self._streaming_connect_timeout

    # Security settings
    @property
    def gateway_secret(self) -> str | None:
        return self._gateway_secret

    @property
    def gateway_api_keys(self) -> dict[str, str]:
        return dict(self._gateway_api_keys)

    @property
    def disabled_models(self) -> dict[str, set[str]]:
        return {user: set(models) for user, models in self._disabled_models.items()}

    # Account settings
    @property
    def accounts_file(self) -> str | None:
        return self._accounts_file

    @property
    def max_account_retries(self) -> int:
        return self._max_account_retries

    @property
    def failure_policy(self) -> str:
        return self._failure_policy

    @property
    def token_refresh_interval(self) -> int:
        return self._token_refresh_interval

    @property
    def token_refresh_threshold(self) -> int:
        return self._token_refresh_threshold

    @property
    def sync_model_catalogs(self) -> bool:
        return self._sync_model_catalogs

    # Provider settings
    @property
    def iflow_client_id(self) -> str:
        return self._iflow_client_id

    @property
    def iflow_client_secret(self) -> str | None:
        return self._iflow_client_secret

    @property
    def iflow_redirect_uri(self) -> str:
        return self._iflow_redirect_uri

    # Utility methods
    @property
    def secret_hash(self) -> str:
        return (
            "<not-set>"
            if not self._gateway_secret
            else "sha256:" + hashlib.sha256(self._gateway_secret.encode()).hexdigest()[:16] + "..."
        )

    @classmethod
    def reset_singleton(cls) -> None:
        """Reset the global config singleton for test isolation.

        WARNING: Never call this in production code!
        """
        global config
        config = cls()


# Module-level singleton
config = Config()

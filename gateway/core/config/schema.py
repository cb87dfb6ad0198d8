"""Declarative schema for environment variable configuration.

This module is the single source of truth for every environment variable
the gateway reads, including type coercion, validation and documentation.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class EnvVarSpec:
    """Specification for a single environment variable.

    Attributes:
        name: Environment variable name (e.g., "PORT", "LOG_LEVEL")
        default: Default value if env var not set
        type_hint: Type for validation (int, str, float, bool)
        description: Human-readable description for docs
        validator: Optional custom validation function
        coerce: Optional function to convert string to target type
    """

    name: str
    default: Any
    type_hint: type
    description: str
    validator: Callable[[Any], bool] | None = None
    coerce: Callable[[str], Any] | None = None


class ConfigSchema:
    """Registry of all configuration environment variables."""

    # === Server Settings ===

    HOST = EnvVarSpec(
        name="HOST",
        default="0.0.0.0",
        type_hint=str,
        description="Server host address to bind to",
    )

    PORT = EnvVarSpec(
        name="PORT",
        default=8082,
        type_hint=int,
        description="Server port number",
        validator=lambda x: 1 <= x <= 65535,
    )

    LOG_LEVEL = EnvVarSpec(
        name="LOG_LEVEL",
        default="INFO",
        type_hint=str,
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
        validator=lambda x: x.split()[0].upper()
        in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    )

    LOG_REQUEST_METRICS = EnvVarSpec(
        name="LOG_REQUEST_METRICS",
        default=False,
        type_hint=bool,
        description="Log a START and END line for every proxied request",
    )

    # === Timeout Settings ===

    REQUEST_TIMEOUT = EnvVarSpec(
        name="REQUEST_TIMEOUT",
        default=90,
        type_hint=int,
        description="Request timeout in seconds for non-streaming upstream calls",
        validator=lambda x: x > 0,
    )

    STREAMING_READ_TIMEOUT_SECONDS = EnvVarSpec(
        name="STREAMING_READ_TIMEOUT_SECONDS",
        default=None,
        type_hint=float,
        description="Read timeout for streaming SSE requests (None = unlimited)",
        validator=lambda x: x is None or x > 0,
    )

    STREAMING_CONNECT_TIMEOUT_SECONDS = EnvVarSpec(
        name="STREAMING_CONNECT_TIMEOUT_SECONDS",
        default=30,
        type_hint=float,
        description="Connect timeout for streaming requests",
        validator=lambda x: x > 0,
    )

    # === Security Settings ===

    GATEWAY_SECRET = EnvVarSpec(
        name="GATEWAY_SECRET",
        default=None,
        type_hint=str,
        description="Passphrase used to encrypt stored provider tokens",
    )

    GATEWAY_API_KEYS = EnvVarSpec(
        name="GATEWAY_API_KEYS",
        default=(),
        type_hint=tuple,
        description="Bootstrap gateway keys as comma-separated key=user_id pairs",
        validator=lambda pairs: all("=" in pair for pair in pairs),
    )

    DISABLED_MODELS = EnvVarSpec(
        name="DISABLED_MODELS",
        default=(),
        type_hint=tuple,
        description="Bootstrap disabled models as comma-separated user_id:model pairs",
        validator=lambda pairs: all(":" in pair for pair in pairs),
    )

    # === Account Settings ===

    ACCOUNTS_FILE = EnvVarSpec(
        name="ACCOUNTS_FILE",
        default=None,
        type_hint=str,
        description="Path of the JSON credential store (in-memory when unset)",
    )

    MAX_ACCOUNT_RETRIES = EnvVarSpec(
        name="MAX_ACCOUNT_RETRIES",
        default=5,
        type_hint=int,
        description="Maximum number of accounts one request may try",
        validator=lambda x: x >= 1,
    )

    FAILURE_POLICY = EnvVarSpec(
        name="FAILURE_POLICY",
        default="none",
        type_hint=str,
        description="Account failure policy: 'none' or 'health'",
        validator=lambda x: x in ["none", "health"],
    )

    TOKEN_REFRESH_INTERVAL_SECONDS = EnvVarSpec(
        name="TOKEN_REFRESH_INTERVAL_SECONDS",
        default=0,
        type_hint=int,
        description="Background proactive token refresh period (0 = disabled)",
        validator=lambda x: x >= 0,
    )

    TOKEN_REFRESH_THRESHOLD_SECONDS = EnvVarSpec(
        name="TOKEN_REFRESH_THRESHOLD_SECONDS",
        default=7200,
        type_hint=int,
        description="Refresh accounts whose token expires within this window",
        validator=lambda x: x > 0,
    )

    SYNC_MODEL_CATALOGS = EnvVarSpec(
        name="SYNC_MODEL_CATALOGS",
        default=False,
        type_hint=bool,
        description="At startup, narrow dynamic provider catalogs to the models upstream lists",
    )

    # === Provider Settings ===

    IFLOW_CLIENT_ID = EnvVarSpec(
        name="IFLOW_CLIENT_ID",
        default="10009311001",
        type_hint=str,
        description="iFlow OAuth client id",
    )

    IFLOW_CLIENT_SECRET = EnvVarSpec(
        name="IFLOW_CLIENT_SECRET",
        default=None,
        type_hint=str,
        description="iFlow OAuth client secret",
    )

    IFLOW_REDIRECT_URI = EnvVarSpec(
        name="IFLOW_REDIRECT_URI",
        default="http://localhost:11451/oauth2callback",
        type_hint=str,
        description="Redirect URI registered for the iFlow OAuth client",
    )

    @classmethod
    def all_specs(cls) -> dict[str, EnvVarSpec]:
        """Get all environment variable specifications.

        Returns:
            Dictionary mapping spec names to EnvVarSpec objects
        """
        return {
            name: getattr(cls, name)
            for name in dir(cls)
            if isinstance(getattr(cls, name), EnvVarSpec)
        }

    @classmethod
    def get_spec(cls, name: str) -> EnvVarSpec | None:
        """Get specification for a specific env var by name."""
        for spec in cls.all_specs().values():
            if spec.name == name:
                return spec
        return None

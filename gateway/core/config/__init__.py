from gateway.core.config.config import Config, config
from gateway.core.config.schema import ConfigSchema, EnvVarSpec
from gateway.core.config.validation import ConfigError, validate_all

__all__ = ["Config", "ConfigError", "ConfigSchema", "EnvVarSpec", "config", "validate_all"]

"""Configuration management for the retail sales forecaster."""

from .manager import (
    ConfigurationManager,
    ConfigurationError,
    get_config,
    reset_config,
    CONFIG_ENV_VAR,
    DEFAULT_CONFIG_PATH,
)

__all__ = [
    "ConfigurationManager",
    "ConfigurationError",
    "get_config",
    "reset_config",
    "CONFIG_ENV_VAR",
    "DEFAULT_CONFIG_PATH",
]

"""Configuration management for the changelog notification bot.

Usage:
    from changelog_bot.config import load_config

    config = load_config()
    print(config.store.url)
"""

from .exceptions import ConfigurationError, ConfigurationFileError, ConfigurationValidationError
from .loader import (
    apply_env_overrides,
    build_config,
    get_config,
    is_config_loaded,
    load_config,
    read_config_file,
    reset_config,
    validate_for_run,
)
from .models import (
    Config,
    DeliveryConfig,
    GitHubConfig,
    LogLevel,
    NotificationConfig,
    StoreConfig,
    SummarizerConfig,
    SystemConfig,
)

__all__ = [
    "Config",
    "ConfigurationError",
    "ConfigurationFileError",
    "ConfigurationValidationError",
    "DeliveryConfig",
    "GitHubConfig",
    "LogLevel",
    "NotificationConfig",
    "StoreConfig",
    "SummarizerConfig",
    "SystemConfig",
    "apply_env_overrides",
    "build_config",
    "get_config",
    "is_config_loaded",
    "load_config",
    "read_config_file",
    "reset_config",
    "validate_for_run",
]

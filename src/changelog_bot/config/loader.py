"""Configuration loading and the process-wide configuration instance.

The loading hierarchy is:
1. Default values from the Pydantic models
2. Configuration file (YAML), when one is given or found
3. Well-known environment variables
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .exceptions import ConfigurationError, ConfigurationFileError, ConfigurationValidationError
from .models import Config

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "CHANGELOG_BOT_CONFIG"
DEFAULT_CONFIG_FILENAME = "config.yaml"

ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "REDIS_URL": ("store", "url"),
    "KEY_PREFIX": ("store", "key_prefix"),
    "ANTHROPIC_API_KEY": ("summarizer", "api_key"),
    "GITHUB_TOKEN": ("github", "token"),
    "UPSTREAM_OWNER": ("github", "upstream_owner"),
    "UPSTREAM_REPO": ("github", "upstream_repo"),
    "CLI_REPO_OWNER": ("github", "cli_repo_owner"),
    "CLI_REPO_NAME": ("github", "cli_repo_name"),
    "LOG_LEVEL": ("system", "log_level"),
}


def read_config_file(config_path: str | Path) -> dict[str, Any]:
    """Parse a YAML configuration file into a dictionary.

    Raises:
        ConfigurationFileError: If the file is missing, unreadable or not a mapping
    """
    config_path = Path(config_path)
    if not config_path.is_file():
        raise ConfigurationFileError(
            f"Configuration file not found: {config_path}", file_path=str(config_path)
        )

    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationFileError(
            f"Failed to parse YAML configuration: {e}", file_path=str(config_path)
        ) from e
    except OSError as e:
        raise ConfigurationFileError(
            f"Failed to read configuration file: {e}", file_path=str(config_path)
        ) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationFileError(
            "Configuration file must contain a mapping", file_path=str(config_path)
        )
    return data


def apply_env_overrides(
    data: dict[str, Any], environ: dict[str, str] | None = None
) -> dict[str, Any]:
    """Overlay the well-known environment variables onto raw config data."""
    environ = dict(os.environ) if environ is None else environ
    merged = {
        section: dict(values) if isinstance(values, dict) else values
        for section, values in data.items()
    }
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            merged.setdefault(section, {})[key] = value.upper() if key == "log_level" else value
    return merged


def find_config_file(filename: str = DEFAULT_CONFIG_FILENAME) -> Path | None:
    """Locate a config file via ``CHANGELOG_BOT_CONFIG`` or the working directory."""
    env_path = os.getenv(CONFIG_PATH_ENV)
    candidates = []
    if env_path:
        path = Path(env_path)
        candidates.append(path if path.suffix else path / filename)
    candidates.append(Path.cwd() / filename)

    for path in candidates:
        if path.is_file():
            return path
    return None


def build_config(data: dict[str, Any]) -> Config:
    """Validate raw data into a ``Config``.

    Raises:
        ConfigurationValidationError: If validation fails
    """
    try:
        return Config(**data)
    except (ValidationError, ValueError) as e:
        raise ConfigurationValidationError(f"Configuration validation failed: {e}") from e


def validate_for_run(config: Config) -> None:
    """Checks that only matter when a notification pass is about to run.

    Raises:
        ConfigurationValidationError: If a required credential is missing
    """
    if not config.summarizer.api_key:
        raise ConfigurationValidationError("ANTHROPIC_API_KEY is required")


_config: Config | None = None


def load_config(
    config_path: str | Path | None = None,
    auto_discover: bool = True,
    environ: dict[str, str] | None = None,
) -> Config:
    """Load configuration and make it the process-wide instance.

    Args:
        config_path: Explicit YAML file; takes precedence over discovery
        auto_discover: Look for a config file when no path is given
        environ: Environment to read overrides from, defaults to ``os.environ``

    Raises:
        ConfigurationError: If configuration cannot be loaded or is invalid
    """
    global _config

    path = Path(config_path) if config_path else (find_config_file() if auto_discover else None)
    data = read_config_file(path) if path else {}
    if path:
        logger.debug(f"Loading configuration from {path}")

    _config = build_config(apply_env_overrides(data, environ))
    return _config


def get_config() -> Config:
    """Return the loaded configuration.

    Raises:
        ConfigurationError: If no configuration has been loaded
    """
    if _config is None:
        raise ConfigurationError("No configuration loaded. Call load_config() first.")
    return _config


def is_config_loaded() -> bool:
    return _config is not None


def reset_config() -> None:
    """Forget the loaded configuration (test isolation)."""
    global _config
    _config = None

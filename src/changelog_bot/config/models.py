"""Pydantic configuration models for the changelog notification bot.

The configuration hierarchy:
- Config: root object
- SystemConfig: logging and environment
- StoreConfig: Redis connection and key namespace
- GitHubConfig: watched repositories and API access
- SummarizerConfig: Claude model settings
- DeliveryConfig: Slack fan-out tuning
- NotificationConfig: lock, TTLs, retries and languages

String values may reference environment variables as ${VAR_NAME} or
${VAR_NAME:default}.
"""

import os
import re
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..models import DEFAULT_LANGUAGE, SUPPORTED_LANGUAGES

ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")


class LogLevel(str, Enum):
    """Supported logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _substitute(value: Any) -> Any:
    if isinstance(value, str):

        def replacer(match: re.Match[str]) -> str:
            var_name, default_value = match.group(1), match.group(2)
            env_value = os.getenv(var_name)
            if env_value is not None:
                return env_value
            if default_value is not None:
                return default_value
            raise ValueError(f"Required environment variable '{var_name}' not found")

        return ENV_VAR_PATTERN.sub(replacer, value)
    if isinstance(value, dict):
        return {k: _substitute(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute(item) for item in value]
    return value


class BaseConfigModel(BaseModel):
    """Base configuration model with environment variable substitution."""

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def substitute_env_vars(cls, values: Any) -> Any:
        """Replace ${VAR} and ${VAR:default} references in string values.

        Raises:
            ValueError: If a referenced variable without default is unset
        """
        if not isinstance(values, dict):
            return values
        return {key: _substitute(value) for key, value in values.items()}


class SystemConfig(BaseConfigModel):
    """Core system settings."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    environment: str = Field(default="development", description="Deployment environment")


class StoreConfig(BaseConfigModel):
    """Key-value store connection."""

    url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    key_prefix: str = Field(default="changelog_bot", description="Namespace for all keys")
    socket_timeout: float = Field(default=5.0, gt=0, le=60, description="Socket timeout (s)")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        parsed = urlparse(v)
        if parsed.scheme not in ("redis", "rediss", "unix", "memory"):
            raise ValueError(f"Unsupported store URL scheme: {parsed.scheme or '(none)'}")
        return v


class GitHubConfig(BaseConfigModel):
    """Watched repositories and GitHub API access."""

    token: str | None = Field(default=None, description="Optional GitHub API token")
    base_url: str = Field(default="https://api.github.com")
    upstream_owner: str = Field(default="marckrenn")
    upstream_repo: str = Field(default="claude-code-changelog")
    cli_repo_owner: str = Field(default="anthropics")
    cli_repo_name: str = Field(default="claude-code")
    tracked_files: list[str] = Field(default_factory=lambda: ["cc-prompt.md", "cc-flags.md"])
    timeout: int = Field(default=30, ge=1, le=300)
    max_retries: int = Field(default=3, ge=0, le=10)


class SummarizerConfig(BaseConfigModel):
    """Claude summarizer settings."""

    api_key: str = Field(default="", description="Anthropic API key")
    model: str = Field(default="claude-haiku-4-5")
    max_tokens: int = Field(default=2048, ge=256, le=16384)
    timeout: float = Field(default=60.0, gt=0, le=600)


class DeliveryConfig(BaseConfigModel):
    """Slack fan-out tuning."""

    batch_size: int = Field(default=10, ge=1, le=100, description="Concurrent recipients")
    message_delay: float = Field(
        default=1.1, ge=0, le=10, description="Delay between thread posts (s)"
    )
    timeout: float = Field(default=25.0, gt=0, le=300, description="Per-recipient budget (s)")
    retry_attempts: int = Field(default=3, ge=1, le=10)


class NotificationConfig(BaseConfigModel):
    """Run coordination settings."""

    lock_name: str = Field(default="notification")
    lock_ttl: int = Field(default=300, ge=30, le=3600, description="Lock TTL (s)")
    summary_ttl: int = Field(default=7 * 24 * 60 * 60, ge=60)
    failure_ttl: int = Field(default=7 * 24 * 60 * 60, ge=60)
    max_retries: int = Field(default=3, ge=1, le=10)
    languages: list[str] = Field(default_factory=lambda: list(SUPPORTED_LANGUAGES))
    default_language: str = Field(default=DEFAULT_LANGUAGE)

    @field_validator("languages")
    @classmethod
    def validate_languages(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("At least one language must be configured")
        unknown = [language for language in v if language not in SUPPORTED_LANGUAGES]
        if unknown:
            raise ValueError(f"Unsupported languages: {', '.join(unknown)}")
        return v

    @model_validator(mode="after")
    def validate_default_language(self) -> "NotificationConfig":
        if self.default_language not in self.languages:
            raise ValueError("default_language must be one of languages")
        return self


class Config(BaseConfigModel):
    """Root configuration."""

    system: SystemConfig = Field(default_factory=SystemConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    summarizer: SummarizerConfig = Field(default_factory=SummarizerConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    notification: NotificationConfig = Field(default_factory=NotificationConfig)

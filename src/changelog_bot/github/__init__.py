"""GitHub API client and the upstream changelog source."""

from .client import GitHubClient, GitHubClientConfig
from .exceptions import (
    GitHubAuthenticationError,
    GitHubConnectionError,
    GitHubError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubResponseError,
    GitHubServerError,
    GitHubTimeoutError,
)
from .source import ChangelogSource, SourceConfig, parse_changelog_section

__all__ = [
    "ChangelogSource",
    "GitHubAuthenticationError",
    "GitHubClient",
    "GitHubClientConfig",
    "GitHubConnectionError",
    "GitHubError",
    "GitHubNotFoundError",
    "GitHubRateLimitError",
    "GitHubResponseError",
    "GitHubServerError",
    "GitHubTimeoutError",
    "SourceConfig",
    "parse_changelog_section",
]

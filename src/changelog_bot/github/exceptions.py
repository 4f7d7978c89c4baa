"""Errors raised while talking to the GitHub REST API."""

from typing import Any


class GitHubError(Exception):
    """Base exception for GitHub API failures."""

    retryable = False

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: dict[str, Any] | None = None,
    ):
        """Initialize GitHub error.

        Args:
            message: Error message
            status_code: HTTP status code, if a response was received
            response_data: Decoded error body
        """
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data or {}


class GitHubAuthenticationError(GitHubError):
    """Credentials were rejected (401, or 403 without rate limiting)."""


class GitHubNotFoundError(GitHubError):
    """The repository, ref or file does not exist (404)."""


class GitHubRateLimitError(GitHubError):
    """The API rate limit is exhausted (403/429 with rate limit headers)."""

    retryable = True

    def __init__(
        self,
        message: str,
        status_code: int | None = 429,
        reset_time: int | None = None,
    ):
        """Initialize rate limit error.

        Args:
            message: Error message
            status_code: HTTP status code
            reset_time: Unix timestamp when the limit resets
        """
        super().__init__(message, status_code)
        self.reset_time = reset_time


class GitHubServerError(GitHubError):
    """GitHub answered with a 5xx status."""

    retryable = True


class GitHubConnectionError(GitHubError):
    """The connection to GitHub failed before a response arrived."""

    retryable = True


class GitHubTimeoutError(GitHubError):
    """The request exceeded its timeout budget."""

    retryable = True


class GitHubResponseError(GitHubError):
    """A successful response did not have the expected shape."""

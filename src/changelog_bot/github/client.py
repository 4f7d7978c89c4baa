"""Async GitHub REST client with retry and error classification."""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, urljoin

import aiohttp

from ..utils.retry import calculate_delay
from .exceptions import (
    GitHubAuthenticationError,
    GitHubConnectionError,
    GitHubError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubServerError,
    GitHubTimeoutError,
)

logger = logging.getLogger(__name__)


@dataclass
class GitHubClientConfig:
    """Configuration for GitHub client."""

    base_url: str = "https://api.github.com"
    token: str | None = None
    timeout: int = 30
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    user_agent: str = "changelog-bot/1.0"
    max_concurrent_requests: int = 10


class GitHubClient:
    """Async GitHub API client.

    Transient failures (connection errors, timeouts, 5xx, rate limiting) are
    retried with exponential backoff and jitter; other errors are raised on
    the first attempt.
    """

    def __init__(self, config: GitHubClientConfig | None = None) -> None:
        """Initialize GitHub client.

        Args:
            config: Client configuration; an anonymous client is used when
                no token is set
        """
        self.config = config or GitHubClientConfig()

        # HTTP session will be initialized on first use
        self._session: aiohttp.ClientSession | None = None
        self._session_lock = asyncio.Lock()
        self._request_semaphore = asyncio.Semaphore(self.config.max_concurrent_requests)

    async def __aenter__(self) -> "GitHubClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure HTTP session is initialized."""
        if self._session is None or self._session.closed:
            async with self._session_lock:
                if self._session is None or self._session.closed:
                    headers = {
                        "User-Agent": self.config.user_agent,
                        "Accept": "application/vnd.github+json",
                    }
                    if self.config.token:
                        headers["Authorization"] = f"Bearer {self.config.token}"

                    self._session = aiohttp.ClientSession(
                        timeout=aiohttp.ClientTimeout(total=self.config.timeout),
                        headers=headers,
                    )
        return self._session

    async def close(self) -> None:
        """Close HTTP session and cleanup resources."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Make an HTTP request and return the decoded JSON body.

        Raises:
            GitHubError: Various GitHub API errors
        """
        url = urljoin(self.config.base_url + "/", path.lstrip("/"))
        correlation_id = str(uuid.uuid4())[:8]
        session = await self._ensure_session()

        last_exception: GitHubError | None = None
        for attempt in range(self.config.max_retries + 1):
            try:
                async with self._request_semaphore:
                    start_time = time.time()
                    logger.debug(
                        f"GitHub API request [{correlation_id}] {method} {url} "
                        f"(attempt {attempt + 1})"
                    )

                    async with session.request(method, url, params=params) as response:
                        logger.debug(
                            f"GitHub API response [{correlation_id}] "
                            f"{response.status} in {time.time() - start_time:.2f}s"
                        )
                        if response.status in (200, 201):
                            return await response.json()
                        if response.status == 204:
                            return None
                        await self._handle_error_response(response, correlation_id)

            except GitHubError as e:
                if not e.retryable:
                    raise
                last_exception = e
            except TimeoutError:
                last_exception = GitHubTimeoutError(f"Request timeout for {method} {url}")
            except aiohttp.ClientError as e:
                last_exception = GitHubConnectionError(
                    f"Connection error for {method} {url}: {e}"
                )

            if attempt < self.config.max_retries:
                backoff_time = calculate_delay(
                    attempt, self.config.retry_base_delay, self.config.retry_max_delay
                )
                logger.warning(
                    f"Request [{correlation_id}] failed (attempt {attempt + 1}), "
                    f"retrying in {backoff_time:.1f}s: {last_exception}"
                )
                await asyncio.sleep(backoff_time)

        if last_exception:
            raise last_exception
        raise GitHubError(f"Request failed after {self.config.max_retries} retries")

    async def _handle_error_response(
        self, response: aiohttp.ClientResponse, correlation_id: str
    ) -> None:
        """Raise the error matching an unsuccessful response."""
        try:
            error_data = await response.json()
        except (json.JSONDecodeError, aiohttp.ContentTypeError):
            error_data = {"message": await response.text()}
        if not isinstance(error_data, dict):
            error_data = {"message": str(error_data)}

        error_message = error_data.get("message", f"HTTP {response.status}")
        logger.warning(
            f"GitHub API error [{correlation_id}] {response.status}: {error_message}"
        )

        remaining = response.headers.get("X-RateLimit-Remaining")
        if response.status == 429 or (
            response.status == 403
            and (remaining == "0" or "rate limit" in error_message.lower())
        ):
            reset_time = response.headers.get("X-RateLimit-Reset")
            raise GitHubRateLimitError(
                error_message,
                status_code=response.status,
                reset_time=int(reset_time) if reset_time else None,
            )
        if response.status in (401, 403):
            raise GitHubAuthenticationError(error_message, response.status, error_data)
        if response.status == 404:
            raise GitHubNotFoundError(error_message, response.status, error_data)
        if 500 <= response.status < 600:
            raise GitHubServerError(error_message, response.status, error_data)
        raise GitHubError(error_message, response.status, error_data)

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """Make GET request to GitHub API and return the JSON body."""
        return await self._request("GET", path, params)

    # Convenience methods for the endpoints the bot uses

    async def list_tags(self, owner: str, repo: str, per_page: int = 1) -> list[dict[str, Any]]:
        data = await self.get(f"/repos/{owner}/{repo}/tags", {"per_page": per_page})
        return data if isinstance(data, list) else []

    async def get_commit(self, owner: str, repo: str, ref: str) -> dict[str, Any]:
        return await self.get(f"/repos/{owner}/{repo}/commits/{quote(ref, safe='')}")

    async def compare_commits(
        self, owner: str, repo: str, base: str, head: str
    ) -> dict[str, Any]:
        basehead = f"{quote(base, safe='')}...{quote(head, safe='')}"
        return await self.get(f"/repos/{owner}/{repo}/compare/{basehead}")

    async def get_content(
        self, owner: str, repo: str, path: str, ref: str | None = None
    ) -> dict[str, Any]:
        params = {"ref": ref} if ref else None
        return await self.get(f"/repos/{owner}/{repo}/contents/{path}", params)

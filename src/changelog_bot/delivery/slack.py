"""Slack Web API transport for posting messages and thread replies."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import aiohttp

from ..utils.retry import with_retry

logger = logging.getLogger(__name__)

CREDENTIAL_INVALID_ERRORS = (
    "invalid_auth",
    "token_revoked",
    "account_inactive",
    "token_expired",
    "not_authed",
    "missing_scope",
)

FALLBACK_TEXT = "Slack notification"


class SlackApiError(Exception):
    """Slack answered with ``ok: false`` or an HTTP error."""

    def __init__(self, error_code: str, status: int | None = None):
        super().__init__(f"Slack API error: {error_code}")
        self.error_code = error_code
        self.status = status

    @property
    def retryable(self) -> bool:
        if self.status is not None:
            return self.status >= 500 or self.status == 429
        return self.error_code in ("ratelimited", "internal_error", "service_unavailable")


def is_credential_invalid(error: BaseException) -> bool:
    """True when ``error`` means the bot token was revoked or is unusable."""
    if isinstance(error, SlackApiError):
        return error.error_code in CREDENTIAL_INVALID_ERRORS
    message = str(error).lower()
    return any(code in message for code in CREDENTIAL_INVALID_ERRORS)


def extract_fallback_text(blocks: list[dict[str, Any]]) -> str:
    """Plain-text fallback for notifications, taken from the first text block."""
    for block in blocks:
        if block.get("type") in ("header", "section"):
            text = (block.get("text") or {}).get("text")
            if text:
                return text
    return FALLBACK_TEXT


@dataclass
class SlackTransportConfig:
    base_url: str = "https://slack.com/api"
    timeout: int = 10
    max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0


class SlackTransport:
    """Posts Block Kit messages with ``chat.postMessage``.

    The bot token is passed per call because every recipient workspace has
    its own installation token.
    """

    def __init__(self, config: SlackTransportConfig | None = None) -> None:
        self.config = config or SlackTransportConfig()
        self._session: aiohttp.ClientSession | None = None
        self._session_lock = asyncio.Lock()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            async with self._session_lock:
                if self._session is None or self._session.closed:
                    self._session = aiohttp.ClientSession(
                        timeout=aiohttp.ClientTimeout(total=self.config.timeout)
                    )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _post_once(self, token: str, payload: dict[str, Any]) -> str:
        session = await self._ensure_session()
        url = f"{self.config.base_url}/chat.postMessage"
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json; charset=utf-8",
        }
        async with session.post(url, json=payload, headers=headers) as response:
            if response.status >= 400:
                raise SlackApiError(f"http_{response.status}", status=response.status)
            data = await response.json()

        if not data.get("ok"):
            raise SlackApiError(data.get("error") or "unknown_error")
        ts = data.get("ts")
        if not ts:
            raise SlackApiError("missing_ts")
        return ts

    async def _post(
        self,
        token: str,
        channel: str,
        blocks: list[dict[str, Any]],
        thread_ts: str | None = None,
    ) -> str:
        payload: dict[str, Any] = {
            "channel": channel,
            "blocks": blocks,
            "text": extract_fallback_text(blocks),
        }
        if thread_ts:
            payload["thread_ts"] = thread_ts

        return await with_retry(
            lambda: self._post_once(token, payload),
            max_attempts=self.config.max_attempts,
            base_delay=self.config.retry_base_delay,
            max_delay=self.config.retry_max_delay,
        )

    async def post_message(
        self, token: str, channel: str, blocks: list[dict[str, Any]]
    ) -> str:
        """Post a top-level message and return its ``ts`` handle."""
        return await self._post(token, channel, blocks)

    async def post_reply(
        self,
        token: str,
        channel: str,
        blocks: list[dict[str, Any]],
        thread_ts: str,
    ) -> str:
        """Post a reply in the thread of ``thread_ts``."""
        return await self._post(token, channel, blocks, thread_ts=thread_ts)

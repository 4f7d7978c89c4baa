"""
Unit tests for the Slack transport.

Why: Every announcement goes through chat.postMessage; error codes decide
     whether a delivery is retried, failed or the recipient deactivated.

What: Tests payload construction, thread replies, error translation, retry
      of transient failures and credential error detection.

How: Uses aioresponses to mock the Slack Web API and patches the retry
     sleep.
"""

from unittest.mock import AsyncMock, patch

import pytest
from aioresponses import aioresponses
from yarl import URL

from changelog_bot.delivery import (
    SlackApiError,
    SlackTransport,
    is_credential_invalid,
)
from changelog_bot.delivery.slack import FALLBACK_TEXT, extract_fallback_text

POST_MESSAGE = "https://slack.com/api/chat.postMessage"
BLOCKS = [{"type": "section", "text": {"type": "mrkdwn", "text": "*Claude Code v1.0.0*"}}]


@pytest.fixture
async def transport():
    transport = SlackTransport()
    yield transport
    await transport.close()


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("changelog_bot.utils.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


def sent_requests(m: aioresponses) -> list:
    return m.requests[("POST", URL(POST_MESSAGE))]


class TestSlackTransport:
    """Tests for SlackTransport."""

    async def test_post_message_returns_ts(self, transport):
        """
        Why: The main message ts anchors every thread reply
        What: post_message() returns ts and sends token, channel, blocks and fallback text
        How: Mocks a successful response and inspects the request
        """
        with aioresponses() as m:
            m.post(POST_MESSAGE, payload={"ok": True, "ts": "1700000000.0001"})

            ts = await transport.post_message("xoxb-T1", "C1", BLOCKS)

            call = sent_requests(m)[0]

        assert ts == "1700000000.0001"
        assert call.kwargs["headers"]["Authorization"] == "Bearer xoxb-T1"
        assert call.kwargs["json"] == {
            "channel": "C1",
            "blocks": BLOCKS,
            "text": "*Claude Code v1.0.0*",
        }

    async def test_post_reply_sets_thread_ts(self, transport):
        with aioresponses() as m:
            m.post(POST_MESSAGE, payload={"ok": True, "ts": "2"})

            await transport.post_reply("xoxb-T1", "C1", BLOCKS, thread_ts="1")

            call = sent_requests(m)[0]

        assert call.kwargs["json"]["thread_ts"] == "1"

    async def test_error_response_raises_slack_api_error(self, transport, no_sleep):
        """
        Why: Permanent Slack errors must fail fast
        What: ok=false with a non-transient code raises without retry
        How: Mocks a channel_not_found response
        """
        with aioresponses() as m:
            m.post(POST_MESSAGE, payload={"ok": False, "error": "channel_not_found"})

            with pytest.raises(SlackApiError) as exc_info:
                await transport.post_message("xoxb-T1", "C1", BLOCKS)

        assert exc_info.value.error_code == "channel_not_found"
        no_sleep.assert_not_awaited()

    async def test_missing_ts_is_an_error(self, transport):
        with aioresponses() as m:
            m.post(POST_MESSAGE, payload={"ok": True})

            with pytest.raises(SlackApiError, match="missing_ts"):
                await transport.post_message("xoxb-T1", "C1", BLOCKS)

    async def test_transient_failure_is_retried(self, transport, no_sleep):
        """
        Why: Slack 5xx and rate limiting are usually short lived
        What: A 503 followed by success returns the ts
        How: Registers a failing and a successful response
        """
        with aioresponses() as m:
            m.post(POST_MESSAGE, status=503)
            m.post(POST_MESSAGE, payload={"ok": True, "ts": "3"})

            assert await transport.post_message("xoxb-T1", "C1", BLOCKS) == "3"

        assert no_sleep.await_count == 1

    async def test_ratelimited_code_exhausts_attempts(self, transport):
        with aioresponses() as m:
            m.post(POST_MESSAGE, payload={"ok": False, "error": "ratelimited"}, repeat=True)

            with pytest.raises(SlackApiError):
                await transport.post_message("xoxb-T1", "C1", BLOCKS)

            assert len(sent_requests(m)) == 3


class TestSlackErrors:
    """Tests for error classification helpers."""

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (SlackApiError("invalid_auth"), True),
            (SlackApiError("token_revoked"), True),
            (SlackApiError("channel_not_found"), False),
            (RuntimeError("An API error occurred: account_inactive"), True),
            (RuntimeError("timeout"), False),
        ],
    )
    def test_is_credential_invalid(self, error, expected):
        assert is_credential_invalid(error) is expected

    def test_retryable(self):
        assert SlackApiError("http_502", status=502).retryable is True
        assert SlackApiError("http_404", status=404).retryable is False
        assert SlackApiError("internal_error").retryable is True
        assert SlackApiError("invalid_auth").retryable is False

    def test_extract_fallback_text(self):
        assert extract_fallback_text(BLOCKS) == "*Claude Code v1.0.0*"
        assert extract_fallback_text([{"type": "divider"}]) == FALLBACK_TEXT

"""
Unit tests for the recipient notifier.

Why: Delivery fans out to many workspaces; one workspace's failure must
     never affect another's, and revoked installations must be deactivated.

What: Tests the thread posting sequence, language fallback, failure
      isolation, credential-invalid deactivation, timeouts, reply spacing
      and bounded batch concurrency.

How: Uses an AsyncMock transport and the real registry on the in-memory
     store. message_delay is zero except where reply spacing is checked.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from changelog_bot.delivery import RecipientNotifier, SlackApiError, SummaryUnavailableError
from changelog_bot.models import NotificationMessage
from changelog_bot.registry import RecipientRegistry
from tests.factories import make_recipient, make_summary


def make_message(language: str = "en") -> NotificationMessage:
    return NotificationMessage(
        version="v1.0.0",
        summary=make_summary(language=language),
        compare_url="https://github.com/o/r/compare/v0.9.0...v1.0.0",
        cli_compare_url="https://github.com/anthropics/claude-code/releases/tag/v1.0.0",
    )


@pytest.fixture
def transport() -> AsyncMock:
    transport = AsyncMock()
    transport.post_message.return_value = "1700000000.0001"
    transport.post_reply.return_value = "1700000000.0002"
    return transport


@pytest.fixture
def registry(memory_store) -> RecipientRegistry:
    return RecipientRegistry(memory_store)


@pytest.fixture
def notifier(transport, registry) -> RecipientNotifier:
    return RecipientNotifier(
        transport,
        registry,
        cli_repo_path="anthropics/claude-code",
        upstream_repo_path="o/r",
        batch_size=2,
        message_delay=0,
    )


SUMMARIES = {"en": make_summary(), "ko": make_summary(language="ko")}


class TestSendToRecipient:
    """Tests for single recipient delivery."""

    async def test_posts_main_message_then_replies_in_thread(self, notifier, transport):
        """
        Why: Replies must hang off the main message
        What: One main message and one reply per non-empty category, all threaded
        How: Delivers the factory summary with cli, prompt and added flags
        """
        recipient = make_recipient("T1")

        result = await notifier.send_to_recipient(recipient, make_message())

        assert result.success
        transport.post_message.assert_awaited_once()
        assert transport.post_message.await_args.args[:2] == ("xoxb-T1", "C-T1")
        assert transport.post_reply.await_count == 3
        for call in transport.post_reply.await_args_list:
            assert call.args[3] == "1700000000.0001"

    async def test_failure_returns_result_without_raising(self, notifier, transport):
        transport.post_message.side_effect = SlackApiError("channel_not_found")

        result = await notifier.send_to_recipient(make_recipient("T1"), make_message())

        assert result.success is False
        assert result.deactivated is False
        assert result.reason == "Slack API error: channel_not_found"

    async def test_credential_invalid_deactivates_recipient(
        self, notifier, transport, registry
    ):
        """
        Why: A revoked token will never work again
        What: The recipient is deactivated and the result says so
        How: Registers the team and fails with invalid_auth
        """
        await registry.upsert("T1", "Team T1", "xoxb-T1", "C-T1")
        recipient = await registry.get("T1")
        transport.post_message.side_effect = SlackApiError("invalid_auth")

        result = await notifier.send_to_recipient(recipient, make_message())

        assert result.deactivated is True
        assert await registry.list_active() == []

    async def test_deactivation_failure_is_contained(self, transport):
        """Test that a registry failure during deactivation is logged, not raised."""
        registry = AsyncMock()
        registry.deactivate.side_effect = RuntimeError("store down")
        notifier = RecipientNotifier(
            transport, registry, cli_repo_path="a/b", upstream_repo_path="o/r", message_delay=0
        )
        transport.post_message.side_effect = SlackApiError("token_revoked")

        result = await notifier.send_to_recipient(make_recipient("T1"), make_message())

        assert result.success is False
        assert result.deactivated is False

    async def test_slow_delivery_times_out(self, registry, transport):
        """
        Why: A hung Slack call must not stall the whole fan-out
        What: Delivery fails with a timeout after the configured budget
        How: Makes post_message sleep past a tiny timeout
        """

        async def hang(*args):
            await asyncio.sleep(1)

        transport.post_message.side_effect = hang
        notifier = RecipientNotifier(
            transport, registry, cli_repo_path="a/b", upstream_repo_path="o/r", timeout=0.01
        )

        result = await notifier.send_to_recipient(make_recipient("T1"), make_message())

        assert result.success is False
        assert isinstance(result.error, TimeoutError)

    async def test_replies_spaced_by_message_delay(self, registry, transport):
        """
        Why: Slack rate limits posts per channel
        What: The notifier waits message_delay before every thread reply,
              starting after the parent post
        How: Records posts and patched sleeps in one ordered event list
        """
        events = []

        async def post_message(token, channel, blocks):
            events.append("main")
            return "1700000000.0001"

        async def post_reply(token, channel, blocks, thread_ts):
            events.append("reply")
            return "1700000000.0002"

        async def sleep(delay):
            events.append(("sleep", delay))

        transport.post_message.side_effect = post_message
        transport.post_reply.side_effect = post_reply
        notifier = RecipientNotifier(
            transport, registry, cli_repo_path="a/b", upstream_repo_path="o/r", message_delay=1.1
        )

        with patch("changelog_bot.delivery.notifier.asyncio.sleep", side_effect=sleep):
            result = await notifier.send_to_recipient(make_recipient("T1"), make_message())

        assert result.success
        assert events == ["main"] + [("sleep", 1.1), "reply"] * 3

    def test_rejects_invalid_batch_size(self, transport, registry):
        with pytest.raises(ValueError):
            RecipientNotifier(
                transport, registry, cli_repo_path="a/b", upstream_repo_path="o/r", batch_size=0
            )


class TestDeliver:
    """Tests for language resolution in deliver()."""

    async def test_uses_recipient_language(self, notifier, transport):
        await notifier.deliver(make_recipient("T1", language="ko"), make_message(), SUMMARIES)

        main_text = transport.post_message.await_args.args[2][0]["text"]["text"]
        assert "버전이 출시되었습니다." in main_text
        assert SUMMARIES["ko"].summary in main_text

    async def test_falls_back_to_available_language(self, notifier, transport):
        """
        Why: A failed Korean summary should not leave Korean workspaces uninformed
        What: The English summary is delivered with English chrome
        How: Delivers to a ko recipient with only en available
        """
        result = await notifier.deliver(
            make_recipient("T1", language="ko"), make_message(), {"en": SUMMARIES["en"]}
        )

        assert result.success
        main_text = transport.post_message.await_args.args[2][0]["text"]["text"]
        assert main_text.startswith("*Claude Code v1.0.0* is out.")

    async def test_no_summary_available(self, notifier, transport):
        result = await notifier.deliver(make_recipient("T1"), make_message(), {})

        assert result.success is False
        assert isinstance(result.error, SummaryUnavailableError)
        transport.post_message.assert_not_awaited()


class TestSendToAll:
    """Tests for fan-out delivery."""

    async def test_one_failure_does_not_affect_others(self, notifier, transport):
        """
        Why: Recipients are independent
        What: With five recipients and one failing, four succeed and results keep order
        How: Fails post_message for T3 only, across three batches of two
        """
        recipients = [make_recipient(f"T{i}", installed_offset_minutes=i) for i in range(1, 6)]

        async def post_message(token, channel, blocks):
            if token == "xoxb-T3":
                raise SlackApiError("channel_not_found")
            return f"ts-{token}"

        transport.post_message.side_effect = post_message

        results = await notifier.send_to_all(recipients, make_message(), SUMMARIES)

        assert [r.recipient.team_id for r in results] == ["T1", "T2", "T3", "T4", "T5"]
        assert [r.success for r in results] == [True, True, False, True, True]

    async def test_concurrency_bounded_by_batch_size(self, notifier, transport):
        """
        Why: Fan-out must not open an unbounded number of Slack calls at once
        What: At most batch_size deliveries are in flight, and every batch
              actually runs concurrently
        How: Counts overlapping post_message calls across five recipients in
             batches of two
        """
        in_flight = 0
        peak = 0

        async def post_message(token, channel, blocks):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return f"ts-{token}"

        transport.post_message.side_effect = post_message
        recipients = [make_recipient(f"T{i}", installed_offset_minutes=i) for i in range(1, 6)]

        results = await notifier.send_to_all(recipients, make_message(), SUMMARIES)

        assert all(r.success for r in results)
        assert transport.post_message.await_count == 5
        assert peak == notifier.batch_size == 2

    async def test_unexpected_exception_becomes_failed_result(self, notifier, monkeypatch):
        """Test that an exception escaping deliver() is still reported per recipient."""
        monkeypatch.setattr(notifier, "deliver", AsyncMock(side_effect=RuntimeError("bug")))

        results = await notifier.send_to_all([make_recipient("T1")], make_message(), SUMMARIES)

        assert len(results) == 1
        assert results[0].success is False
        assert results[0].reason == "bug"

    async def test_empty_recipient_list(self, notifier):
        assert await notifier.send_to_all([], make_message(), SUMMARIES) == []

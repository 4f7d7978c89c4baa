"""
Unit tests for the notification orchestrator.

Why: The orchestrator ties every component together; its decisions about
     when to advance the version pointer and when to retry are what keep
     workspaces from being spammed or silently skipped.

What: Tests each pass outcome, outcome recording, bounded retry of earlier
      failures and the never-raise contract of run_notification_pass().

How: Wires the real coordination components on an in-memory store with a
     mocked changelog source, summarizer and Slack transport.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from changelog_bot.coordination import (
    DistributedLock,
    FailureTracker,
    MetricsRecorder,
    VersionStateTracker,
)
from changelog_bot.delivery import RecipientNotifier, SlackApiError
from changelog_bot.github import GitHubServerError
from changelog_bot.models import ExternalChangelog, FailedDelivery, TagInfo
from changelog_bot.registry import RecipientRegistry
from changelog_bot.store import StoreConnectionError
from changelog_bot.summaries import SummaryCache
from changelog_bot.summarizer import SummaryGenerationError
from changelog_bot.workers import (
    NotificationOrchestrator,
    OrchestratorConfig,
    RunOutcome,
    RunPhase,
)
from tests.factories import make_diff, make_summary

CLI_RELEASE_URL = "https://github.com/anthropics/claude-code/releases/tag/v1.0.1"


@pytest.fixture
def source() -> MagicMock:
    source = MagicMock()
    source.get_latest_version = AsyncMock(
        return_value=TagInfo(name="v1.0.1", commit_sha="abc", date="2025-01-02T00:00:00Z")
    )
    source.get_diff = AsyncMock(side_effect=lambda from_v, to_v: make_diff(from_v, to_v))
    source.get_external_changelog = AsyncMock(
        return_value=ExternalChangelog(items=["Added `--resume` option"], compare_url=CLI_RELEASE_URL)
    )
    source.version_url = MagicMock(side_effect=lambda v: f"https://github.com/o/r/compare/{v}")
    source.release_url = MagicMock(
        side_effect=lambda v: f"https://github.com/anthropics/claude-code/releases/tag/{v}"
    )
    return source


@pytest.fixture
def summarizer() -> AsyncMock:
    summarizer = AsyncMock()
    summarizer.generate.side_effect = lambda language, diff, items: make_summary(
        diff.to_version, language
    )
    return summarizer


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
def orchestrator(memory_store, registry, source, summarizer, transport):
    return NotificationOrchestrator(
        lock=DistributedLock(memory_store),
        state=VersionStateTracker(memory_store),
        cache=SummaryCache(memory_store),
        registry=registry,
        failures=FailureTracker(memory_store),
        metrics=MetricsRecorder(memory_store),
        source=source,
        summarizer=summarizer,
        notifier=RecipientNotifier(
            transport,
            registry,
            cli_repo_path="anthropics/claude-code",
            upstream_repo_path="o/r",
            message_delay=0,
        ),
        config=OrchestratorConfig(lock_ttl_seconds=60),
    )


async def add_recipient(registry: RecipientRegistry, team_id: str, language: str = "en"):
    return await registry.upsert(
        team_id, f"Team {team_id}", f"xoxb-{team_id}", f"C-{team_id}", language=language
    )


def fail_tokens(**errors: str):
    """post_message side effect failing for the given bot tokens."""

    async def post_message(token, channel, blocks):
        if token in errors:
            raise SlackApiError(errors[token])
        return f"ts-{token}"

    return post_message


class TestRunNotificationPass:
    """Tests for the pass outcomes."""

    async def test_lock_denied_skips_everything(self, orchestrator, memory_store, source):
        """
        Why: A concurrent pass must not notify anyone a second time
        What: The pass ends with LOCK_DENIED before touching the source
        How: Holds the notification lock before running the pass
        """
        await DistributedLock(memory_store).acquire("notification", 60)

        report = await orchestrator.run_notification_pass()

        assert report.outcome is RunOutcome.LOCK_DENIED
        assert report.phase is RunPhase.IDLE
        source.get_latest_version.assert_not_awaited()

    async def test_no_new_version(self, orchestrator, source, summarizer):
        await orchestrator.state.set_last_checked_version("v1.0.1")

        report = await orchestrator.run_notification_pass()

        assert report.outcome is RunOutcome.NO_NEW_VERSION
        source.get_diff.assert_not_awaited()
        summarizer.generate.assert_not_awaited()

    async def test_no_tags(self, orchestrator, source):
        source.get_latest_version.return_value = None

        report = await orchestrator.run_notification_pass()

        assert report.outcome is RunOutcome.NO_NEW_VERSION

    async def test_no_recipients_advances_version(self, orchestrator, summarizer):
        """
        Why: With nobody to notify the version is still considered handled
        What: The pointer moves to the new version without generating summaries
        How: Runs a pass with an empty registry
        """
        report = await orchestrator.run_notification_pass()

        assert report.outcome is RunOutcome.NO_RECIPIENTS
        assert await orchestrator.state.get_last_checked_version() == "v1.0.1"
        summarizer.generate.assert_not_awaited()

    async def test_no_relevant_changes_advances_version(
        self, orchestrator, registry, source, transport
    ):
        """
        Why: Releases that touch neither tracked files nor release notes are not announced
        What: The pass advances the pointer without delivering
        How: Returns an empty diff and an empty changelog
        """
        await add_recipient(registry, "T1")
        source.get_diff.side_effect = lambda f, t: make_diff(f, t, with_files=False)
        source.get_external_changelog.return_value = ExternalChangelog.empty()

        report = await orchestrator.run_notification_pass()

        assert report.outcome is RunOutcome.NO_RELEVANT_CHANGES
        assert await orchestrator.state.get_last_checked_version() == "v1.0.1"
        transport.post_message.assert_not_awaited()

    async def test_no_summaries_keeps_version(self, orchestrator, registry, summarizer):
        """
        Why: A version must not be marked handled if nobody could be told about it
        What: NO_SUMMARIES leaves the pointer unchanged and records an error
        How: Makes every generation fail
        """
        await add_recipient(registry, "T1")
        summarizer.generate.side_effect = SummaryGenerationError("model down")

        report = await orchestrator.run_notification_pass()

        assert report.outcome is RunOutcome.NO_SUMMARIES
        assert await orchestrator.state.get_last_checked_version() is None
        metrics = await orchestrator.metrics.get_metrics()
        assert metrics.last_error == "Failed to generate any summaries, cannot proceed"

    async def test_delivered_pass_records_outcomes(
        self, orchestrator, registry, source, transport
    ):
        """
        Why: Each delivery outcome decides the recipient's retry state
        What: Successes are cleared, plain failures recorded, deactivations not retried
        How: Delivers to four recipients, two of which fail differently
        """
        await add_recipient(registry, "T1", "en")
        await add_recipient(registry, "T2", "ko")
        await add_recipient(registry, "T3", "en")
        await add_recipient(registry, "T4", "en")
        transport.post_message.side_effect = fail_tokens(
            **{"xoxb-T3": "channel_not_found", "xoxb-T4": "invalid_auth"}
        )

        report = await orchestrator.run_notification_pass()

        assert report.outcome is RunOutcome.DELIVERED
        assert report.version == "v1.0.1"
        assert report.languages == ["en", "ko"]
        assert (report.success_count, report.fail_count) == (2, 2)
        source.get_diff.assert_awaited_once_with("v1.0.0", "v1.0.1")

        failures = await orchestrator.failures.list_all()
        assert [(f.recipient_id, f.version, f.reason) for f in failures] == [
            ("T3", "v1.0.1", "Slack API error: channel_not_found")
        ]
        assert [r.team_id for r in await registry.list_active()] == ["T1", "T2", "T3"]

        assert await orchestrator.state.get_last_checked_version() == "v1.0.1"
        assert await orchestrator.state.get_last_notification_time() is not None
        metrics = await orchestrator.metrics.get_metrics()
        assert (metrics.total_runs, metrics.success_count, metrics.fail_count) == (1, 2, 2)

    async def test_recipients_receive_their_language(self, orchestrator, registry, transport):
        await add_recipient(registry, "T1", "en")
        await add_recipient(registry, "T2", "ko")

        await orchestrator.run_notification_pass()

        texts = {
            call.args[0]: call.args[2][0]["text"]["text"]
            for call in transport.post_message.await_args_list
        }
        assert "is out." in texts["xoxb-T1"]
        assert "버전이 출시되었습니다." in texts["xoxb-T2"]

    async def test_summaries_reused_on_second_pass(
        self, orchestrator, registry, summarizer, memory_store
    ):
        """
        Why: Summary generation is paid at most once per version and language
        What: A re-run of the same version generates nothing new
        How: Runs a pass, resets the pointer and runs again
        """
        await add_recipient(registry, "T1")

        await orchestrator.run_notification_pass()
        await orchestrator.state.delete_state("last_checked_version")
        await orchestrator.run_notification_pass()

        assert summarizer.generate.await_count == 2

    async def test_upstream_failure_reports_failed(self, orchestrator, source, memory_store):
        """
        Why: A pass must never crash the process, and the lock must be freed
        What: A GitHub error yields FAILED with the error recorded in metrics
        How: Makes version detection raise, then re-acquires the lock
        """
        source.get_latest_version.side_effect = GitHubServerError("Bad Gateway", 502)

        report = await orchestrator.run_notification_pass()

        assert report.outcome is RunOutcome.FAILED
        assert report.error == "Bad Gateway"
        assert RunPhase.RELEASING_LOCK in report.phases
        metrics = await orchestrator.metrics.get_metrics()
        assert metrics.last_error == "Notification pass failed: Bad Gateway"
        assert await DistributedLock(memory_store).acquire("notification", 60) is not None

    async def test_store_failure_reports_failed(self, orchestrator, monkeypatch):
        monkeypatch.setattr(
            orchestrator.state,
            "get_last_checked_version",
            AsyncMock(side_effect=StoreConnectionError("Redis unreachable", "get")),
        )

        report = await orchestrator.run_notification_pass()

        assert report.outcome is RunOutcome.FAILED
        assert report.error == "Redis unreachable"

    async def test_default_language_leads_fallback_order(
        self, orchestrator, registry, monkeypatch
    ):
        """
        Why: Operators choose which language stands in when a recipient's
             language is missing
        What: The configured default language is the first summary handed to
              the notifier and backs the base message
        How: Sets default_language to ko and spies on send_to_all
        """
        await add_recipient(registry, "T1", "en")
        orchestrator.config.default_language = "ko"
        send_to_all = AsyncMock(wraps=orchestrator.notifier.send_to_all)
        monkeypatch.setattr(orchestrator.notifier, "send_to_all", send_to_all)

        report = await orchestrator.run_notification_pass()

        assert report.outcome is RunOutcome.DELIVERED
        _, base_message, summaries = send_to_all.await_args.args
        assert list(summaries) == ["ko", "en"]
        assert base_message.summary == make_summary("v1.0.1", "ko")

    async def test_missing_default_language_falls_back_to_available(
        self, orchestrator, registry, summarizer, monkeypatch
    ):
        await add_recipient(registry, "T1", "ko")

        def korean_only(language, diff, items):
            if language != "ko":
                raise SummaryGenerationError("model down")
            return make_summary(diff.to_version, language)

        summarizer.generate.side_effect = korean_only
        send_to_all = AsyncMock(wraps=orchestrator.notifier.send_to_all)
        monkeypatch.setattr(orchestrator.notifier, "send_to_all", send_to_all)

        report = await orchestrator.run_notification_pass()

        assert report.outcome is RunOutcome.DELIVERED
        _, base_message, summaries = send_to_all.await_args.args
        assert list(summaries) == ["ko"]
        assert base_message.summary == make_summary("v1.0.1", "ko")

    @pytest.mark.parametrize(
        "config",
        [OrchestratorConfig(max_retries=0), OrchestratorConfig(default_language="fr")],
    )
    def test_invalid_config_rejected(self, config):
        with pytest.raises(ValueError):
            config.validate()


class TestRetryFailedDeliveries:
    """Tests for the retry phase."""

    @pytest.fixture
    async def cached_version(self, orchestrator):
        await orchestrator.cache.set("v1.0.0", "en", make_summary("v1.0.0", "en"))
        await orchestrator.cache.set("v1.0.0", "ko", make_summary("v1.0.0", "ko"))

    async def test_bounded_retry(self, orchestrator, registry, transport, cached_version):
        """
        Why: Failing workspaces are retried a bounded number of times
        What: Exhausted and inactive records are dropped, a success is cleared,
              a failure is counted up from 2 to 3
        How: Seeds four failure records and fails delivery for T3
        """
        for team_id in ("T1", "T2", "T3"):
            await add_recipient(registry, team_id)
        failures = orchestrator.failures
        await failures.record(FailedDelivery("T1", "v1.0.0", "timeout", retry_count=3))
        await failures.record(FailedDelivery("T2", "v1.0.0", "timeout", retry_count=2))
        await failures.record(FailedDelivery("T3", "v1.0.0", "timeout", retry_count=2))
        await failures.record(FailedDelivery("T9", "v1.0.0", "timeout"))
        transport.post_message.side_effect = fail_tokens(**{"xoxb-T3": "channel_not_found"})

        report = await orchestrator.retry_failed_deliveries()

        assert (report.attempted, report.succeeded, report.failed, report.removed) == (2, 1, 1, 2)
        tokens = [call.args[0] for call in transport.post_message.await_args_list]
        assert sorted(tokens) == ["xoxb-T2", "xoxb-T3"]
        remaining = await failures.list_all()
        assert [(f.recipient_id, f.retry_count) for f in remaining] == [("T3", 3)]
        assert remaining[0].reason == "Slack API error: channel_not_found"

    async def test_retry_uses_version_links(self, orchestrator, registry, transport, cached_version):
        await add_recipient(registry, "T1")
        await orchestrator.failures.record(FailedDelivery("T1", "v1.0.0", "timeout"))

        await orchestrator.retry_failed_deliveries()

        reply_texts = [
            call.args[2][-1]["elements"][0]["text"]
            for call in transport.post_reply.await_args_list
            if len(call.args[2]) > 1
        ]
        assert any("https://github.com/o/r/compare/v1.0.0" in text for text in reply_texts)

    async def test_missing_summaries_drop_records(self, orchestrator, registry, transport):
        """
        Why: Without a cached summary there is nothing to re-send
        What: Records for an uncached version are removed without delivery
        How: Seeds a failure for a version that has no cache entries
        """
        await add_recipient(registry, "T1")
        await orchestrator.failures.record(FailedDelivery("T1", "v0.5.0", "timeout"))

        report = await orchestrator.retry_failed_deliveries()

        assert report.removed == 1
        assert await orchestrator.failures.list_all() == []
        transport.post_message.assert_not_awaited()

    async def test_deactivated_during_retry_is_removed(
        self, orchestrator, registry, transport, cached_version
    ):
        await add_recipient(registry, "T1")
        await orchestrator.failures.record(FailedDelivery("T1", "v1.0.0", "timeout"))
        transport.post_message.side_effect = fail_tokens(**{"xoxb-T1": "token_revoked"})

        report = await orchestrator.retry_failed_deliveries()

        assert report.removed == 1
        assert await orchestrator.failures.list_all() == []
        assert await registry.list_active() == []

    async def test_retry_runs_at_start_of_pass(
        self, orchestrator, registry, transport, cached_version
    ):
        """
        Why: Earlier failures are retried even when no new version exists
        What: A pass with no new version still retries outstanding failures
        How: Seeds a failure and marks the latest version as already handled
        """
        await add_recipient(registry, "T1")
        await orchestrator.failures.record(FailedDelivery("T1", "v1.0.0", "timeout"))
        await orchestrator.state.set_last_checked_version("v1.0.1")

        report = await orchestrator.run_notification_pass()

        assert report.outcome is RunOutcome.NO_NEW_VERSION
        assert report.retry.succeeded == 1
        assert await orchestrator.failures.list_all() == []

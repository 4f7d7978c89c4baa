"""Notification run orchestration.

One pass of the bot, guarded by a distributed lock:

1. retry deliveries that failed in earlier passes
2. detect whether the upstream has a version newer than the last checked one
3. fetch the diff and the CLI changelog for it
4. produce (or reuse) a summary per supported language
5. deliver to all active recipients and record the outcomes
6. advance the version pointer

The version pointer only moves once the pass has reached a decision: nothing
relevant changed, nobody to notify, or delivery was attempted. A pass that
cannot produce any summary leaves it untouched so the next pass retries the
same version.
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ..coordination.failures import MAX_RETRIES, FailureTracker
from ..coordination.lock import DEFAULT_LOCK_TTL, DistributedLock
from ..coordination.metrics import MetricsRecorder
from ..coordination.state import VersionStateTracker, find_previous_tag, is_newer
from ..delivery.notifier import RecipientNotifier
from ..github.source import ChangelogSource
from ..models import (
    DEFAULT_LANGUAGE,
    SUPPORTED_LANGUAGES,
    ChangeSummary,
    DeliveryResult,
    FailedDelivery,
    Language,
    NotificationMessage,
    utc_now,
)
from ..registry.recipients import RecipientRegistry
from ..summaries.cache import SummaryCache
from ..summarizer.base import Summarizer
from ..utils.best_effort import best_effort

logger = logging.getLogger(__name__)

DEFAULT_LOCK_NAME = "notification"


class RunPhase(str, Enum):
    """States of a notification pass."""

    IDLE = "idle"
    LOCK_ACQUIRING = "lock_acquiring"
    LOCK_DENIED = "lock_denied"
    RETRYING_FAILURES = "retrying_failures"
    DETECTING_VERSION = "detecting_version"
    NO_NEW_VERSION = "no_new_version"
    FETCHING_DIFF = "fetching_diff"
    NO_RELEVANT_CHANGES = "no_relevant_changes"
    GENERATING_SUMMARIES = "generating_summaries"
    NO_SUMMARIES = "no_summaries"
    DELIVERING = "delivering"
    RECORDING_OUTCOMES = "recording_outcomes"
    RELEASING_LOCK = "releasing_lock"


class RunOutcome(str, Enum):
    """How a notification pass ended."""

    LOCK_DENIED = "lock_denied"
    NO_NEW_VERSION = "no_new_version"
    NO_RECIPIENTS = "no_recipients"
    NO_RELEVANT_CHANGES = "no_relevant_changes"
    NO_SUMMARIES = "no_summaries"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass
class OrchestratorConfig:
    """Configuration for the notification pass."""

    lock_name: str = DEFAULT_LOCK_NAME
    lock_ttl_seconds: int = DEFAULT_LOCK_TTL
    max_retries: int = MAX_RETRIES
    default_language: Language = DEFAULT_LANGUAGE

    def validate(self) -> None:
        if not self.lock_name:
            raise ValueError("lock_name must not be empty")
        if self.lock_ttl_seconds < 1:
            raise ValueError("lock_ttl_seconds must be positive")
        if self.max_retries < 1:
            raise ValueError("max_retries must be positive")
        if self.default_language not in SUPPORTED_LANGUAGES:
            raise ValueError(f"Unsupported default_language: {self.default_language}")


@dataclass
class RetryReport:
    """Results of the retry phase."""

    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    removed: int = 0


@dataclass
class RunReport:
    """What happened during one pass."""

    run_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    phase: RunPhase = RunPhase.IDLE
    phases: list[RunPhase] = field(default_factory=list)
    outcome: RunOutcome | None = None
    started_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None

    version: str | None = None
    previous_version: str | None = None
    languages: list[Language] = field(default_factory=list)
    results: list[DeliveryResult] = field(default_factory=list)
    retry: RetryReport = field(default_factory=RetryReport)
    error: str | None = None

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def fail_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def duration_seconds(self) -> float:
        end_time = self.completed_at or utc_now()
        return (end_time - self.started_at).total_seconds()

    def update_phase(self, phase: RunPhase) -> None:
        self.phase = phase
        self.phases.append(phase)
        logger.debug(f"Run {self.run_id} entered phase {phase.value}")

    def finish(self, outcome: RunOutcome) -> None:
        self.outcome = outcome
        self.completed_at = utc_now()


def _default_first(
    summaries: dict[Language, ChangeSummary], default_language: Language
) -> dict[Language, ChangeSummary]:
    """Order summaries so that the default language is the first fallback."""
    if default_language not in summaries:
        logger.warning(f"{default_language} summary not available, using fallback")
        return summaries
    return {default_language: summaries[default_language], **summaries}


class NotificationOrchestrator:
    """Runs notification passes.

    Every collaborator is injected; passes share no in-process state, all
    coordination between processes goes through the store.
    """

    def __init__(
        self,
        *,
        lock: DistributedLock,
        state: VersionStateTracker,
        cache: SummaryCache,
        registry: RecipientRegistry,
        failures: FailureTracker,
        metrics: MetricsRecorder,
        source: ChangelogSource,
        summarizer: Summarizer,
        notifier: RecipientNotifier,
        config: OrchestratorConfig | None = None,
    ) -> None:
        self.lock = lock
        self.state = state
        self.cache = cache
        self.registry = registry
        self.failures = failures
        self.metrics = metrics
        self.source = source
        self.summarizer = summarizer
        self.notifier = notifier
        self.config = config or OrchestratorConfig()
        self.config.validate()

    async def run_notification_pass(self) -> RunReport:
        """Run one pass. Never raises.

        Unexpected failures are logged, recorded in the metrics and reported
        with ``RunOutcome.FAILED``; the lock is released on every path after
        it was acquired.
        """
        report = RunReport()
        logger.info(f"Starting notification pass {report.run_id}")

        try:
            report.update_phase(RunPhase.LOCK_ACQUIRING)
            async with self.lock.hold(self.config.lock_name, self.config.lock_ttl_seconds) as token:
                if token is None:
                    logger.info("Another notification process is running, skipping")
                    report.update_phase(RunPhase.LOCK_DENIED)
                    report.finish(RunOutcome.LOCK_DENIED)
                    return report

                try:
                    outcome = await self._execute(report)
                finally:
                    report.update_phase(RunPhase.RELEASING_LOCK)
            report.finish(outcome)
        except Exception as e:
            logger.exception(f"Notification pass {report.run_id} failed: {e}")
            report.error = str(e) or type(e).__name__
            await self.metrics.record_error(f"Notification pass failed: {report.error}")
            report.finish(RunOutcome.FAILED)
        finally:
            report.update_phase(RunPhase.IDLE)

        logger.info(
            f"Notification pass {report.run_id} finished: {report.outcome.value} "
            f"in {report.duration_seconds:.1f}s"
        )
        return report

    async def _execute(self, report: RunReport) -> RunOutcome:
        report.update_phase(RunPhase.RETRYING_FAILURES)
        await self.retry_failed_deliveries(report.retry)

        report.update_phase(RunPhase.DETECTING_VERSION)
        latest = await self.source.get_latest_version()
        if latest is None:
            logger.info("No tags found, exiting")
            report.update_phase(RunPhase.NO_NEW_VERSION)
            return RunOutcome.NO_NEW_VERSION

        version = latest.name
        last_checked = await self.state.get_last_checked_version()
        report.version = version
        report.previous_version = last_checked

        if not is_newer(version, last_checked):
            logger.info(f"No new version. Current: {version}, last checked: {last_checked}")
            report.update_phase(RunPhase.NO_NEW_VERSION)
            return RunOutcome.NO_NEW_VERSION

        logger.info(f"New version detected: {last_checked or 'none'} -> {version}")

        recipients = await self.registry.list_active()
        if not recipients:
            logger.info("No active recipients found")
            await self.state.set_last_checked_version(version)
            return RunOutcome.NO_RECIPIENTS
        logger.info(f"Found {len(recipients)} active recipient(s)")

        report.update_phase(RunPhase.FETCHING_DIFF)
        from_version = last_checked or find_previous_tag(version)
        diff = await self.source.get_diff(from_version, version)
        changelog = await self.source.get_external_changelog(version)

        if not diff.has_changes and not changelog.items:
            logger.info("No relevant changes found (CLI, prompt or flags)")
            report.update_phase(RunPhase.NO_RELEVANT_CHANGES)
            await self.state.set_last_checked_version(version)
            return RunOutcome.NO_RELEVANT_CHANGES

        report.update_phase(RunPhase.GENERATING_SUMMARIES)

        async def generate(language: Language) -> ChangeSummary:
            return await self.summarizer.generate(language, diff, changelog.items)

        summaries = await self.cache.pregenerate(version, generate)
        report.languages = list(summaries)
        if not summaries:
            message = "Failed to generate any summaries, cannot proceed"
            logger.error(message)
            report.update_phase(RunPhase.NO_SUMMARIES)
            await self.metrics.record_error(message)
            return RunOutcome.NO_SUMMARIES

        summaries = _default_first(summaries, self.config.default_language)
        report.update_phase(RunPhase.DELIVERING)
        base_message = NotificationMessage(
            version=version,
            summary=next(iter(summaries.values())),
            compare_url=diff.compare_url,
            cli_compare_url=changelog.compare_url,
        )
        report.results = await self.notifier.send_to_all(recipients, base_message, summaries)

        report.update_phase(RunPhase.RECORDING_OUTCOMES)
        await self._record_outcomes(version, report.results)
        await self.state.set_last_checked_version(version)
        await self.state.set_last_notification_time()

        logger.info(
            f"Notification complete: {report.success_count} success, "
            f"{report.fail_count} failed"
        )
        return RunOutcome.DELIVERED

    async def _record_outcomes(self, version: str, results: list[DeliveryResult]) -> None:
        success_count = sum(1 for r in results if r.success)
        await self.metrics.record_run(success_count, len(results) - success_count)

        for result in results:
            team_id = result.recipient.team_id
            if result.success:
                await best_effort(
                    self.failures.remove(team_id), f"Clearing failure record for {team_id}"
                )
            elif result.deactivated:
                logger.info(f"Recipient {team_id} deactivated, not scheduling a retry")
            else:
                logger.error(f"Failed recipient: {result.recipient.team_name} - {result.reason}")
                failure = FailedDelivery(
                    recipient_id=team_id,
                    version=version,
                    reason=result.reason or "Unknown error",
                )
                await best_effort(
                    self.failures.record(failure), f"Recording failure for {team_id}"
                )

    async def retry_failed_deliveries(self, report: RetryReport | None = None) -> RetryReport:
        """Retry deliveries recorded as failed by earlier passes.

        Records are grouped by version so each version's summaries are read
        once. A record is dropped without a delivery attempt when it ran out
        of retries, when its recipient is no longer active, or when no
        summary for its version is cached anymore.
        """
        report = report or RetryReport()
        failures = await self.failures.list_all()
        if not failures:
            return report

        logger.info(f"Found {len(failures)} previously failed notification(s) to retry")

        active = {r.team_id: r for r in await self.registry.list_active()}
        by_version: dict[str, list[FailedDelivery]] = defaultdict(list)
        for failure in failures:
            by_version[failure.version].append(failure)

        for version, group in by_version.items():
            retryable = []
            for failure in group:
                if failure.retry_count >= self.config.max_retries:
                    logger.warning(
                        f"Recipient {failure.recipient_id} exceeded max retries "
                        f"({self.config.max_retries}), removing"
                    )
                elif failure.recipient_id not in active:
                    logger.debug(f"Recipient {failure.recipient_id} no longer active, removing")
                else:
                    retryable.append(failure)
                    continue
                await self.failures.remove(failure.recipient_id)
                report.removed += 1

            if not retryable:
                continue

            summaries = await self.cache.get_all(version)
            if not summaries:
                logger.warning(
                    f"No cached summaries for version {version}, "
                    f"dropping {len(retryable)} retry(s)"
                )
                for failure in retryable:
                    await self.failures.remove(failure.recipient_id)
                    report.removed += 1
                continue

            summaries = _default_first(summaries, self.config.default_language)
            base_message = NotificationMessage(
                version=version,
                summary=next(iter(summaries.values())),
                compare_url=self.source.version_url(version),
                cli_compare_url=self.source.release_url(version),
            )

            for failure in retryable:
                recipient = active[failure.recipient_id]
                report.attempted += 1
                result = await self.notifier.deliver(recipient, base_message, summaries)

                if result.success:
                    logger.info(f"Retry successful for {recipient.team_name}")
                    report.succeeded += 1
                    await self.failures.remove(failure.recipient_id)
                elif result.deactivated:
                    report.failed += 1
                    report.removed += 1
                    await self.failures.remove(failure.recipient_id)
                else:
                    logger.error(f"Retry failed for {recipient.team_name}: {result.reason}")
                    report.failed += 1
                    await self.failures.increment_retry(failure.recipient_id, result.reason)

        return report

"""Application context holding the process-wide clients.

Each client is built lazily from the configuration the first time it is
needed and reused afterwards. Tests inject their own instances through the
constructor instead.
"""

import logging

from ..config.models import Config
from ..coordination.failures import FailureTracker
from ..coordination.lock import DistributedLock
from ..coordination.metrics import MetricsRecorder
from ..coordination.state import VersionStateTracker
from ..delivery.notifier import RecipientNotifier
from ..delivery.slack import SlackTransport, SlackTransportConfig
from ..github.client import GitHubClient, GitHubClientConfig
from ..github.source import ChangelogSource, SourceConfig
from ..registry.recipients import RecipientRegistry
from ..store.base import KeyValueStore
from ..store.memory_store import MemoryStore
from ..store.redis_store import RedisStore
from ..summaries.cache import SummaryCache
from ..summarizer.base import Summarizer
from ..summarizer.claude import ClaudeSummarizer, ClaudeSummarizerConfig
from .orchestrator import NotificationOrchestrator, OrchestratorConfig

logger = logging.getLogger(__name__)


class AppContext:
    """Lazily constructed, injectable dependencies for one process."""

    def __init__(
        self,
        config: Config,
        *,
        store: KeyValueStore | None = None,
        github_client: GitHubClient | None = None,
        summarizer: Summarizer | None = None,
        transport: SlackTransport | None = None,
    ) -> None:
        self.config = config
        self._store = store
        self._github_client = github_client
        self._summarizer = summarizer
        self._transport = transport

    @property
    def store(self) -> KeyValueStore:
        if self._store is None:
            c = self.config.store
            if c.url.startswith("memory://"):
                logger.warning("Using in-memory store, state will not survive the process")
                self._store = MemoryStore(key_prefix=c.key_prefix)
            else:
                self._store = RedisStore(
                    url=c.url, key_prefix=c.key_prefix, socket_timeout=c.socket_timeout
                )
        return self._store

    @property
    def github_client(self) -> GitHubClient:
        if self._github_client is None:
            c = self.config.github
            self._github_client = GitHubClient(
                GitHubClientConfig(
                    base_url=c.base_url,
                    token=c.token,
                    timeout=c.timeout,
                    max_retries=c.max_retries,
                )
            )
        return self._github_client

    @property
    def source(self) -> ChangelogSource:
        c = self.config.github
        return ChangelogSource(
            self.github_client,
            SourceConfig(
                upstream_owner=c.upstream_owner,
                upstream_repo=c.upstream_repo,
                cli_repo_owner=c.cli_repo_owner,
                cli_repo_name=c.cli_repo_name,
                tracked_files=tuple(c.tracked_files),
            ),
        )

    @property
    def summarizer(self) -> Summarizer:
        if self._summarizer is None:
            c = self.config.summarizer
            self._summarizer = ClaudeSummarizer(
                ClaudeSummarizerConfig(
                    api_key=c.api_key,
                    model=c.model,
                    max_tokens=c.max_tokens,
                    timeout=c.timeout,
                )
            )
        return self._summarizer

    @property
    def transport(self) -> SlackTransport:
        if self._transport is None:
            self._transport = SlackTransport(
                SlackTransportConfig(max_attempts=self.config.delivery.retry_attempts)
            )
        return self._transport

    @property
    def registry(self) -> RecipientRegistry:
        return RecipientRegistry(self.store)

    @property
    def state(self) -> VersionStateTracker:
        return VersionStateTracker(self.store)

    @property
    def metrics(self) -> MetricsRecorder:
        return MetricsRecorder(self.store)

    @property
    def failures(self) -> FailureTracker:
        return FailureTracker(self.store, ttl_seconds=self.config.notification.failure_ttl)

    def build_orchestrator(self) -> NotificationOrchestrator:
        n = self.config.notification
        d = self.config.delivery
        source = self.source
        registry = self.registry
        notifier = RecipientNotifier(
            self.transport,
            registry,
            cli_repo_path=source.config.cli_repo_path,
            upstream_repo_path=f"{source.config.upstream_owner}/{source.config.upstream_repo}",
            batch_size=d.batch_size,
            message_delay=d.message_delay,
            timeout=d.timeout,
        )
        return NotificationOrchestrator(
            lock=DistributedLock(self.store),
            state=self.state,
            cache=SummaryCache(self.store, ttl_seconds=n.summary_ttl, languages=n.languages),
            registry=registry,
            failures=self.failures,
            metrics=self.metrics,
            source=source,
            summarizer=self.summarizer,
            notifier=notifier,
            config=OrchestratorConfig(
                lock_name=n.lock_name,
                lock_ttl_seconds=n.lock_ttl,
                max_retries=n.max_retries,
                default_language=n.default_language,
            ),
        )

    async def close(self) -> None:
        """Close every client that was built, in reverse dependency order."""
        if self._transport is not None:
            await self._transport.close()
            self._transport = None
        if isinstance(self._summarizer, ClaudeSummarizer):
            await self._summarizer.close()
        self._summarizer = None
        if self._github_client is not None:
            await self._github_client.close()
            self._github_client = None
        if self._store is not None:
            await self._store.close()
            self._store = None

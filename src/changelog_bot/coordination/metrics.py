"""Notification run metrics.

Counters and timestamps kept in a single store hash. Metrics are purely
observational: every write here is best effort and never fails a run.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any

from ..models import utc_now
from ..store.base import KeyValueStore
from ..store.keys import metrics_key

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500


@dataclass(frozen=True)
class NotificationMetrics:
    """Snapshot of the metrics hash."""

    total_runs: int = 0
    success_count: int = 0
    fail_count: int = 0
    last_run_at: str | None = None
    last_success_at: str | None = None
    last_error_at: str | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class MetricsRecorder:
    """Reads and writes the ``metrics:notifications`` hash."""

    def __init__(self, store: KeyValueStore, name: str = "notifications") -> None:
        self.store = store
        self.key = metrics_key(name)

    async def record_run(self, success_count: int, fail_count: int) -> None:
        """Count one delivery run and its outcomes."""
        now = utc_now().isoformat()
        try:
            async with self.store.batch() as batch:
                batch.hash_increment(self.key, "total_runs", 1)
                batch.hash_increment(self.key, "success", success_count)
                batch.hash_increment(self.key, "failed", fail_count)
                batch.hash_set(self.key, {"last_run_at": now})
                if success_count > 0:
                    batch.hash_set(self.key, {"last_success_at": now})
            logger.debug("Notification metrics recorded")
        except Exception as e:
            logger.warning(f"Failed to record notification metrics: {e}")

    async def record_error(self, message: str) -> None:
        try:
            await self.store.hash_set(
                self.key,
                {
                    "last_error_at": utc_now().isoformat(),
                    "last_error": message[:MAX_ERROR_LENGTH],
                },
            )
        except Exception as e:
            logger.warning(f"Failed to record error metric: {e}")

    async def get_metrics(self) -> NotificationMetrics:
        try:
            data = await self.store.hash_get_all(self.key)
        except Exception as e:
            logger.error(f"Failed to get notification metrics: {e}")
            return NotificationMetrics()

        return NotificationMetrics(
            total_runs=int(data.get("total_runs", 0)),
            success_count=int(data.get("success", 0)),
            fail_count=int(data.get("failed", 0)),
            last_run_at=data.get("last_run_at"),
            last_success_at=data.get("last_success_at"),
            last_error_at=data.get("last_error_at"),
            last_error=data.get("last_error"),
        )

    async def reset(self) -> None:
        await self.store.delete(self.key)
        logger.info("Metrics reset")

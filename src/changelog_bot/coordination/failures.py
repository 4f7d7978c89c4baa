"""Persistent per-recipient delivery failure records.

At most one record exists per recipient; recording a new failure replaces the
old one. Records expire after ``ttl_seconds`` so abandoned failures clean
themselves up.
"""

import logging
from dataclasses import replace

from ..models import FailedDelivery, utc_now
from ..store.base import KeyValueStore
from ..store.keys import failed_key

logger = logging.getLogger(__name__)

FAILED_DELIVERY_TTL = 7 * 24 * 60 * 60
MAX_RETRIES = 3


class FailureTracker:
    """Retry queue of failed deliveries, keyed by recipient."""

    def __init__(self, store: KeyValueStore, ttl_seconds: int = FAILED_DELIVERY_TTL):
        self.store = store
        self.ttl_seconds = ttl_seconds

    async def record(self, failure: FailedDelivery) -> None:
        """Upsert the failure record for ``failure.recipient_id``."""
        await self.store.set(
            failed_key(failure.recipient_id), failure.to_dict(), ttl=self.ttl_seconds
        )
        logger.debug(
            f"Failed delivery recorded: {failure.recipient_id} "
            f"(version {failure.version}, retry {failure.retry_count})"
        )

    async def get(self, recipient_id: str) -> FailedDelivery | None:
        data = await self.store.get(failed_key(recipient_id))
        return self._parse(data, recipient_id)

    async def list_all(self) -> list[FailedDelivery]:
        keys = await self.store.scan(failed_key("*"))
        if not keys:
            return []

        values = await self.store.get_many(keys)
        failures = []
        for key, data in zip(keys, values, strict=True):
            failure = self._parse(data, key)
            if failure is not None:
                failures.append(failure)
        return failures

    async def remove(self, recipient_id: str) -> None:
        """Drop the record; missing records are not an error."""
        if await self.store.delete(failed_key(recipient_id)):
            logger.debug(f"Failed delivery removed: {recipient_id}")

    async def increment_retry(
        self, recipient_id: str, reason: str | None = None
    ) -> FailedDelivery | None:
        """Bump ``retry_count`` by one and refresh the record's TTL.

        Returns:
            The updated record, or None if there was nothing to update
        """
        existing = await self.get(recipient_id)
        if existing is None:
            return None

        updated = replace(
            existing,
            retry_count=existing.retry_count + 1,
            timestamp=utc_now(),
            reason=reason if reason is not None else existing.reason,
        )
        await self.record(updated)
        return updated

    @staticmethod
    def _parse(data: object, source: str) -> FailedDelivery | None:
        if data is None:
            return None
        try:
            return FailedDelivery.from_dict(data)  # type: ignore[arg-type]
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed failure record {source}: {e}")
            return None

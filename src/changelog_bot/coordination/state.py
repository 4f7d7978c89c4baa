"""Version state tracking and version ordering.

The tracker persists the last fully processed upstream version and the time of
the last notification. ``is_newer`` is the novelty test that gates every pass.
"""

import logging
import re
from datetime import datetime

from ..models import utc_now
from ..store.base import KeyValueStore
from ..store.keys import LAST_CHECKED_VERSION, LAST_NOTIFICATION_TIME, STATE, state_key

logger = logging.getLogger(__name__)

VERSION_PATTERN = re.compile(r"(\d+)\.(\d+)\.(\d+)")


def parse_version(version: str) -> tuple[int, int, int]:
    """Extract ``(major, minor, patch)`` from the first x.y.z group.

    Versions without such a group collapse to ``(0, 0, 0)``.
    """
    match = VERSION_PATTERN.search(version)
    if not match:
        return (0, 0, 0)
    return (int(match.group(1)), int(match.group(2)), int(match.group(3)))


def is_newer(candidate: str, baseline: str | None) -> bool:
    """Check whether ``candidate`` is a newer version than ``baseline``.

    A missing baseline means nothing was processed yet, so any candidate is
    newer.
    """
    if not baseline:
        return True
    return parse_version(candidate) > parse_version(baseline)


def find_previous_tag(tag: str) -> str:
    """Guess the tag preceding ``tag`` by decrementing its patch number.

    Keeps any surrounding text (``v1.2.3`` -> ``v1.2.2``). A patch of zero or
    an unparseable tag returns the tag unchanged.
    """
    match = VERSION_PATTERN.search(tag)
    if not match or int(match.group(3)) == 0:
        return tag
    previous_patch = str(int(match.group(3)) - 1)
    return tag[: match.start(3)] + previous_patch + tag[match.end(3) :]


class VersionStateTracker:
    """Persists global notification state under ``state:*`` keys."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def get_state(self, key: str) -> str | None:
        value = await self.store.get(state_key(key))
        return None if value is None else str(value)

    async def set_state(self, key: str, value: str) -> None:
        await self.store.set(state_key(key), value)
        logger.debug(f"Global state set: {key}")

    async def delete_state(self, key: str) -> bool:
        return await self.store.delete(state_key(key)) > 0

    async def list_all(self) -> dict[str, str]:
        """Return every plain string state value, keyed by state name.

        Nested records such as failed deliveries are skipped.
        """
        keys = await self.store.scan(state_key("*"))
        if not keys:
            return {}

        values = await self.store.get_many(keys)
        prefix = f"{STATE}:"
        return {
            key[len(prefix) :]: value
            for key, value in zip(keys, values, strict=True)
            if isinstance(value, str)
        }

    async def get_last_checked_version(self) -> str | None:
        return await self.get_state(LAST_CHECKED_VERSION)

    async def set_last_checked_version(self, version: str) -> None:
        await self.set_state(LAST_CHECKED_VERSION, version)
        logger.info(f"Last checked version set to {version}")

    async def get_last_notification_time(self) -> datetime | None:
        value = await self.get_state(LAST_NOTIFICATION_TIME)
        if not value:
            return None
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            logger.warning(f"Ignoring malformed last notification time: {value!r}")
            return None

    async def set_last_notification_time(self, time: datetime | None = None) -> None:
        await self.set_state(LAST_NOTIFICATION_TIME, (time or utc_now()).isoformat())

"""Advisory distributed lock built on the key-value store.

Acquisition is a single set-if-absent with expiry and release is a single
compare-and-delete, so a holder whose lock already expired can never delete a
lock that another run has since acquired.
"""

import contextlib
import logging
import uuid
from collections.abc import AsyncIterator

from ..store.base import KeyValueStore
from ..store.keys import lock_key

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TTL = 300


class DistributedLock:
    """Mutual exclusion across independent processes sharing one store."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def acquire(self, name: str, ttl_seconds: int = DEFAULT_LOCK_TTL) -> str | None:
        """Try to take the lock.

        Returns:
            The holder token on success, None if another holder is active

        Raises:
            StoreError: If the store is unreachable
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        token = uuid.uuid4().hex
        acquired = await self.store.set(
            lock_key(name), token, ttl=ttl_seconds, only_if_absent=True
        )
        if not acquired:
            logger.debug(f"Lock {name} is held by another process")
            return None

        logger.debug(f"Lock {name} acquired (ttl={ttl_seconds}s)")
        return token

    async def release(self, name: str, token: str) -> bool:
        """Release the lock if ``token`` still owns it.

        Returns:
            False when the lock expired or belongs to another holder

        Raises:
            StoreError: If the store is unreachable
        """
        released = await self.store.delete_if_equals(lock_key(name), token)
        if released:
            logger.debug(f"Lock {name} released")
        else:
            logger.warning(f"Lock {name} was not owned by this holder at release time")
        return released

    @contextlib.asynccontextmanager
    async def hold(
        self, name: str, ttl_seconds: int = DEFAULT_LOCK_TTL
    ) -> AsyncIterator[str | None]:
        """Hold the lock for the duration of the block.

        Yields the token, or None when the lock is taken. Release is attempted
        on every exit path and its failures are logged, never raised; the TTL
        frees the lock eventually.
        """
        token = await self.acquire(name, ttl_seconds)
        try:
            yield token
        finally:
            if token is not None:
                try:
                    await self.release(name, token)
                except Exception as e:
                    logger.error(
                        f"Failed to release lock {name}, it will expire after "
                        f"{ttl_seconds}s: {e}"
                    )

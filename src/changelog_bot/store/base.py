"""Abstract key-value store interface.

Every component that persists state (lock, version state, summary cache,
failure tracker, recipient registry, metrics) talks to the store through this
contract. Implementations must provide:

- single-key atomic operations (``set`` with ``only_if_absent``,
  ``delete_if_equals``, ``hash_increment``)
- pattern scans over the key space
- pipelined batches that are sent together but are NOT transactional across
  keys
"""

import builtins
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any

DEFAULT_KEY_PREFIX = "changelog_bot"


@dataclass(frozen=True)
class BatchOperation:
    """A single queued store command inside a batch."""

    name: str
    args: tuple[Any, ...] = ()
    kwargs: dict[str, Any] = field(default_factory=dict)


class StoreBatch:
    """Collects write commands and sends them to the store in one round trip.

    Usable as an async context manager; the batch executes on a clean exit and
    is discarded if the block raises.
    """

    def __init__(self, store: "KeyValueStore") -> None:
        self._store = store
        self._operations: list[BatchOperation] = []

    def set(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
        only_if_absent: bool = False,
    ) -> "StoreBatch":
        self._operations.append(
            BatchOperation("set", (key, value), {"ttl": ttl, "only_if_absent": only_if_absent})
        )
        return self

    def delete(self, *keys: str) -> "StoreBatch":
        self._operations.append(BatchOperation("delete", keys))
        return self

    def set_add(self, key: str, *members: str) -> "StoreBatch":
        self._operations.append(BatchOperation("set_add", (key, *members)))
        return self

    def set_remove(self, key: str, *members: str) -> "StoreBatch":
        self._operations.append(BatchOperation("set_remove", (key, *members)))
        return self

    def hash_increment(self, key: str, field_name: str, amount: int = 1) -> "StoreBatch":
        self._operations.append(
            BatchOperation("hash_increment", (key, field_name, amount))
        )
        return self

    def hash_set(self, key: str, mapping: dict[str, Any]) -> "StoreBatch":
        self._operations.append(BatchOperation("hash_set", (key, dict(mapping))))
        return self

    def __len__(self) -> int:
        return len(self._operations)

    async def execute(self) -> list[Any]:
        """Send all queued commands and return their individual results."""
        if not self._operations:
            return []
        operations, self._operations = self._operations, []
        return await self._store.execute_batch(operations)

    async def __aenter__(self) -> "StoreBatch":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is None:
            await self.execute()
        else:
            self._operations.clear()


class KeyValueStore(ABC):
    """Abstract base class for key-value store implementations.

    Keys passed to every method are logical keys (``state:last_checked_version``);
    implementations namespace them with ``key_prefix`` before they reach the
    backend, and strip it again from keys returned by ``scan``.
    """

    def __init__(self, key_prefix: str = DEFAULT_KEY_PREFIX) -> None:
        self.key_prefix = key_prefix

    @staticmethod
    def make_key(*parts: Any) -> str:
        """Create a logical key from its parts."""
        return ":".join(str(part) for part in parts)

    def _full_key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}" if self.key_prefix else key

    def _logical_key(self, full_key: str) -> str:
        prefix = f"{self.key_prefix}:" if self.key_prefix else ""
        return full_key[len(prefix) :] if full_key.startswith(prefix) else full_key

    def batch(self) -> StoreBatch:
        """Start a pipelined batch of write commands."""
        return StoreBatch(self)

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Get a JSON value by key, None if missing or expired."""

    @abstractmethod
    async def set(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
        only_if_absent: bool = False,
    ) -> bool:
        """Store a JSON value.

        With ``only_if_absent`` the write is a single atomic set-if-not-exists;
        returns False when the key already held a value.
        """

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys. Returns the number of keys that existed."""

    @abstractmethod
    async def delete_if_equals(self, key: str, expected: Any) -> bool:
        """Atomically delete ``key`` only if its current value equals ``expected``."""

    @abstractmethod
    async def get_many(self, keys: list[str]) -> list[Any | None]:
        """Fetch several values in one round trip, preserving order."""

    @abstractmethod
    async def scan(self, pattern: str) -> list[str]:
        """Return logical keys matching a glob-style pattern."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if key exists."""

    @abstractmethod
    async def get_ttl(self, key: str) -> int | None:
        """Remaining TTL in seconds, None if the key is missing or never expires."""

    @abstractmethod
    async def set_add(self, key: str, *members: str) -> int:
        """Add members to a set. Returns the number newly added."""

    @abstractmethod
    async def set_remove(self, key: str, *members: str) -> int:
        """Remove members from a set. Returns the number removed."""

    @abstractmethod
    async def set_members(self, key: str) -> builtins.set[str]:
        """Return all members of a set."""

    @abstractmethod
    async def set_count(self, key: str) -> int:
        """Return the cardinality of a set."""

    @abstractmethod
    async def hash_increment(self, key: str, field_name: str, amount: int = 1) -> int:
        """Atomically increment a hash field."""

    @abstractmethod
    async def hash_set(self, key: str, mapping: dict[str, Any]) -> None:
        """Set hash fields; values are stored as strings."""

    @abstractmethod
    async def hash_get_all(self, key: str) -> dict[str, str]:
        """Return every field of a hash."""

    @abstractmethod
    async def execute_batch(self, operations: list[BatchOperation]) -> list[Any]:
        """Execute queued batch operations in order."""

    @abstractmethod
    async def ping(self) -> bool:
        """Round-trip health check."""

    async def close(self) -> None:
        """Release backend connections."""
        return None

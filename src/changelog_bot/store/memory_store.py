"""In-memory key-value store implementation.

Mirrors the Redis semantics closely enough for local runs and tests: values
are JSON round-tripped, TTLs expire lazily, and every single-key operation is
atomic with respect to other coroutines on the same event loop.
"""

import asyncio
import builtins
import fnmatch
import json
import time
from typing import Any

from .base import DEFAULT_KEY_PREFIX, BatchOperation, KeyValueStore
from .exceptions import StoreError


class MemoryStore(KeyValueStore):
    """Process-local store with TTL support."""

    def __init__(self, key_prefix: str = DEFAULT_KEY_PREFIX):
        """Initialize memory store.

        Args:
            key_prefix: Prefix for all keys
        """
        super().__init__(key_prefix)
        self._values: dict[str, tuple[str, float | None]] = {}
        self._sets: dict[str, set[str]] = {}
        self._hashes: dict[str, dict[str, str]] = {}
        self._lock = asyncio.Lock()

    def _expired(self, full_key: str) -> bool:
        entry = self._values.get(full_key)
        if entry is None:
            return True
        _, expires_at = entry
        if expires_at is not None and time.time() >= expires_at:
            del self._values[full_key]
            return True
        return False

    def _read(self, full_key: str) -> Any | None:
        if self._expired(full_key):
            return None
        return json.loads(self._values[full_key][0])

    def _all_keys(self) -> list[str]:
        live = [key for key in list(self._values) if not self._expired(key)]
        return live + list(self._sets) + list(self._hashes)

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            return self._read(self._full_key(key))

    async def set(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
        only_if_absent: bool = False,
    ) -> bool:
        full_key = self._full_key(key)
        async with self._lock:
            if only_if_absent and not self._expired(full_key):
                return False
            expires_at = time.time() + ttl if ttl and ttl > 0 else None
            self._values[full_key] = (json.dumps(value, default=str), expires_at)
            return True

    async def delete(self, *keys: str) -> int:
        deleted = 0
        async with self._lock:
            for key in keys:
                full_key = self._full_key(key)
                if not self._expired(full_key):
                    del self._values[full_key]
                    deleted += 1
                elif self._sets.pop(full_key, None) is not None:
                    deleted += 1
                elif self._hashes.pop(full_key, None) is not None:
                    deleted += 1
        return deleted

    async def delete_if_equals(self, key: str, expected: Any) -> bool:
        full_key = self._full_key(key)
        async with self._lock:
            if self._read(full_key) != expected:
                return False
            del self._values[full_key]
            return True

    async def get_many(self, keys: list[str]) -> list[Any | None]:
        async with self._lock:
            return [self._read(self._full_key(key)) for key in keys]

    async def scan(self, pattern: str) -> list[str]:
        full_pattern = self._full_key(pattern)
        async with self._lock:
            return [
                self._logical_key(key)
                for key in self._all_keys()
                if fnmatch.fnmatchcase(key, full_pattern)
            ]

    async def exists(self, key: str) -> bool:
        full_key = self._full_key(key)
        async with self._lock:
            return (
                not self._expired(full_key)
                or full_key in self._sets
                or full_key in self._hashes
            )

    async def get_ttl(self, key: str) -> int | None:
        full_key = self._full_key(key)
        async with self._lock:
            if self._expired(full_key):
                return None
            expires_at = self._values[full_key][1]
            if expires_at is None:
                return None
            return max(0, int(round(expires_at - time.time())))

    async def set_add(self, key: str, *members: str) -> int:
        async with self._lock:
            current = self._sets.setdefault(self._full_key(key), set())
            added = len(set(members) - current)
            current.update(members)
            return added

    async def set_remove(self, key: str, *members: str) -> int:
        full_key = self._full_key(key)
        async with self._lock:
            current = self._sets.get(full_key, set())
            removed = len(current & set(members))
            current.difference_update(members)
            if not current:
                self._sets.pop(full_key, None)
            return removed

    async def set_members(self, key: str) -> builtins.set[str]:
        async with self._lock:
            return set(self._sets.get(self._full_key(key), set()))

    async def set_count(self, key: str) -> int:
        async with self._lock:
            return len(self._sets.get(self._full_key(key), set()))

    async def hash_increment(self, key: str, field_name: str, amount: int = 1) -> int:
        async with self._lock:
            fields = self._hashes.setdefault(self._full_key(key), {})
            try:
                value = int(fields.get(field_name, "0")) + amount
            except ValueError as e:
                raise StoreError(
                    f"Hash field {field_name} is not an integer", "hash_increment"
                ) from e
            fields[field_name] = str(value)
            return value

    async def hash_set(self, key: str, mapping: dict[str, Any]) -> None:
        if not mapping:
            return
        async with self._lock:
            fields = self._hashes.setdefault(self._full_key(key), {})
            fields.update({name: str(value) for name, value in mapping.items()})

    async def hash_get_all(self, key: str) -> dict[str, str]:
        async with self._lock:
            return dict(self._hashes.get(self._full_key(key), {}))

    async def execute_batch(self, operations: list[BatchOperation]) -> list[Any]:
        """Apply operations one after another; not atomic across keys."""
        results = []
        for op in operations:
            method = getattr(self, op.name, None)
            if method is None:
                raise StoreError(
                    f"Unsupported batch operation: {op.name}", "execute_batch"
                )
            results.append(await method(*op.args, **op.kwargs))
        return results

    async def ping(self) -> bool:
        return True

    async def clear(self) -> None:
        """Drop every key."""
        async with self._lock:
            self._values.clear()
            self._sets.clear()
            self._hashes.clear()

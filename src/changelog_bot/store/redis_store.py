"""Redis key-value store implementation."""

import builtins
import contextlib
import json
import logging
from collections.abc import Iterator
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from .base import DEFAULT_KEY_PREFIX, BatchOperation, KeyValueStore
from .exceptions import StoreConnectionError, StoreError

logger = logging.getLogger(__name__)

# Deletes KEYS[1] only when it still holds ARGV[1]; runs atomically on the server.
COMPARE_AND_DELETE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

SCAN_COUNT = 100


class RedisStore(KeyValueStore):
    """Redis-backed store with JSON serialization.

    Unlike a best-effort cache, every Redis failure is raised as a
    ``StoreError`` so that callers decide whether it is fatal.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        key_prefix: str = DEFAULT_KEY_PREFIX,
        socket_timeout: float = 5.0,
    ):
        """Initialize Redis store.

        Args:
            url: Redis connection URL
            key_prefix: Prefix for all keys
            socket_timeout: Connect and command timeout in seconds
        """
        super().__init__(key_prefix)
        self.url = url
        self.socket_timeout = socket_timeout
        self._client: aioredis.Redis | None = None

    def _get_client(self) -> aioredis.Redis:
        """Get or create Redis client."""
        if self._client is None:
            self._client = aioredis.from_url(
                self.url,
                decode_responses=False,
                socket_connect_timeout=self.socket_timeout,
                socket_timeout=self.socket_timeout,
                retry_on_timeout=True,
            )
        return self._client

    @contextlib.contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreConnectionError(
                f"Redis unavailable during {operation}: {e}", operation
            ) from e
        except RedisError as e:
            raise StoreError(f"Redis error during {operation}: {e}", operation) from e

    def _serialize(self, value: Any) -> bytes:
        return json.dumps(value, default=str).encode("utf-8")

    def _deserialize(self, data: bytes | str | None, key: str) -> Any | None:
        if data is None:
            return None
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        try:
            return json.loads(data)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring non-JSON value stored at {key}")
            return None

    @staticmethod
    def _decode(value: bytes | str) -> str:
        return value.decode("utf-8") if isinstance(value, bytes) else value

    async def get(self, key: str) -> Any | None:
        with self._translate_errors("get"):
            data = await self._get_client().get(self._full_key(key))
        return self._deserialize(data, key)

    async def set(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
        only_if_absent: bool = False,
    ) -> bool:
        with self._translate_errors("set"):
            result = await self._get_client().set(
                self._full_key(key),
                self._serialize(value),
                ex=ttl if ttl and ttl > 0 else None,
                nx=only_if_absent,
            )
        return bool(result)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with self._translate_errors("delete"):
            result = await self._get_client().delete(
                *(self._full_key(key) for key in keys)
            )
        return int(result)

    async def delete_if_equals(self, key: str, expected: Any) -> bool:
        with self._translate_errors("delete_if_equals"):
            result = await self._get_client().eval(
                COMPARE_AND_DELETE_SCRIPT,
                1,
                self._full_key(key),
                self._serialize(expected),
            )
        return int(result) == 1

    async def get_many(self, keys: list[str]) -> list[Any | None]:
        if not keys:
            return []
        with self._translate_errors("get_many"):
            values = await self._get_client().mget(
                [self._full_key(key) for key in keys]
            )
        return [
            self._deserialize(value, key) for key, value in zip(keys, values, strict=True)
        ]

    async def scan(self, pattern: str) -> list[str]:
        keys: list[str] = []
        with self._translate_errors("scan"):
            async for full_key in self._get_client().scan_iter(
                match=self._full_key(pattern), count=SCAN_COUNT
            ):
                keys.append(self._logical_key(self._decode(full_key)))
        return keys

    async def exists(self, key: str) -> bool:
        with self._translate_errors("exists"):
            result = await self._get_client().exists(self._full_key(key))
        return int(result) > 0

    async def get_ttl(self, key: str) -> int | None:
        with self._translate_errors("ttl"):
            result = int(await self._get_client().ttl(self._full_key(key)))
        # -2: missing, -1: no expiry
        return result if result >= 0 else None

    async def set_add(self, key: str, *members: str) -> int:
        if not members:
            return 0
        with self._translate_errors("set_add"):
            return int(await self._get_client().sadd(self._full_key(key), *members))

    async def set_remove(self, key: str, *members: str) -> int:
        if not members:
            return 0
        with self._translate_errors("set_remove"):
            return int(await self._get_client().srem(self._full_key(key), *members))

    async def set_members(self, key: str) -> builtins.set[str]:
        with self._translate_errors("set_members"):
            members = await self._get_client().smembers(self._full_key(key))
        return {self._decode(member) for member in members}

    async def set_count(self, key: str) -> int:
        with self._translate_errors("set_count"):
            return int(await self._get_client().scard(self._full_key(key)))

    async def hash_increment(self, key: str, field_name: str, amount: int = 1) -> int:
        with self._translate_errors("hash_increment"):
            return int(
                await self._get_client().hincrby(self._full_key(key), field_name, amount)
            )

    async def hash_set(self, key: str, mapping: dict[str, Any]) -> None:
        if not mapping:
            return
        with self._translate_errors("hash_set"):
            await self._get_client().hset(
                self._full_key(key),
                mapping={name: str(value) for name, value in mapping.items()},
            )

    async def hash_get_all(self, key: str) -> dict[str, str]:
        with self._translate_errors("hash_get_all"):
            data = await self._get_client().hgetall(self._full_key(key))
        return {self._decode(name): self._decode(value) for name, value in data.items()}

    async def execute_batch(self, operations: list[BatchOperation]) -> list[Any]:
        """Send operations through a non-transactional Redis pipeline."""
        if not operations:
            return []

        with self._translate_errors("execute_batch"):
            pipe = self._get_client().pipeline(transaction=False)
            for op in operations:
                self._queue_operation(pipe, op)
            return list(await pipe.execute())

    def _queue_operation(self, pipe: Any, op: BatchOperation) -> None:
        if op.name == "set":
            key, value = op.args
            ttl = op.kwargs.get("ttl")
            pipe.set(
                self._full_key(key),
                self._serialize(value),
                ex=ttl if ttl and ttl > 0 else None,
                nx=op.kwargs.get("only_if_absent", False),
            )
        elif op.name == "delete":
            pipe.delete(*(self._full_key(key) for key in op.args))
        elif op.name == "set_add":
            key, *members = op.args
            pipe.sadd(self._full_key(key), *members)
        elif op.name == "set_remove":
            key, *members = op.args
            pipe.srem(self._full_key(key), *members)
        elif op.name == "hash_increment":
            key, field_name, amount = op.args
            pipe.hincrby(self._full_key(key), field_name, amount)
        elif op.name == "hash_set":
            key, mapping = op.args
            pipe.hset(
                self._full_key(key),
                mapping={name: str(value) for name, value in mapping.items()},
            )
        else:
            raise StoreError(f"Unsupported batch operation: {op.name}", "execute_batch")

    async def ping(self) -> bool:
        """Test Redis connection."""
        try:
            await self._get_client().ping()
            return True
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

"""Key-value store adapters used as the coordination substrate."""

from .base import DEFAULT_KEY_PREFIX, BatchOperation, KeyValueStore, StoreBatch
from .exceptions import StoreConnectionError, StoreError
from .memory_store import MemoryStore
from .redis_store import RedisStore

__all__ = [
    "DEFAULT_KEY_PREFIX",
    "BatchOperation",
    "KeyValueStore",
    "MemoryStore",
    "RedisStore",
    "StoreBatch",
    "StoreConnectionError",
    "StoreError",
]

"""
Test configuration and shared fixtures.

Provides an in-memory store for behavior tests and keeps the process-wide
configuration isolated between tests.
"""

import pytest

from changelog_bot.config import reset_config
from changelog_bot.store import MemoryStore


@pytest.fixture
def memory_store() -> MemoryStore:
    """
    Fresh in-memory store.

    Why: Coordination logic should be tested against real store semantics
         without a Redis server
    What: Provides an empty MemoryStore with the default key prefix
    How: Builds a new instance per test so no state leaks between tests
    """
    return MemoryStore()


@pytest.fixture(autouse=True)
def isolated_config():
    """
    Reset the global configuration around every test.

    Why: load_config() stores a process-wide instance that would otherwise
         leak between tests
    What: Clears the loaded configuration before and after each test
    How: Calls reset_config() on setup and teardown
    """
    reset_config()
    yield
    reset_config()

"""Fire-and-forget wrapper for non-critical operations."""

import logging
from collections.abc import Awaitable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def best_effort(
    operation: Awaitable[T], description: str, default: T | None = None
) -> T | None:
    """Await ``operation``, logging and swallowing any failure.

    Only for work whose failure must never affect the caller, such as cleanup
    or metrics.
    """
    try:
        return await operation
    except Exception as e:
        logger.warning(f"{description} failed: {e}")
        return default

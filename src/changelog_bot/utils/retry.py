"""Retry helpers for transient upstream failures.

Network errors, timeouts, HTTP 5xx and HTTP 429 are retried with exponential
backoff plus jitter; everything else is raised immediately.
"""

import asyncio
import logging
import random
import re
from collections.abc import Awaitable, Callable
from typing import TypeVar

import aiohttp

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_MESSAGE_MARKERS = (
    "network",
    "timeout",
    "timed out",
    "econnreset",
    "econnrefused",
    "connection reset",
    "connection refused",
    "internal server error",
    "bad gateway",
    "service unavailable",
    "gateway timeout",
    "rate limit",
    "ratelimited",
)

STATUS_IN_MESSAGE = re.compile(r"\b(5\d{2}|429)\b")


def _status_of(error: BaseException) -> int | None:
    for attribute in ("status_code", "status"):
        value = getattr(error, attribute, None)
        if isinstance(value, int):
            return value
    return None


def is_transient_error(error: BaseException) -> bool:
    """Decide whether an error is worth retrying."""
    if isinstance(error, TimeoutError | asyncio.TimeoutError | aiohttp.ClientConnectionError):
        return True

    retryable = getattr(error, "retryable", None)
    if isinstance(retryable, bool):
        return retryable

    status = _status_of(error)
    if status is not None:
        return status >= 500 or status == 429

    message = str(error).lower()
    if any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS):
        return True
    return bool(STATUS_IN_MESSAGE.search(message))


def calculate_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential backoff with 0-25% jitter, capped at ``max_delay``."""
    exponential = base_delay * (2**attempt)
    jitter = exponential * random.random() * 0.25
    return min(exponential + jitter, max_delay)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retry_on: Callable[[BaseException], bool] = is_transient_error,
) -> T:
    """Run ``fn`` and retry it on transient failures.

    Args:
        fn: Zero-argument coroutine factory, called once per attempt
        max_attempts: Total attempts including the first one
        base_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for any single delay, in seconds
        retry_on: Predicate selecting retryable errors

    Returns:
        Result of the first successful attempt

    Raises:
        The last error once attempts are exhausted or a non-retryable error
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(max_attempts):
        try:
            return await fn()
        except Exception as e:
            if attempt == max_attempts - 1 or not retry_on(e):
                raise

            delay = calculate_delay(attempt, base_delay, max_delay)
            logger.warning(
                f"Retry attempt {attempt + 1}/{max_attempts} in {delay:.1f}s: {e}"
            )
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")

"""Shared helpers."""

from .best_effort import best_effort
from .retry import calculate_delay, is_transient_error, with_retry

__all__ = ["best_effort", "calculate_delay", "is_transient_error", "with_retry"]

"""Run coordination primitives: lock, version state, failures and metrics."""

from .failures import FAILED_DELIVERY_TTL, MAX_RETRIES, FailureTracker
from .lock import DEFAULT_LOCK_TTL, DistributedLock
from .metrics import MetricsRecorder, NotificationMetrics
from .state import VersionStateTracker, find_previous_tag, is_newer, parse_version

__all__ = [
    "DEFAULT_LOCK_TTL",
    "FAILED_DELIVERY_TTL",
    "MAX_RETRIES",
    "DistributedLock",
    "FailureTracker",
    "MetricsRecorder",
    "NotificationMetrics",
    "VersionStateTracker",
    "find_previous_tag",
    "is_newer",
    "parse_version",
]

"""Slack delivery of release announcements."""

from .formatting import build_main_blocks, build_thread_replies
from .notifier import RecipientNotifier, SummaryUnavailableError
from .slack import (
    CREDENTIAL_INVALID_ERRORS,
    SlackApiError,
    SlackTransport,
    SlackTransportConfig,
    is_credential_invalid,
)

__all__ = [
    "CREDENTIAL_INVALID_ERRORS",
    "RecipientNotifier",
    "SlackApiError",
    "SlackTransport",
    "SlackTransportConfig",
    "SummaryUnavailableError",
    "build_main_blocks",
    "build_thread_replies",
    "is_credential_invalid",
]

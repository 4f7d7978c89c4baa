"""Logical key layout shared by every store-backed component."""

from .base import KeyValueStore

LOCK = "lock"
STATE = "state"
FAILED = "failed"
SUMMARY = "summary"
RECIPIENT = "recipient"
RECIPIENTS_ACTIVE = "recipients:active"
METRICS = "metrics"

LAST_CHECKED_VERSION = "last_checked_version"
LAST_NOTIFICATION_TIME = "last_notification_time"


def lock_key(name: str) -> str:
    return KeyValueStore.make_key(LOCK, name)


def state_key(name: str) -> str:
    return KeyValueStore.make_key(STATE, name)


def failed_key(recipient_id: str) -> str:
    return KeyValueStore.make_key(STATE, FAILED, recipient_id)


def summary_key(version: str, language: str) -> str:
    return KeyValueStore.make_key(SUMMARY, version, language)


def recipient_key(team_id: str) -> str:
    return KeyValueStore.make_key(RECIPIENT, team_id)


def metrics_key(name: str) -> str:
    return KeyValueStore.make_key(METRICS, name)

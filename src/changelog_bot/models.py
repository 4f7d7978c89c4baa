"""Domain data models for the changelog notification bot.

These models are plain frozen dataclasses shared by the coordination core,
the upstream source, the summarizer and the delivery transport. Records that
live in the key-value store provide ``to_dict``/``from_dict`` helpers that
define their JSON layout.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

Language = str

DEFAULT_LANGUAGE: Language = "en"
SUPPORTED_LANGUAGES: tuple[Language, ...] = ("en", "ko")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def _string_list(value: Any, name: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"{name} must be a list of strings")
    return list(value)


@dataclass(frozen=True)
class FlagChanges:
    """Feature flag changes between two versions."""

    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.modified)

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": list(self.added),
            "removed": list(self.removed),
            "modified": list(self.modified),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "FlagChanges":
        if not isinstance(data, dict):
            raise ValueError("flag_changes must be an object")
        return cls(
            added=_string_list(data.get("added"), "flag_changes.added"),
            removed=_string_list(data.get("removed"), "flag_changes.removed"),
            modified=_string_list(data.get("modified"), "flag_changes.modified"),
        )


@dataclass(frozen=True)
class ChangeSummary:
    """Summarized changes for one version in one language.

    Categories are reported in delivery order: CLI changelog items first,
    then prompt changes, then flag changes.
    """

    version: str
    summary: str
    cli_changes: list[str] = field(default_factory=list)
    prompt_changes: list[str] = field(default_factory=list)
    flag_changes: FlagChanges = field(default_factory=FlagChanges)

    @property
    def has_substantial_content(self) -> bool:
        """At least one change list is non-empty."""
        return bool(self.cli_changes or self.prompt_changes) or not self.flag_changes.is_empty

    def category_lists(self) -> dict[str, list[str]]:
        """Change lists keyed by category, in delivery order."""
        return {
            "cli": list(self.cli_changes),
            "prompt": list(self.prompt_changes),
            "flags_added": list(self.flag_changes.added),
            "flags_removed": list(self.flag_changes.removed),
            "flags_modified": list(self.flag_changes.modified),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "summary": self.summary,
            "cli_changes": list(self.cli_changes),
            "prompt_changes": list(self.prompt_changes),
            "flag_changes": self.flag_changes.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ChangeSummary":
        """Build a summary from its stored form.

        Raises:
            ValueError: If the data does not have the expected shape
        """
        if not isinstance(data, dict):
            raise ValueError("summary record must be an object")
        if not isinstance(data.get("version"), str):
            raise ValueError("version must be a string")
        if not isinstance(data.get("summary"), str):
            raise ValueError("summary must be a string")
        return cls(
            version=data["version"],
            summary=data["summary"],
            cli_changes=_string_list(data.get("cli_changes", []), "cli_changes"),
            prompt_changes=_string_list(data.get("prompt_changes", []), "prompt_changes"),
            flag_changes=FlagChanges.from_dict(data.get("flag_changes", {})),
        )


@dataclass(frozen=True)
class TagInfo:
    """Latest upstream release tag."""

    name: str
    commit_sha: str
    date: str


@dataclass(frozen=True)
class FileDiff:
    """Patch for a single tracked file."""

    filename: str
    patch: str
    additions: int = 0
    deletions: int = 0


@dataclass(frozen=True)
class ChangelogDiff:
    """Tracked-file changes between two upstream versions."""

    from_version: str
    to_version: str
    files: list[FileDiff]
    compare_url: str

    @property
    def has_changes(self) -> bool:
        return len(self.files) > 0


@dataclass(frozen=True)
class ExternalChangelog:
    """Changelog items published for a version by the CLI repository."""

    items: list[str]
    compare_url: str

    @classmethod
    def empty(cls) -> "ExternalChangelog":
        return cls(items=[], compare_url="")


@dataclass(frozen=True)
class Recipient:
    """A registered chat workspace that receives notifications."""

    id: str
    team_id: str
    team_name: str
    bot_token: str
    channel_id: str
    language: Language = DEFAULT_LANGUAGE
    is_active: bool = True
    installed_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "team_name": self.team_name,
            "bot_token": self.bot_token,
            "channel_id": self.channel_id,
            "language": self.language,
            "is_active": self.is_active,
            "installed_at": self.installed_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Recipient":
        return cls(
            id=data["id"],
            team_id=data["team_id"],
            team_name=data.get("team_name", ""),
            bot_token=data["bot_token"],
            channel_id=data["channel_id"],
            language=data.get("language", DEFAULT_LANGUAGE),
            is_active=bool(data.get("is_active", True)),
            installed_at=datetime.fromisoformat(data["installed_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


@dataclass(frozen=True)
class FailedDelivery:
    """Outstanding delivery failure for one recipient."""

    recipient_id: str
    version: str
    reason: str
    timestamp: datetime = field(default_factory=utc_now)
    retry_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "recipient_id": self.recipient_id,
            "version": self.version,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
            "retry_count": self.retry_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FailedDelivery":
        return cls(
            recipient_id=data["recipient_id"],
            version=data["version"],
            reason=data.get("reason", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            retry_count=int(data.get("retry_count", 0)),
        )


@dataclass(frozen=True)
class NotificationMessage:
    """Everything a transport needs to announce one version."""

    version: str
    summary: ChangeSummary
    compare_url: str
    cli_compare_url: str


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of delivering a notification to a single recipient."""

    recipient: Recipient
    success: bool
    error: Exception | None = None
    deactivated: bool = False

    @property
    def reason(self) -> str:
        if self.error is None:
            return ""
        return str(self.error) or type(self.error).__name__

"""Upstream source of truth for releases and their changes.

Two repositories are involved:

- the changelog mirror, whose tags define versions and whose tracked files
  (system prompt and feature flags) are diffed between versions
- the CLI repository, whose ``CHANGELOG.md`` lists the published release notes
"""

import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from ..models import ChangelogDiff, ExternalChangelog, FileDiff, TagInfo
from .client import GitHubClient
from .exceptions import GitHubError, GitHubNotFoundError, GitHubResponseError

logger = logging.getLogger(__name__)

DEFAULT_UPSTREAM_OWNER = "marckrenn"
DEFAULT_UPSTREAM_REPO = "claude-code-changelog"
DEFAULT_CLI_REPO_OWNER = "anthropics"
DEFAULT_CLI_REPO_NAME = "claude-code"
DEFAULT_TRACKED_FILES = ("cc-prompt.md", "cc-flags.md")

BULLET_PATTERN = re.compile(r"^[-*]\s+")
NEXT_SECTION_PATTERN = re.compile(r"^## \[?\d+\.\d+", re.MULTILINE)


@dataclass
class SourceConfig:
    """Repositories watched by the bot."""

    upstream_owner: str = DEFAULT_UPSTREAM_OWNER
    upstream_repo: str = DEFAULT_UPSTREAM_REPO
    cli_repo_owner: str = DEFAULT_CLI_REPO_OWNER
    cli_repo_name: str = DEFAULT_CLI_REPO_NAME
    changelog_path: str = "CHANGELOG.md"
    changelog_ref: str = "main"
    tracked_files: tuple[str, ...] = field(default=DEFAULT_TRACKED_FILES)

    @property
    def cli_repo_path(self) -> str:
        return f"{self.cli_repo_owner}/{self.cli_repo_name}"


def parse_changelog_section(content: str, version: str) -> list[str]:
    """Extract the bullet items of ``version``'s section in a changelog.

    Sections start with ``## x.y.z`` or ``## [x.y.z]``; a leading ``v`` on
    ``version`` is ignored. Returns an empty list when the section is missing.
    """
    bare_version = version[1:] if version.startswith("v") else version
    section = re.search(
        rf"^## \[?{re.escape(bare_version)}\]?(?=\s|$).*?$", content, re.MULTILINE
    )
    if not section:
        logger.debug(f"Version section not found for {version}")
        return []

    start = section.end()
    next_section = NEXT_SECTION_PATTERN.search(content, start)
    end = next_section.start() if next_section else len(content)

    items = []
    for line in content[start:end].splitlines():
        if BULLET_PATTERN.match(line):
            item = BULLET_PATTERN.sub("", line).strip()
            if item:
                items.append(item)
    return items


def _decode_content(data: Any) -> str:
    if not isinstance(data, dict):
        raise GitHubResponseError(
            f"Expected an object for file content, got {type(data).__name__}"
        )
    if data.get("encoding") != "base64" or "content" not in data:
        raise GitHubResponseError("Unexpected response format for file content")
    try:
        return base64.b64decode(data["content"]).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise GitHubResponseError(f"Could not decode file content: {e}") from e


class ChangelogSource:
    """Reads versions, diffs and release notes from GitHub."""

    def __init__(self, client: GitHubClient, config: SourceConfig | None = None) -> None:
        self.client = client
        self.config = config or SourceConfig()

    def compare_url(self, from_version: str, to_version: str) -> str:
        c = self.config
        return (
            f"https://github.com/{c.upstream_owner}/{c.upstream_repo}"
            f"/compare/{from_version}...{to_version}"
        )

    def version_url(self, version: str) -> str:
        c = self.config
        return f"https://github.com/{c.upstream_owner}/{c.upstream_repo}/compare/{version}"

    def release_url(self, version: str) -> str:
        return f"https://github.com/{self.config.cli_repo_path}/releases/tag/{version}"

    async def get_latest_version(self) -> TagInfo | None:
        """Return the newest tag of the changelog mirror.

        Missing repositories, empty tag lists and malformed responses mean
        there is nothing to do and return None. Transient failures raise.
        """
        c = self.config
        try:
            tags = await self.client.list_tags(c.upstream_owner, c.upstream_repo, per_page=1)
        except GitHubNotFoundError:
            logger.warning(f"Repository {c.upstream_owner}/{c.upstream_repo} not found")
            return None

        if not tags:
            logger.warning("No tags found in repository")
            return None

        tag = tags[0]
        try:
            name = tag["name"]
            sha = tag["commit"]["sha"]
        except (KeyError, TypeError):
            logger.warning(f"Malformed tag response: {tag!r}")
            return None

        date = datetime.now(UTC).isoformat()
        try:
            commit = await self.client.get_commit(c.upstream_owner, c.upstream_repo, sha)
            date = commit["commit"]["committer"]["date"] or date
        except GitHubNotFoundError:
            logger.warning(f"Commit {sha} for tag {name} not found")
        except (KeyError, TypeError):
            logger.debug(f"Commit {sha} has no committer date")

        return TagInfo(name=name, commit_sha=sha, date=date)

    async def get_diff(self, from_version: str, to_version: str) -> ChangelogDiff:
        """Diff the tracked files between two versions."""
        c = self.config
        comparison = await self.client.compare_commits(
            c.upstream_owner, c.upstream_repo, from_version, to_version
        )

        files = [
            FileDiff(
                filename=entry["filename"],
                patch=entry.get("patch") or "",
                additions=entry.get("additions") or 0,
                deletions=entry.get("deletions") or 0,
            )
            for entry in comparison.get("files") or []
            if entry.get("filename") in c.tracked_files
        ]
        logger.info(f"Found {len(files)} relevant file changes")

        return ChangelogDiff(
            from_version=from_version,
            to_version=to_version,
            files=files,
            compare_url=self.compare_url(from_version, to_version),
        )

    async def get_external_changelog(self, version: str) -> ExternalChangelog:
        """Fetch the CLI release notes for ``version``.

        Any failure degrades to an empty changelog so that a broken notes
        source never blocks a notification.
        """
        c = self.config
        try:
            logger.info(f"Fetching CLI changelog for version {version}")
            data = await self.client.get_content(
                c.cli_repo_owner, c.cli_repo_name, c.changelog_path, c.changelog_ref
            )
            items = parse_changelog_section(_decode_content(data), version)
        except GitHubError as e:
            logger.warning(f"Failed to fetch CLI changelog for {version}: {e}")
            return ExternalChangelog.empty()

        logger.info(f"Found {len(items)} CLI changes for {version}")
        return ExternalChangelog(items=items, compare_url=self.release_url(version))

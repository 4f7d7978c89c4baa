"""Block Kit rendering for release announcements."""

from dataclasses import dataclass
from typing import Any

from ..models import DEFAULT_LANGUAGE, ChangeSummary, Language


@dataclass(frozen=True)
class MessageStrings:
    released: str
    changelog: str
    details_in_thread: str
    view_diff: str
    prompt_title: str
    flags_added_title: str
    flags_removed_title: str
    flags_modified_title: str


MESSAGES: dict[Language, MessageStrings] = {
    "en": MessageStrings(
        released="is out.",
        changelog="changelog",
        details_in_thread="Details in thread",
        view_diff="Diff",
        prompt_title="System prompt changes",
        flags_added_title="Feature flags added",
        flags_removed_title="Feature flags removed",
        flags_modified_title="Feature flags modified",
    ),
    "ko": MessageStrings(
        released="버전이 출시되었습니다.",
        changelog="변경사항",
        details_in_thread="자세한 내용은 스레드에서 확인하세요",
        view_diff="Diff",
        prompt_title="시스템 프롬프트 변경사항",
        flags_added_title="추가된 feature flag",
        flags_removed_title="삭제된 feature flag",
        flags_modified_title="변경된 feature flag",
    ),
}


def strings_for(language: Language) -> MessageStrings:
    return MESSAGES.get(language, MESSAGES[DEFAULT_LANGUAGE])


def format_counts(summary: ChangeSummary, language: Language) -> str:
    count = len(summary.cli_changes)
    if language == "ko":
        return f"CLI {count}건." if count else "CLI 없음."
    return f"{count} CLI changes." if count else "no CLI changes."


def build_main_blocks(
    version: str,
    summary: ChangeSummary,
    language: Language,
    include_thread_hint: bool = True,
) -> list[dict[str, Any]]:
    msg = strings_for(language)
    parts = [format_counts(summary, language)]
    if summary.summary:
        parts.append(summary.summary)
    if include_thread_hint:
        parts.append(msg.details_in_thread)

    text = f"*Claude Code {version}* {msg.released}\n\n" + "\n\n".join(parts)
    return [{"type": "section", "text": {"type": "mrkdwn", "text": text}}]


def build_reply_blocks(
    title: str, items: list[str], compare_url: str, repo_path: str, language: Language
) -> list[dict[str, Any]]:
    content = "\n".join(f"• {item}" for item in items)
    blocks: list[dict[str, Any]] = [
        {"type": "section", "text": {"type": "mrkdwn", "text": f"*{title}:*\n{content}"}}
    ]
    if compare_url:
        blocks.append(
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"{strings_for(language).view_diff}: <{compare_url}|{repo_path}>",
                    }
                ],
            }
        )
    return blocks


def build_thread_replies(
    version: str,
    summary: ChangeSummary,
    language: Language,
    cli_compare_url: str,
    cli_repo_path: str,
    compare_url: str,
    upstream_repo_path: str,
) -> list[list[dict[str, Any]]]:
    """One reply per non-empty category: CLI, prompt, then flag changes."""
    msg = strings_for(language)
    categories = summary.category_lists()
    titles = {
        "cli": (f"Claude Code CLI {version} {msg.changelog}", cli_compare_url, cli_repo_path),
        "prompt": (msg.prompt_title, compare_url, upstream_repo_path),
        "flags_added": (msg.flags_added_title, compare_url, upstream_repo_path),
        "flags_removed": (msg.flags_removed_title, compare_url, upstream_repo_path),
        "flags_modified": (msg.flags_modified_title, compare_url, upstream_repo_path),
    }

    replies = []
    for category, items in categories.items():
        if not items:
            continue
        title, url, repo_path = titles[category]
        replies.append(build_reply_blocks(title, items, url, repo_path, language))
    return replies

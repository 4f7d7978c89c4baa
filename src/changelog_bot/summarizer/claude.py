"""Claude-backed changelog summarizer.

The model is forced to answer through a single tool call whose JSON schema
mirrors ``ChangeSummary``. If the answer is malformed or written in the wrong
language, the request is repeated once with a reinforced instruction; a
second failure is final for that language.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from anthropic import AsyncAnthropic

from ..models import ChangelogDiff, ChangeSummary, FlagChanges, Language
from ..summaries.language import validate_summary_language
from .base import Summarizer, SummaryGenerationError, SummaryLanguageError

logger = logging.getLogger(__name__)

TOOL_NAME = "submit_changelog_summary"

TOOL_DESCRIPTIONS: dict[Language, dict[str, str]] = {
    "en": {
        "description": "Submit the Claude Code changelog summary",
        "summary": "Two or three sentences summarizing the overall changes",
        "prompt_changes": "Prompt changes, one sentence each",
        "cli_changes": "CLI changelog items, one sentence each",
        "flag_added": "Feature flags that were added",
        "flag_removed": "Feature flags that were removed",
        "flag_modified": "Feature flags that were modified",
    },
    "ko": {
        "description": "Claude Code 변경 사항 요약 제출",
        "summary": "전체 변경 사항을 2~3문장으로 요약",
        "prompt_changes": "프롬프트 변경 사항 목록 (항목당 한 문장)",
        "cli_changes": "CLI 변경 사항 목록 (한국어로 번역하고 기술 용어는 영어로 유지)",
        "flag_added": "추가된 feature flag 목록",
        "flag_removed": "삭제된 feature flag 목록",
        "flag_modified": "변경된 feature flag 목록",
    },
}

PROMPT_TEMPLATES: dict[Language, str] = {
    "en": """You analyze changes to Claude Code.

Below are the changes from Claude Code {from_version} to {to_version}.
Analyze them and write the summary in English.

## Changed file diff:
{diff_content}

## CLI changelog (from GitHub releases):
{changelog_items}

## Guidelines:
- Explain technical content so developers can follow it easily
- Leave categories without changes as empty arrays
- Copy CLI changelog items into cli_changes as they are
- Submit the result with the {tool_name} tool""",
    "ko": """당신은 Claude Code 변경 사항을 분석하는 전문가입니다.

아래는 Claude Code {from_version}에서 {to_version}으로의 변경 사항입니다.
변경 내용을 분석해 한국어로 요약하세요.

## 변경된 파일 diff:
{diff_content}

## CLI 변경 사항 (GitHub 릴리스, 한국어로 번역 필요):
{changelog_items}

## 지침:
- 개발자가 이해하기 쉽게 기술 내용을 설명하세요
- 변경 사항이 없는 항목은 빈 배열로 두세요
- CLI 변경 사항은 한국어로 번역해 cli_changes에 넣으세요
- 함수명, 파일명, 설정값 같은 기술 용어는 영어로 유지하세요
- {tool_name} 도구로 결과를 제출하세요""",
}

LANGUAGE_REINFORCEMENTS: dict[Language, str] = {
    "ko": (
        "\n\n중요: 이전 응답이 한국어로 작성되지 않았습니다. summary와 "
        "cli_changes의 모든 항목을 반드시 한국어로 작성하세요."
    ),
}

STRUCTURE_REINFORCEMENTS: dict[Language, str] = {
    "en": (
        "\n\nIMPORTANT: The previous answer did not match the tool schema. Call "
        f"{TOOL_NAME} exactly once with summary, prompt_changes, cli_changes and "
        "flag_changes filled in."
    ),
    "ko": (
        "\n\n중요: 이전 응답이 도구 스키마와 맞지 않았습니다. summary, "
        "prompt_changes, cli_changes, flag_changes를 모두 채워서 "
        f"{TOOL_NAME} 도구를 한 번 호출하세요."
    ),
}

NO_CHANGELOG_ITEMS = "(No CLI changes)"


@dataclass
class ClaudeSummarizerConfig:
    """Model settings for the summarizer."""

    api_key: str
    model: str = "claude-haiku-4-5"
    max_tokens: int = 2048
    timeout: float = 60.0
    max_api_retries: int = 2


def build_summary_tool(language: Language) -> dict[str, Any]:
    desc = TOOL_DESCRIPTIONS.get(language, TOOL_DESCRIPTIONS["en"])
    string_array = {"type": "array", "items": {"type": "string"}}
    return {
        "name": TOOL_NAME,
        "description": desc["description"],
        "input_schema": {
            "type": "object",
            "properties": {
                "summary": {"type": "string", "description": desc["summary"]},
                "prompt_changes": {**string_array, "description": desc["prompt_changes"]},
                "cli_changes": {**string_array, "description": desc["cli_changes"]},
                "flag_changes": {
                    "type": "object",
                    "properties": {
                        "added": {**string_array, "description": desc["flag_added"]},
                        "removed": {**string_array, "description": desc["flag_removed"]},
                        "modified": {**string_array, "description": desc["flag_modified"]},
                    },
                    "required": ["added", "removed", "modified"],
                },
            },
            "required": ["summary", "prompt_changes", "cli_changes", "flag_changes"],
        },
    }


def build_prompt(language: Language, diff: ChangelogDiff, changelog_items: list[str]) -> str:
    diff_content = "\n\n".join(
        f"### {file.filename}\n```diff\n{file.patch}\n```" for file in diff.files
    )
    items_text = (
        "\n".join(f"- {item}" for item in changelog_items)
        if changelog_items
        else NO_CHANGELOG_ITEMS
    )
    template = PROMPT_TEMPLATES.get(language, PROMPT_TEMPLATES["en"])
    return template.format(
        from_version=diff.from_version,
        to_version=diff.to_version,
        diff_content=diff_content,
        changelog_items=items_text,
        tool_name=TOOL_NAME,
    )


def _parse_string_array(value: Any) -> list[str] | None:
    # The model occasionally returns arrays serialized as JSON strings.
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return None
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return list(value)
    return None


def normalize_tool_input(
    data: Any, version: str, fallback_changelog_items: list[str]
) -> ChangeSummary | None:
    """Validate the tool input and convert it to a ``ChangeSummary``.

    A malformed ``cli_changes`` falls back to the untranslated changelog items;
    any other malformed field rejects the whole answer.
    """
    if not isinstance(data, dict) or not isinstance(data.get("summary"), str):
        return None

    prompt_changes = _parse_string_array(data.get("prompt_changes"))
    if prompt_changes is None:
        return None

    cli_changes = _parse_string_array(data.get("cli_changes"))
    if cli_changes is None:
        logger.warning("Failed to parse cli_changes from model response, using fallback")
        cli_changes = list(fallback_changelog_items)

    flags = data.get("flag_changes")
    if isinstance(flags, str):
        try:
            flags = json.loads(flags)
        except json.JSONDecodeError:
            return None
    if not isinstance(flags, dict):
        return None

    added = _parse_string_array(flags.get("added"))
    removed = _parse_string_array(flags.get("removed"))
    modified = _parse_string_array(flags.get("modified"))
    if added is None or removed is None or modified is None:
        return None

    return ChangeSummary(
        version=version,
        summary=data["summary"],
        cli_changes=cli_changes,
        prompt_changes=prompt_changes,
        flag_changes=FlagChanges(added=added, removed=removed, modified=modified),
    )


class ClaudeSummarizer(Summarizer):
    """Generates change summaries with the Anthropic Messages API."""

    def __init__(
        self,
        config: ClaudeSummarizerConfig,
        client: AsyncAnthropic | None = None,
    ) -> None:
        self.config = config
        self._client = client

    @property
    def client(self) -> AsyncAnthropic:
        if self._client is None:
            self._client = AsyncAnthropic(
                api_key=self.config.api_key,
                timeout=self.config.timeout,
                max_retries=self.config.max_api_retries,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def _request(self, language: Language, prompt: str) -> Any | None:
        response = await asyncio.wait_for(
            self.client.messages.create(
                model=self.config.model,
                max_tokens=self.config.max_tokens,
                messages=[{"role": "user", "content": prompt}],
                tools=[build_summary_tool(language)],
                tool_choice={"type": "tool", "name": TOOL_NAME},
            ),
            timeout=self.config.timeout,
        )

        for block in response.content:
            if getattr(block, "type", None) == "tool_use":
                return block.input
        return None

    async def generate(
        self,
        language: Language,
        diff: ChangelogDiff,
        changelog_items: list[str],
    ) -> ChangeSummary:
        """Summarize ``diff`` and ``changelog_items`` in ``language``.

        Raises:
            SummaryGenerationError: If the answer is missing or malformed twice
            SummaryLanguageError: If the last answer is in the wrong language
        """
        base_prompt = build_prompt(language, diff, changelog_items)
        prompt = base_prompt
        logger.info(f"Generating summary with Claude API (language: {language})")

        for attempt in range(2):
            tool_input = await self._request(language, prompt)
            summary = normalize_tool_input(tool_input, diff.to_version, changelog_items)
            if summary is None:
                logger.warning(f"Invalid tool input structure: {tool_input!r}")
                if attempt == 1:
                    raise SummaryGenerationError(
                        "Tool input does not match expected structure after retry"
                    )
                prompt = base_prompt + STRUCTURE_REINFORCEMENTS.get(language, "")
                continue

            if validate_summary_language(summary, language):
                logger.info(f"Summary generated successfully (language: {language})")
                return summary

            logger.warning(f"Summary failed {language} language check")
            if attempt == 1:
                raise SummaryLanguageError(
                    f"Summary is not written in {language} after retry", language
                )
            prompt = base_prompt + LANGUAGE_REINFORCEMENTS.get(language, "")

        raise SummaryGenerationError("Summary generation exhausted its attempts")

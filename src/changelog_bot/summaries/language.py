"""Language conformance checks and effective language resolution."""

import re
from collections.abc import Iterable, Mapping
from typing import TypeVar

from ..models import DEFAULT_LANGUAGE, ChangeSummary, Language

T = TypeVar("T")

# Hangul syllables, Hangul Jamo, Hangul compatibility Jamo
HANGUL_PATTERN = re.compile("[\uac00-\ud7af\u1100-\u11ff\u3130-\u318f]")

# Technical terms stay in English, so only a majority of items must be Korean.
ITEM_LANGUAGE_THRESHOLD = 0.5

SCRIPT_PATTERNS: dict[Language, re.Pattern[str]] = {
    "ko": HANGUL_PATTERN,
}


def contains_script(text: str, language: Language) -> bool:
    """Check whether ``text`` contains characters of the language's script."""
    pattern = SCRIPT_PATTERNS.get(language)
    if pattern is None:
        return True
    return bool(pattern.search(text))


def contains_korean(text: str) -> bool:
    return contains_script(text, "ko")


def _items_conform(items: list[str], language: Language) -> bool:
    if not items:
        return True
    matching = sum(1 for item in items if contains_script(item, language))
    return matching / len(items) >= ITEM_LANGUAGE_THRESHOLD


def validate_summary_language(summary: ChangeSummary, language: Language) -> bool:
    """Check that a summary is actually written in ``language``.

    The default language always passes. For other languages the summary text
    must contain the target script and at least half of the CLI change items
    must as well.
    """
    if language == DEFAULT_LANGUAGE:
        return True
    if not contains_script(summary.summary, language):
        return False
    return _items_conform(summary.cli_changes, language)


def resolve_effective_language(
    available: Mapping[Language, T] | Iterable[Language],
    requested: Language | None = None,
    preferred: Language | None = None,
) -> Language | None:
    """Pick the language to use for a summary request.

    Precedence: the explicitly requested language, then the recipient's
    stored preference, then the first available language. Returns None only
    when nothing is available.
    """
    languages = list(available.keys() if isinstance(available, Mapping) else available)
    if not languages:
        return None

    for candidate in (requested, preferred):
        if candidate and candidate in languages:
            return candidate
    return languages[0]

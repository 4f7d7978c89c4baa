"""Summary caching and language validation."""

from .cache import SUMMARY_TTL, SummaryCache, SummaryGenerator
from .language import (
    contains_korean,
    resolve_effective_language,
    validate_summary_language,
)

__all__ = [
    "SUMMARY_TTL",
    "SummaryCache",
    "SummaryGenerator",
    "contains_korean",
    "resolve_effective_language",
    "validate_summary_language",
]

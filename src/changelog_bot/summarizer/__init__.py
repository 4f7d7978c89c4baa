"""Language-model summarization of upstream changes."""

from .base import Summarizer, SummaryGenerationError, SummaryLanguageError
from .claude import ClaudeSummarizer, ClaudeSummarizerConfig

__all__ = [
    "ClaudeSummarizer",
    "ClaudeSummarizerConfig",
    "Summarizer",
    "SummaryGenerationError",
    "SummaryLanguageError",
]

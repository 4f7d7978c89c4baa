"""Summarizer contract and errors."""

from abc import ABC, abstractmethod

from ..models import ChangelogDiff, ChangeSummary, Language


class SummaryGenerationError(Exception):
    """The model did not produce a usable summary."""


class SummaryLanguageError(SummaryGenerationError):
    """The summary was not written in the requested language."""

    def __init__(self, message: str, language: Language):
        super().__init__(message)
        self.language = language


class Summarizer(ABC):
    """Turns upstream changes into a structured summary for one language."""

    @abstractmethod
    async def generate(
        self,
        language: Language,
        diff: ChangelogDiff,
        changelog_items: list[str],
    ) -> ChangeSummary:
        """Summarize the changes of one version.

        Raises:
            SummaryGenerationError: If no valid summary could be produced
        """
        pass

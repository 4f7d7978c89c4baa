"""Per-(version, language) summary cache.

Summaries are expensive to produce, so every generated summary is cached for
a week and reused by later runs and by the retry phase. Two checks guard the
cache:

- writes are refused unless the summary has substantial content and is
  written in the requested language
- reads re-check the language and purge entries that fail, so bad data written
  by an older release heals itself
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence

from ..models import SUPPORTED_LANGUAGES, ChangeSummary, Language
from ..store.base import KeyValueStore
from ..store.keys import summary_key
from .language import validate_summary_language

logger = logging.getLogger(__name__)

SUMMARY_TTL = 7 * 24 * 60 * 60

SummaryGenerator = Callable[[Language], Awaitable[ChangeSummary]]


class SummaryCache:
    """Store-backed cache of generated change summaries."""

    def __init__(
        self,
        store: KeyValueStore,
        ttl_seconds: int = SUMMARY_TTL,
        languages: Sequence[Language] = SUPPORTED_LANGUAGES,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.languages: tuple[Language, ...] = tuple(languages)

    def supported_languages(self) -> list[Language]:
        return list(self.languages)

    def _validate_entry(
        self, data: object, version: str, language: Language
    ) -> ChangeSummary | None:
        """Parse a stored entry; None when it must be purged."""
        try:
            summary = ChangeSummary.from_dict(data)
        except ValueError as e:
            logger.warning(f"Malformed cached summary {version}:{language}: {e}")
            return None

        if not validate_summary_language(summary, language):
            logger.warning(
                f"Cached summary {version}:{language} is not in the expected language"
            )
            return None
        return summary

    async def get(self, version: str, language: Language) -> ChangeSummary | None:
        """Return the cached summary, purging it if it fails validation."""
        key = summary_key(version, language)
        data = await self.store.get(key)
        if data is None:
            return None

        summary = self._validate_entry(data, version, language)
        if summary is None:
            await self.store.delete(key)
            logger.info(f"Purged invalid cached summary: {key}")
            return None

        logger.debug(f"Cache hit: {key}")
        return summary

    async def set(self, version: str, language: Language, summary: ChangeSummary) -> bool:
        """Cache a summary if it passes the content and language checks.

        Returns:
            True if the entry was written. Refused entries are logged, not
            raised, so a set is not guaranteed to be readable afterwards.
        """
        if not summary.has_substantial_content:
            logger.warning(
                f"Skipping cache for {version}:{language} - no substantial content"
            )
            return False

        if not validate_summary_language(summary, language):
            logger.warning(
                f"Skipping cache for {version}:{language} - language validation failed"
            )
            return False

        key = summary_key(version, language)
        await self.store.set(key, summary.to_dict(), ttl=self.ttl_seconds)
        logger.info(f"Cached summary stored: {key}")
        return True

    async def get_all(self, version: str) -> dict[Language, ChangeSummary]:
        """Fetch every supported language for ``version`` in one round trip.

        The mapping preserves the supported-language order.
        """
        keys = [summary_key(version, language) for language in self.languages]
        values = await self.store.get_many(keys)

        results: dict[Language, ChangeSummary] = {}
        invalid_keys = []
        for language, key, data in zip(self.languages, keys, values, strict=True):
            if data is None:
                continue
            summary = self._validate_entry(data, version, language)
            if summary is None:
                invalid_keys.append(key)
            else:
                results[language] = summary

        if invalid_keys:
            await self.store.delete(*invalid_keys)
            logger.info(f"Purged invalid cached summaries: {', '.join(invalid_keys)}")

        return results

    async def pregenerate(
        self, version: str, generate_fn: SummaryGenerator
    ) -> dict[Language, ChangeSummary]:
        """Make sure a summary exists for every supported language.

        Cached entries are reused; missing languages are generated
        concurrently. A language whose generation fails or whose result does
        not validate is left out of the returned mapping.

        Raises:
            StoreError: Only when the store itself fails
        """
        existing = await self.get_all(version)
        missing = [language for language in self.languages if language not in existing]

        for language in existing:
            logger.info(f"Using cached summary for {version}:{language}")

        if not missing:
            return existing

        logger.info(f"Generating summaries for {version}: {', '.join(missing)}")

        async def generate(language: Language) -> ChangeSummary | None:
            try:
                summary = await generate_fn(language)
            except Exception as e:
                logger.error(f"Failed to generate summary for {version}:{language}: {e}")
                return None

            if not await self.set(version, language, summary):
                return None
            logger.info(f"Generated and cached summary for {version}:{language}")
            return summary

        outcomes = await asyncio.gather(
            *(generate(language) for language in missing), return_exceptions=True
        )

        generated: dict[Language, ChangeSummary] = {}
        for language, outcome in zip(missing, outcomes, strict=True):
            # Generator failures are handled in generate(); anything left is a store failure.
            if isinstance(outcome, BaseException):
                raise outcome
            if outcome is not None:
                generated[language] = outcome

        return {
            language: existing.get(language) or generated[language]
            for language in self.languages
            if language in existing or language in generated
        }

    async def delete(self, version: str, language: Language) -> bool:
        key = summary_key(version, language)
        deleted = await self.store.delete(key) > 0
        if deleted:
            logger.debug(f"Deleted cached summary: {key}")
        return deleted

    async def exists(self, version: str, language: Language) -> bool:
        return await self.store.exists(summary_key(version, language))

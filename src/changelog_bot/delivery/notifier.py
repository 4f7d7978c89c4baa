"""Fan-out delivery of release announcements to recipient workspaces.

Each recipient gets a main message followed by one thread reply per
non-empty change category. Replies to one recipient are strictly sequential
and spaced out to stay under Slack's per-channel rate limit, while recipients
are served concurrently in fixed-size batches. One recipient's failure never
affects another's.
"""

import asyncio
import logging
from collections.abc import Mapping, Sequence

from ..models import ChangeSummary, DeliveryResult, Language, NotificationMessage, Recipient
from ..registry.recipients import RecipientRegistry
from ..summaries.language import resolve_effective_language
from .formatting import build_main_blocks, build_thread_replies
from .slack import SlackTransport, is_credential_invalid

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_MESSAGE_DELAY = 1.1
DEFAULT_DELIVERY_TIMEOUT = 25.0


class SummaryUnavailableError(Exception):
    """No summary exists in any language for the recipient."""


class RecipientNotifier:
    """Delivers one version's announcement to many recipients."""

    def __init__(
        self,
        transport: SlackTransport,
        registry: RecipientRegistry,
        *,
        cli_repo_path: str,
        upstream_repo_path: str,
        batch_size: int = DEFAULT_BATCH_SIZE,
        message_delay: float = DEFAULT_MESSAGE_DELAY,
        timeout: float = DEFAULT_DELIVERY_TIMEOUT,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.transport = transport
        self.registry = registry
        self.cli_repo_path = cli_repo_path
        self.upstream_repo_path = upstream_repo_path
        self.batch_size = batch_size
        self.message_delay = message_delay
        self.timeout = timeout

    async def _post_thread(
        self, recipient: Recipient, message: NotificationMessage, language: Language
    ) -> None:
        summary = message.summary

        thread_ts = await self.transport.post_message(
            recipient.bot_token,
            recipient.channel_id,
            build_main_blocks(message.version, summary, language),
        )

        replies = build_thread_replies(
            message.version,
            summary,
            language,
            cli_compare_url=message.cli_compare_url,
            cli_repo_path=self.cli_repo_path,
            compare_url=message.compare_url,
            upstream_repo_path=self.upstream_repo_path,
        )
        for blocks in replies:
            await asyncio.sleep(self.message_delay)
            await self.transport.post_reply(
                recipient.bot_token, recipient.channel_id, blocks, thread_ts
            )

    async def send_to_recipient(
        self,
        recipient: Recipient,
        message: NotificationMessage,
        language: Language | None = None,
    ) -> DeliveryResult:
        """Deliver ``message`` to one recipient.

        Never raises. A credential-invalid failure deactivates the recipient
        before the failed result is returned.
        """
        logger.info(
            f"Sending notification to {recipient.team_name} ({recipient.team_id}) "
            f"for {message.version}"
        )
        try:
            await asyncio.wait_for(
                self._post_thread(recipient, message, language or recipient.language),
                timeout=self.timeout,
            )
        except Exception as e:
            logger.error(f"Failed to send notification to {recipient.team_name}: {e}")
            deactivated = False
            if is_credential_invalid(e):
                logger.warning(f"Token invalid for {recipient.team_name}, deactivating")
                try:
                    deactivated = await self.registry.deactivate(recipient.team_id)
                except Exception as deactivate_error:
                    logger.error(
                        f"Failed to deactivate recipient {recipient.team_id}: "
                        f"{deactivate_error}"
                    )
            return DeliveryResult(
                recipient=recipient, success=False, error=e, deactivated=deactivated
            )

        logger.info(f"Notification sent to {recipient.team_name}")
        return DeliveryResult(recipient=recipient, success=True)

    def _message_for(
        self,
        recipient: Recipient,
        message: NotificationMessage,
        summaries: Mapping[Language, ChangeSummary],
    ) -> tuple[NotificationMessage, Language] | None:
        language = resolve_effective_language(list(summaries), preferred=recipient.language)
        if language is None:
            return None
        if language != recipient.language:
            logger.warning(
                f"No {recipient.language} summary for {recipient.team_name}, "
                f"falling back to {language}"
            )
        personalized = NotificationMessage(
            version=message.version,
            summary=summaries[language],
            compare_url=message.compare_url,
            cli_compare_url=message.cli_compare_url,
        )
        return personalized, language

    async def deliver(
        self,
        recipient: Recipient,
        message: NotificationMessage,
        summaries: Mapping[Language, ChangeSummary],
    ) -> DeliveryResult:
        """Deliver using the best available summary for the recipient's language."""
        resolved = self._message_for(recipient, message, summaries)
        if resolved is None:
            return DeliveryResult(
                recipient=recipient,
                success=False,
                error=SummaryUnavailableError(f"No summary for language: {recipient.language}"),
            )
        personalized, language = resolved
        return await self.send_to_recipient(recipient, personalized, language)

    async def send_to_all(
        self,
        recipients: Sequence[Recipient],
        message: NotificationMessage,
        summaries: Mapping[Language, ChangeSummary],
    ) -> list[DeliveryResult]:
        """Deliver to every recipient, ``batch_size`` at a time.

        Returns exactly one result per recipient, in input order.
        """
        results: list[DeliveryResult] = []
        for i in range(0, len(recipients), self.batch_size):
            batch = recipients[i : i + self.batch_size]
            batch_results = await asyncio.gather(
                *[self.deliver(r, message, summaries) for r in batch],
                return_exceptions=True,
            )

            for recipient, result in zip(batch, batch_results, strict=True):
                if isinstance(result, BaseException):
                    logger.error(f"Unexpected delivery error for {recipient.team_name}: {result}")
                    results.append(
                        DeliveryResult(
                            recipient=recipient,
                            success=False,
                            error=result if isinstance(result, Exception) else None,
                        )
                    )
                else:
                    results.append(result)

        success_count = sum(1 for r in results if r.success)
        logger.info(
            f"Delivery finished: {success_count} success, {len(results) - success_count} failed"
        )
        return results

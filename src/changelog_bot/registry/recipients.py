"""Registry of recipient workspaces.

Each recipient is stored at ``recipient:<team_id>`` and, while active, its
team id is a member of the ``recipients:active`` set. The record and the set
are written in one pipelined batch; the batch is not transactional, so a
brief window where the two disagree is possible and tolerated. Readers
therefore filter on the record's own ``is_active`` flag too.
"""

import logging
import uuid
from dataclasses import replace

from ..models import DEFAULT_LANGUAGE, Language, Recipient, utc_now
from ..store.base import KeyValueStore
from ..store.keys import RECIPIENTS_ACTIVE, recipient_key

logger = logging.getLogger(__name__)


class RecipientRegistry:
    """Stores and lists recipient workspaces."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    @staticmethod
    def _parse(data: object, team_id: str) -> Recipient | None:
        if data is None:
            return None
        try:
            return Recipient.from_dict(data)  # type: ignore[arg-type]
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed recipient record {team_id}: {e}")
            return None

    async def _save(self, recipient: Recipient, active_change: bool | None) -> None:
        async with self.store.batch() as batch:
            batch.set(recipient_key(recipient.team_id), recipient.to_dict())
            if active_change is True:
                batch.set_add(RECIPIENTS_ACTIVE, recipient.team_id)
            elif active_change is False:
                batch.set_remove(RECIPIENTS_ACTIVE, recipient.team_id)

    async def list_active(self) -> list[Recipient]:
        """Active recipients ordered by installation time (oldest first)."""
        team_ids = sorted(await self.store.set_members(RECIPIENTS_ACTIVE))
        if not team_ids:
            return []

        values = await self.store.get_many([recipient_key(team_id) for team_id in team_ids])
        recipients = [
            recipient
            for team_id, data in zip(team_ids, values, strict=True)
            if (recipient := self._parse(data, team_id)) is not None and recipient.is_active
        ]
        return sorted(recipients, key=lambda r: (r.installed_at, r.team_id))

    async def list_by_language(self, language: Language) -> list[Recipient]:
        return [r for r in await self.list_active() if r.language == language]

    async def count_active(self) -> int:
        return await self.store.set_count(RECIPIENTS_ACTIVE)

    async def get(self, team_id: str) -> Recipient | None:
        return self._parse(await self.store.get(recipient_key(team_id)), team_id)

    async def upsert(
        self,
        team_id: str,
        team_name: str,
        bot_token: str,
        channel_id: str,
        language: Language = DEFAULT_LANGUAGE,
    ) -> Recipient:
        """Register a workspace, or refresh it on re-installation.

        Re-installation keeps the original id and installation time and
        reactivates the recipient.
        """
        existing = await self.get(team_id)
        now = utc_now()
        recipient = Recipient(
            id=existing.id if existing else str(uuid.uuid4()),
            team_id=team_id,
            team_name=team_name,
            bot_token=bot_token,
            channel_id=channel_id,
            language=language,
            is_active=True,
            installed_at=existing.installed_at if existing else now,
            updated_at=now,
        )
        await self._save(recipient, active_change=True)
        logger.info(f"Recipient created/updated for team {team_id}")
        return recipient

    async def update(
        self,
        team_id: str,
        *,
        team_name: str | None = None,
        bot_token: str | None = None,
        channel_id: str | None = None,
        language: Language | None = None,
        is_active: bool | None = None,
    ) -> Recipient | None:
        """Change selected fields. Returns None if the recipient is unknown."""
        existing = await self.get(team_id)
        if existing is None:
            return None

        updated = replace(
            existing,
            team_name=team_name if team_name is not None else existing.team_name,
            bot_token=bot_token if bot_token is not None else existing.bot_token,
            channel_id=channel_id if channel_id is not None else existing.channel_id,
            language=language if language is not None else existing.language,
            is_active=is_active if is_active is not None else existing.is_active,
            updated_at=utc_now(),
        )
        await self._save(updated, active_change=is_active)
        logger.info(f"Recipient updated for team {team_id}")
        return updated

    async def deactivate(self, team_id: str) -> bool:
        """Soft-delete a recipient. Returns False if it is unknown."""
        updated = await self.update(team_id, is_active=False)
        if updated is None:
            return False
        logger.info(f"Recipient deactivated for team {team_id}")
        return True

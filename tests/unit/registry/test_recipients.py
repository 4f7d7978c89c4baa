"""
Unit tests for the recipient registry.

Why: Delivery fans out to exactly the active recipients; deactivated or
     half-written records must never be notified.

What: Tests upsert, reinstallation, listing order, deactivation and the
      tolerance for inconsistent records.

How: Runs against the in-memory store.
"""

import pytest

from changelog_bot.registry import RecipientRegistry
from changelog_bot.store.keys import RECIPIENTS_ACTIVE, recipient_key
from tests.factories import make_recipient


@pytest.fixture
def registry(memory_store) -> RecipientRegistry:
    return RecipientRegistry(memory_store)


class TestRecipientRegistry:
    """Tests for RecipientRegistry."""

    async def test_upsert_registers_active_recipient(self, registry, memory_store):
        """
        Why: A new installation must be notified from the next pass on
        What: upsert() stores the record and adds it to the active set
        How: Upserts one team and inspects the registry
        """
        recipient = await registry.upsert("T1", "Acme", "xoxb-1", "C1", language="ko")

        assert recipient.is_active
        assert await memory_store.set_members(RECIPIENTS_ACTIVE) == {"T1"}
        assert await registry.get("T1") == recipient

    async def test_reinstall_keeps_identity(self, registry):
        """
        Why: Reinstalling should refresh credentials without losing history
        What: id and installed_at survive a second upsert and the token changes
        How: Upserts the same team twice
        """
        first = await registry.upsert("T1", "Acme", "xoxb-old", "C1")
        await registry.deactivate("T1")

        second = await registry.upsert("T1", "Acme", "xoxb-new", "C2")

        assert second.id == first.id
        assert second.installed_at == first.installed_at
        assert second.bot_token == "xoxb-new"
        assert second.is_active

    async def test_list_active_orders_by_installation(self, registry, memory_store):
        """
        Why: Fan-out order is deterministic, oldest installation first
        What: list_active() sorts by installed_at
        How: Writes recipients with out-of-order installation times
        """
        for recipient in (
            make_recipient("T3", installed_offset_minutes=5),
            make_recipient("T1", installed_offset_minutes=10),
            make_recipient("T2", installed_offset_minutes=0),
        ):
            await memory_store.set(recipient_key(recipient.team_id), recipient.to_dict())
            await memory_store.set_add(RECIPIENTS_ACTIVE, recipient.team_id)

        active = await registry.list_active()

        assert [r.team_id for r in active] == ["T2", "T3", "T1"]

    async def test_list_active_skips_inconsistent_records(self, registry, memory_store):
        """
        Why: The record and the active set are written without a transaction
        What: Missing, inactive and malformed records are left out
        How: Adds set members whose records are absent, inactive or broken
        """
        await memory_store.set(recipient_key("T1"), make_recipient("T1").to_dict())
        await memory_store.set(
            recipient_key("T2"), make_recipient("T2", is_active=False).to_dict()
        )
        await memory_store.set(recipient_key("T3"), {"team_id": "T3"})
        await memory_store.set_add(RECIPIENTS_ACTIVE, "T1", "T2", "T3", "T4")

        active = await registry.list_active()

        assert [r.team_id for r in active] == ["T1"]

    async def test_deactivate(self, registry, memory_store):
        """
        Why: Revoked credentials must stop further delivery attempts
        What: deactivate() clears the flag and removes the team from the active set
        How: Upserts and deactivates a team, then lists active recipients
        """
        await registry.upsert("T1", "Acme", "xoxb-1", "C1")

        assert await registry.deactivate("T1") is True

        assert await registry.list_active() == []
        assert (await registry.get("T1")).is_active is False
        assert await memory_store.set_members(RECIPIENTS_ACTIVE) == set()

    async def test_deactivate_unknown_recipient(self, registry):
        assert await registry.deactivate("missing") is False

    async def test_list_by_language(self, registry):
        """
        Why: Operators inspect recipients per language
        What: Only active recipients with the given language are returned
        How: Registers one en and one ko recipient
        """
        await registry.upsert("T1", "Acme", "xoxb-1", "C1", language="en")
        await registry.upsert("T2", "Beta", "xoxb-2", "C2", language="ko")

        korean = await registry.list_by_language("ko")

        assert [r.team_id for r in korean] == ["T2"]
        assert await registry.count_active() == 2

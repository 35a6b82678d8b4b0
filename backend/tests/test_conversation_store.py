"""
Tests for ConversationStore persistence rules.
"""

import pytest

from timeline_chat.errors import ConflictError, NotFoundError
from timeline_chat.schemas.scope import GENERAL, PropertyScope
from timeline_chat.services.conversation_store import (
    AGENT,
    CLIENT,
    ConversationStore,
    other_party,
)

from conftest import AGENT_ID, CLIENT_ID, TIMELINE_ID


@pytest.mark.asyncio
class TestConversationTuple:

    async def test_general_scope_only_matches_null_property(self, db):
        store = ConversationStore(db)
        await store.create_conversation(AGENT_ID, CLIENT_ID, TIMELINE_ID, PropertyScope("P1"))

        assert await store.find_conversation(AGENT_ID, CLIENT_ID, TIMELINE_ID, GENERAL) is None

        general = await store.create_conversation(AGENT_ID, CLIENT_ID, TIMELINE_ID, GENERAL)
        found = await store.find_conversation(AGENT_ID, CLIENT_ID, TIMELINE_ID, GENERAL)
        assert found.id == general.id
        assert found.property_id is None

    async def test_duplicate_property_tuple_conflicts(self, db):
        store = ConversationStore(db)
        await store.create_conversation(AGENT_ID, CLIENT_ID, TIMELINE_ID, PropertyScope("P1"))

        with pytest.raises(ConflictError):
            await store.create_conversation(AGENT_ID, CLIENT_ID, TIMELINE_ID, PropertyScope("P1"))

    async def test_duplicate_general_tuple_conflicts(self, db):
        store = ConversationStore(db)
        await store.create_conversation(AGENT_ID, CLIENT_ID, TIMELINE_ID, GENERAL)

        with pytest.raises(ConflictError):
            await store.create_conversation(AGENT_ID, CLIENT_ID, TIMELINE_ID, GENERAL)

    async def test_new_conversation_starts_clean(self, db):
        conversation = await ConversationStore(db).create_conversation(
            AGENT_ID, CLIENT_ID, TIMELINE_ID, PropertyScope("P1")
        )

        assert conversation.is_active is True
        assert conversation.agent_unread_count == 0
        assert conversation.client_unread_count == 0
        assert conversation.property_id == "P1"


@pytest.mark.asyncio
class TestMessagesAndUnread:

    async def test_append_increments_only_recipient_counter(self, db):
        store = ConversationStore(db)
        conversation = await store.create_conversation(AGENT_ID, CLIENT_ID, TIMELINE_ID, GENERAL)

        await store.append_message(conversation.id, CLIENT_ID, CLIENT, "hello")
        await store.append_message(conversation.id, CLIENT_ID, CLIENT, "anyone there?")
        await store.append_message(conversation.id, AGENT_ID, AGENT, "yes")

        refreshed = await store.get_conversation(conversation.id)
        await db.refresh(refreshed)
        assert refreshed.agent_unread_count == 2
        assert refreshed.client_unread_count == 1

    async def test_append_to_missing_conversation(self, db):
        with pytest.raises(NotFoundError):
            await ConversationStore(db).append_message(9999, CLIENT_ID, CLIENT, "hello")

    async def test_mark_read_is_idempotent(self, db):
        store = ConversationStore(db)
        conversation = await store.create_conversation(AGENT_ID, CLIENT_ID, TIMELINE_ID, GENERAL)
        await store.append_message(conversation.id, CLIENT_ID, CLIENT, "one")
        await store.append_message(conversation.id, CLIENT_ID, CLIENT, "two")
        await store.append_message(conversation.id, AGENT_ID, AGENT, "reply")

        first = await store.mark_read(conversation.id, AGENT)
        second = await store.mark_read(conversation.id, AGENT)
        assert first.marked == 2
        assert second.marked == 0

        refreshed = await store.get_conversation(conversation.id)
        await db.refresh(refreshed)
        assert refreshed.agent_unread_count == 0
        # The agent reading does not touch the client's side
        assert refreshed.client_unread_count == 1

        page = await store.list_messages(conversation.id, 1, 10)
        by_sender = {m.content: m for m in page.messages}
        assert by_sender["one"].is_read and by_sender["one"].read_at is not None
        assert not by_sender["reply"].is_read

    async def test_list_messages_pages_oldest_first(self, db):
        store = ConversationStore(db)
        conversation = await store.create_conversation(AGENT_ID, CLIENT_ID, TIMELINE_ID, GENERAL)
        for i in range(5):
            await store.append_message(conversation.id, CLIENT_ID, CLIENT, f"m{i}")

        first = await store.list_messages(conversation.id, 1, 2)
        last = await store.list_messages(conversation.id, 3, 2)

        assert [m.content for m in first.messages] == ["m0", "m1"]
        assert first.has_more is True
        assert first.total == 5
        assert [m.content for m in last.messages] == ["m4"]
        assert last.has_more is False

    async def test_recent_messages_newest_first(self, db):
        store = ConversationStore(db)
        conversation = await store.create_conversation(AGENT_ID, CLIENT_ID, TIMELINE_ID, GENERAL)
        for i in range(3):
            await store.append_message(conversation.id, CLIENT_ID, CLIENT, f"m{i}")

        recent = await store.recent_messages(conversation.id, 2)
        assert [m.content for m in recent] == ["m2", "m1"]

    async def test_inactive_conversations_are_not_listed(self, db):
        store = ConversationStore(db)
        kept = await store.create_conversation(AGENT_ID, CLIENT_ID, TIMELINE_ID, GENERAL)
        hidden = await store.create_conversation(AGENT_ID, CLIENT_ID, TIMELINE_ID, PropertyScope("P1"))
        await store.set_active(hidden.id, False)

        listed = await store.list_conversations(AGENT_ID, AGENT)
        assert [c.id for c in listed] == [kept.id]


def test_other_party():
    assert other_party(AGENT) == CLIENT
    assert other_party(CLIENT) == AGENT
    with pytest.raises(ValueError):
        other_party("admin")

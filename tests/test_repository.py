"""Tests for the in-memory message repository."""

import pytest

from chatshield.chat.repository import InMemoryMessageRepository
from chatshield.pii.persistence import InMemoryDetectionStore
from chatshield.pii.types import Detection


class TestInMemoryMessageRepository:
    @pytest.mark.asyncio
    async def test_messages_counted_and_ordered(self):
        repo = InMemoryMessageRepository()
        conversation = await repo.create_conversation("u1", "title")
        for i in range(3):
            await repo.create_message(conversation.id, "user", f"m{i}")

        stored = await repo.find_conversation(conversation.id)
        assert stored.message_count == 3
        context = await repo.get_context_messages(conversation.id, 2)
        assert [m.content for m in context] == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_find_returns_copy(self):
        repo = InMemoryMessageRepository()
        conversation = await repo.create_conversation("u1")
        found = await repo.find_conversation(conversation.id)
        found.message_count = 99
        assert (await repo.find_conversation(conversation.id)).message_count == 0

    @pytest.mark.asyncio
    async def test_unknown_conversation(self):
        repo = InMemoryMessageRepository()
        assert await repo.find_conversation("missing") is None
        with pytest.raises(KeyError):
            await repo.create_message("missing", "user", "hi")

    @pytest.mark.asyncio
    async def test_delete_cascades_to_detections(self):
        store = InMemoryDetectionStore()
        repo = InMemoryMessageRepository(store)
        conversation = await repo.create_conversation("u1")
        message = await repo.create_message(conversation.id, "assistant", "a@b.co")
        await store.persist(message.id, [Detection.create("email", 0, 6)])

        await repo.delete_message(message.id)

        assert await repo.get_message(message.id) is None
        assert await store.get_by_message(message.id) == []
        assert (await repo.find_conversation(conversation.id)).message_count == 0

    @pytest.mark.asyncio
    async def test_token_bookkeeping(self):
        repo = InMemoryMessageRepository()
        conversation = await repo.create_conversation("u1")
        message = await repo.create_message(conversation.id, "user", "hi")
        await repo.update_message_tokens(message.id, 12)
        await repo.add_conversation_tokens(conversation.id, 30)
        await repo.add_conversation_tokens(conversation.id, 5)

        assert (await repo.get_message(message.id)).token_count == 12
        assert (await repo.find_conversation(conversation.id)).total_tokens == 35

    @pytest.mark.asyncio
    async def test_zero_context_window(self):
        repo = InMemoryMessageRepository()
        conversation = await repo.create_conversation("u1")
        await repo.create_message(conversation.id, "user", "hi")
        assert await repo.get_context_messages(conversation.id, 0) == []

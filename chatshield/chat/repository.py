"""In-memory conversation and message store.

Process-local ``MessageRepository`` for development and tests. Deleting a
message cascades to its stored PII detections.
"""

import asyncio
import logging
import uuid

from chatshield.chat.ports import Conversation, Message, MessageRepository, Role
from chatshield.pii.persistence import DetectionStore

logger = logging.getLogger(__name__)


class InMemoryMessageRepository(MessageRepository):
    def __init__(self, detection_store: DetectionStore | None = None) -> None:
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, Message] = {}
        # conversation_id -> message ids in insertion order
        self._order: dict[str, list[str]] = {}
        self._detection_store = detection_store
        self._lock = asyncio.Lock()

    async def create_conversation(self, user_id: str, title: str | None = None) -> Conversation:
        conversation = Conversation(id=str(uuid.uuid4()), user_id=user_id, title=title)
        async with self._lock:
            self._conversations[conversation.id] = conversation
            self._order[conversation.id] = []
        logger.info("Conversation created conversation_id=%s user_id=%s", conversation.id, user_id)
        return conversation

    async def find_conversation(self, conversation_id: str) -> Conversation | None:
        conversation = self._conversations.get(conversation_id)
        return conversation.model_copy() if conversation is not None else None

    async def get_context_messages(self, conversation_id: str, limit: int) -> list[Message]:
        if limit <= 0:
            return []
        ids = self._order.get(conversation_id, [])[-limit:]
        return [self._messages[i] for i in ids]

    async def create_message(
        self, conversation_id: str, role: Role, content: str, token_count: int = 0
    ) -> Message:
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                raise KeyError(f"Unknown conversation {conversation_id}")
            message = Message(
                id=str(uuid.uuid4()),
                conversation_id=conversation_id,
                role=role,
                content=content,
                token_count=token_count,
            )
            self._messages[message.id] = message
            self._order[conversation_id].append(message.id)
            conversation.message_count += 1
        return message

    async def get_message(self, message_id: str) -> Message | None:
        return self._messages.get(message_id)

    async def update_message_tokens(self, message_id: str, token_count: int) -> None:
        message = self._messages.get(message_id)
        if message is not None:
            message.token_count = token_count

    async def delete_message(self, message_id: str) -> None:
        async with self._lock:
            message = self._messages.pop(message_id, None)
            if message is None:
                return
            order = self._order.get(message.conversation_id, [])
            if message_id in order:
                order.remove(message_id)
            conversation = self._conversations.get(message.conversation_id)
            if conversation is not None:
                conversation.message_count = max(0, conversation.message_count - 1)
        if self._detection_store is not None:
            await self._detection_store.delete_for_message(message_id)
        logger.info("Message deleted message_id=%s", message_id)

    async def add_conversation_tokens(self, conversation_id: str, tokens: int) -> None:
        conversation = self._conversations.get(conversation_id)
        if conversation is not None:
            conversation.total_tokens += tokens

"""Collaborator ports for the chat use cases.

Abstract base classes for the LLM provider and the message store, plus the
plain data types that cross those seams. The use cases depend only on
these interfaces; ``chatshield.services.build_services`` wires the concrete
implementations (``GeminiChatClient``, ``InMemoryMessageRepository``).
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from chatshield.pii.persistence import DetectionStore

Role = Literal["system", "user", "assistant"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


class ChatMessage(BaseModel):
    """A provider-bound message (no identity, no bookkeeping)."""

    role: Role
    content: str


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class ChatChunk(BaseModel):
    """One streamed delta. ``usage`` is set on the chunk that reports it."""

    content: str = ""
    usage: TokenUsage | None = None


class ChatCompletion(BaseModel):
    content: str
    usage: TokenUsage | None = None


class Conversation(BaseModel):
    id: str
    user_id: str
    title: str | None = None
    message_count: int = 0
    total_tokens: int = 0
    created_at: datetime = Field(default_factory=_utcnow)


class Message(BaseModel):
    id: str
    conversation_id: str
    role: Role
    content: str
    token_count: int = 0
    created_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------


class ChatClient(ABC):
    """LLM completion provider."""

    @abstractmethod
    def stream_chat(
        self,
        messages: list[ChatMessage],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[ChatChunk]:
        """Stream a completion as ``ChatChunk`` deltas."""

    @abstractmethod
    async def complete(
        self,
        messages: list[ChatMessage],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ChatCompletion:
        """Return a single, non-streamed completion."""

    @abstractmethod
    def estimate_token_count(self, messages: list[ChatMessage]) -> int:
        """Rough token count for when the provider reports no usage."""


class MessageRepository(ABC):
    """Conversation and message store."""

    @abstractmethod
    async def create_conversation(self, user_id: str, title: str | None = None) -> Conversation:
        ...

    @abstractmethod
    async def find_conversation(self, conversation_id: str) -> Conversation | None:
        ...

    @abstractmethod
    async def get_context_messages(self, conversation_id: str, limit: int) -> list[Message]:
        """Return the last ``limit`` messages of the conversation, oldest first."""

    @abstractmethod
    async def create_message(
        self, conversation_id: str, role: Role, content: str, token_count: int = 0
    ) -> Message:
        ...

    @abstractmethod
    async def get_message(self, message_id: str) -> Message | None:
        ...

    @abstractmethod
    async def update_message_tokens(self, message_id: str, token_count: int) -> None:
        ...

    @abstractmethod
    async def delete_message(self, message_id: str) -> None:
        """Delete a message and everything that hangs off it."""

    @abstractmethod
    async def add_conversation_tokens(self, conversation_id: str, tokens: int) -> None:
        ...


__all__ = [
    "ChatChunk",
    "ChatClient",
    "ChatCompletion",
    "ChatMessage",
    "Conversation",
    "DetectionStore",
    "Message",
    "MessageRepository",
    "Role",
    "TokenUsage",
]

"""Gemini-backed ``ChatClient``.

Wraps ``ChatGoogleGenerativeAI`` from ``langchain-google-genai``. Model
instances are TTL-cached per (model, temperature, max_tokens) so rotated
credentials are picked up within the hour, and construction is guarded
by an ``asyncio.Lock`` so concurrent coroutines never build duplicates.
"""

import asyncio
import logging
from collections.abc import AsyncIterator

from cachetools import TTLCache
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI

from chatshield.chat.ports import (
    ChatChunk,
    ChatClient,
    ChatCompletion,
    ChatMessage,
    TokenUsage,
)
from chatshield.config import Settings

logger = logging.getLogger(__name__)

# Rough heuristic used only when the provider reports no usage.
_CHARS_PER_TOKEN = 4
_TOKENS_PER_MESSAGE = 4

_ROLE_TO_MESSAGE: dict[str, type[BaseMessage]] = {
    "system": SystemMessage,
    "user": HumanMessage,
    "assistant": AIMessage,
}


def to_langchain_messages(messages: list[ChatMessage]) -> list[BaseMessage]:
    return [_ROLE_TO_MESSAGE[m.role](content=m.content) for m in messages]


def _usage_from(message) -> TokenUsage | None:
    metadata = getattr(message, "usage_metadata", None)
    if not metadata:
        return None
    return TokenUsage(
        prompt_tokens=metadata.get("input_tokens", 0),
        completion_tokens=metadata.get("output_tokens", 0),
    )


def _text_from(content) -> str:
    """Normalize LangChain message content (str or list of parts) to text."""
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


class GeminiChatClient(ChatClient):
    """Chat completions via Google Gemini.

    Args:
        settings: Application settings (model defaults, timeout, retries).
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._llm_cache: TTLCache = TTLCache(maxsize=8, ttl=3600)
        self._llm_lock = asyncio.Lock()

    async def _get_llm(
        self, model: str | None, temperature: float | None, max_tokens: int | None
    ) -> ChatGoogleGenerativeAI:
        settings = self._settings
        key = (
            model or settings.MODEL_NAME,
            settings.MODEL_TEMPERATURE if temperature is None else temperature,
            max_tokens or settings.MODEL_MAX_OUTPUT_TOKENS,
        )
        async with self._llm_lock:
            cached = self._llm_cache.get(key)
            if cached is not None:
                return cached
            api_key = settings.GOOGLE_API_KEY.get_secret_value()
            llm = ChatGoogleGenerativeAI(
                model=key[0],
                temperature=key[1],
                max_output_tokens=key[2],
                timeout=settings.MODEL_TIMEOUT,
                max_retries=settings.MODEL_MAX_RETRIES,
                **({"google_api_key": api_key} if api_key else {}),
            )
            self._llm_cache[key] = llm
            return llm

    async def stream_chat(
        self,
        messages: list[ChatMessage],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[ChatChunk]:
        llm = await self._get_llm(model, temperature, max_tokens)
        async for chunk in llm.astream(to_langchain_messages(messages)):
            yield ChatChunk(content=_text_from(chunk.content), usage=_usage_from(chunk))

    async def complete(
        self,
        messages: list[ChatMessage],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ChatCompletion:
        llm = await self._get_llm(model, temperature, max_tokens)
        result = await llm.ainvoke(to_langchain_messages(messages))
        return ChatCompletion(content=_text_from(result.content), usage=_usage_from(result))

    def estimate_token_count(self, messages: list[ChatMessage]) -> int:
        return estimate_token_count(messages)


def estimate_token_count(messages: list[ChatMessage]) -> int:
    """Character-based token estimate for when usage metadata is missing."""
    return sum(
        len(m.content) // _CHARS_PER_TOKEN + _TOKENS_PER_MESSAGE for m in messages
    )

"""Non-streaming chat send.

Same admission and persistence rules as the streaming path, but the whole
reply is collected first and scanned once.
"""

import asyncio
import logging

from pydantic import BaseModel

from chatshield.chat.errors import ProviderError
from chatshield.chat.ports import Message, TokenUsage
from chatshield.chat.stream import ChatUseCase
from chatshield.pii.types import Detection

logger = logging.getLogger(__name__)


class SendMessageResult(BaseModel):
    user_message: Message
    assistant_message: Message
    detections: list[Detection]
    total_tokens: int


class SendMessageUseCase(ChatUseCase):
    async def execute(self, user_id: str, conversation_id: str, content: str) -> SendMessageResult:
        """Send a message and wait for the full reply.

        Raises:
            ChatError: Any admission failure.
            ProviderError: The provider failed; the user message is removed.
        """
        admitted = await self.admission.admit(user_id, conversation_id, content)
        user_message, messages = await self._open_turn(conversation_id, admitted.content)

        parts: list[str] = []
        usage: TokenUsage | None = None
        try:
            async with asyncio.timeout(self.settings.STREAM_TIMEOUT_SECONDS):
                async for chunk in self.chat_client.stream_chat(messages):
                    if chunk.content:
                        parts.append(chunk.content)
                    if chunk.usage is not None:
                        usage = chunk.usage
        except Exception as exc:
            logger.exception(
                "Provider error on send conversation_id=%s user_id=%s", conversation_id, user_id
            )
            await self._discard_user_message(user_message.id)
            raise ProviderError() from exc

        reply = "".join(parts)
        detections = await self.scanner.scan(
            reply, user_id=user_id, conversation_id=conversation_id
        )
        resolved = self._resolve_usage(messages, reply, usage)

        assistant_message = await self._store_reply(
            conversation_id, reply, detections, resolved.completion_tokens
        )
        await self._record_usage(user_id, conversation_id, user_message.id, resolved)

        logger.info(
            "Message sent conversation_id=%s total_tokens=%d detections=%d",
            conversation_id,
            resolved.total_tokens,
            len(detections),
        )
        return SendMessageResult(
            user_message=user_message,
            assistant_message=assistant_message,
            detections=detections,
            total_tokens=resolved.total_tokens,
        )

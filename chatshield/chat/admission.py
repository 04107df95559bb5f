"""Admission checks for a new user message.

Runs every pre-stream check in a fixed order and raises the matching
typed error on the first failure. Nothing is persisted and no provider
call is made before ``admit`` returns.

Order: content, length, conversation exists, ownership, message cap,
rate limit, daily quota.
"""

import logging
import re
from dataclasses import dataclass

from chatshield.chat.errors import (
    ChatValidationError,
    ConversationNotFoundError,
    ForbiddenError,
    QuotaExceededError,
    RateLimitExceededError,
)
from chatshield.chat.ports import Conversation, MessageRepository
from chatshield.limits import InMemoryTokenTracker, SlidingWindowRateLimiter
from chatshield.pii.masking import redact_for_log

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]*>")


def sanitize_content(content: str) -> str:
    """Strip anything that looks like markup and surrounding whitespace."""
    return _TAG_RE.sub("", content).strip()


@dataclass(frozen=True)
class AdmittedMessage:
    content: str
    conversation: Conversation


class MessageAdmission:
    """Validates and authorizes a user message before any work starts."""

    def __init__(
        self,
        repository: MessageRepository,
        rate_limiter: SlidingWindowRateLimiter,
        token_tracker: InMemoryTokenTracker,
        *,
        max_message_length: int,
        max_messages_per_conversation: int,
    ) -> None:
        self._repository = repository
        self._rate_limiter = rate_limiter
        self._token_tracker = token_tracker
        self._max_message_length = max_message_length
        self._max_messages = max_messages_per_conversation

    async def admit(self, user_id: str, conversation_id: str, content: str) -> AdmittedMessage:
        """Run all checks and return the sanitized message.

        Raises:
            ChatValidationError: Empty, too long, or conversation full.
            ConversationNotFoundError: Unknown conversation.
            ForbiddenError: Conversation owned by another user.
            RateLimitExceededError: Per-minute limit reached.
            QuotaExceededError: Daily token budget used up.
        """
        sanitized = sanitize_content(content)
        if not sanitized:
            raise ChatValidationError("Message cannot be empty")
        if len(sanitized) > self._max_message_length:
            raise ChatValidationError(
                f"Message exceeds maximum length of {self._max_message_length} characters"
            )

        conversation = await self._repository.find_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError()
        if conversation.user_id != user_id:
            logger.warning(
                "Conversation ownership mismatch conversation_id=%s user_id=%s",
                conversation_id,
                user_id,
            )
            raise ForbiddenError()
        if conversation.message_count >= self._max_messages:
            raise ChatValidationError(
                f"Conversation has reached the maximum of {self._max_messages} messages"
            )

        decision = self._rate_limiter.consume(user_id)
        if not decision.allowed:
            raise RateLimitExceededError(decision.retry_after or 1)

        quota = await self._token_tracker.check_quota(user_id)
        if not quota.allowed:
            logger.warning(
                "Daily token quota exceeded user_id=%s used=%d limit=%d",
                user_id,
                quota.used,
                quota.limit,
            )
            raise QuotaExceededError(quota.used, quota.limit)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Message admitted conversation_id=%s user_id=%s content=%s",
                conversation_id,
                user_id,
                redact_for_log(sanitized),
            )
        return AdmittedMessage(content=sanitized, conversation=conversation)

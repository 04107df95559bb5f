"""Daily token quota tracking.

Usage is counted per user per UTC day. A user is admitted while any of
the daily budget remains; the quota resets at the next UTC midnight.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import date, datetime, time, timedelta, timezone

from pydantic import BaseModel

from chatshield.chat.ports import MessageRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuotaCheck(BaseModel):
    allowed: bool
    used: int
    limit: int
    remaining: int
    reset_at: datetime


class InMemoryTokenTracker:
    """Per-user daily token counter.

    Conversation token totals are delegated to the message repository,
    which owns conversation records.
    """

    def __init__(
        self,
        daily_limit: int,
        repository: MessageRepository | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.daily_limit = daily_limit
        self._repository = repository
        self._clock = clock
        self._usage: dict[tuple[str, date], int] = {}
        self._lock = asyncio.Lock()

    def _today(self) -> date:
        return self._clock().date()

    def _reset_at(self) -> datetime:
        tomorrow = self._today() + timedelta(days=1)
        return datetime.combine(tomorrow, time.min, tzinfo=timezone.utc)

    async def get_current_usage(self, user_id: str) -> QuotaCheck:
        used = self._usage.get((user_id, self._today()), 0)
        remaining = max(0, self.daily_limit - used)
        return QuotaCheck(
            allowed=remaining > 0,
            used=used,
            limit=self.daily_limit,
            remaining=remaining,
            reset_at=self._reset_at(),
        )

    async def check_quota(self, user_id: str) -> QuotaCheck:
        check = await self.get_current_usage(user_id)
        logger.debug(
            "Token quota check user_id=%s used=%d remaining=%d allowed=%s",
            user_id,
            check.used,
            check.remaining,
            check.allowed,
        )
        return check

    async def track_usage(self, user_id: str, token_count: int) -> None:
        key = (user_id, self._today())
        async with self._lock:
            self._usage[key] = self._usage.get(key, 0) + token_count
        logger.debug("Token usage tracked user_id=%s tokens=%d", user_id, token_count)

    async def update_conversation_tokens(self, conversation_id: str, token_count: int) -> None:
        if self._repository is None:
            return
        await self._repository.add_conversation_tokens(conversation_id, token_count)

    def sweep(self) -> int:
        """Drop usage counters from previous UTC days.

        Returns:
            Number of counters evicted.
        """
        today = self._today()
        expired = [key for key in self._usage if key[1] < today]
        for key in expired:
            del self._usage[key]
        if expired:
            logger.debug("Token tracker swept %d expired counters", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._usage)

"""Usage and cost accounting for AI PII detector calls.

One aggregate row per (user, conversation, UTC day). Every detector call,
successful or not, is counted; failed calls also bump ``error_count``.
"""

import asyncio
import logging
from datetime import date, datetime, timezone

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class DetectionCostRecord(BaseModel):
    user_id: str
    conversation_id: str | None = None
    day: date
    request_count: int = 0
    total_tokens: int = 0
    total_latency_ms: int = 0
    error_count: int = 0


class DetectionCostAggregate(BaseModel):
    request_count: int = 0
    total_tokens: int = 0
    total_latency_ms: int = 0
    error_count: int = 0
    avg_latency_ms: float = 0.0
    error_rate: float = 0.0  # percentage, 0-100


class PiiDetectionCostTracker:
    """In-memory daily aggregates of detector usage."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str | None, date], DetectionCostRecord] = {}
        self._lock = asyncio.Lock()

    async def track(
        self,
        user_id: str,
        conversation_id: str | None,
        tokens: int,
        latency_ms: int,
        success: bool,
    ) -> None:
        """Add one detector call to today's aggregate (upsert)."""
        day = datetime.now(timezone.utc).date()
        key = (user_id, conversation_id, day)
        async with self._lock:
            record = self._records.get(key)
            if record is None:
                record = DetectionCostRecord(
                    user_id=user_id, conversation_id=conversation_id, day=day
                )
                self._records[key] = record
            record.request_count += 1
            record.total_tokens += tokens
            record.total_latency_ms += latency_ms
            if not success:
                record.error_count += 1

    async def get_by_user(self, user_id: str) -> list[DetectionCostRecord]:
        records = [r for r in self._records.values() if r.user_id == user_id]
        return sorted(records, key=lambda r: r.day, reverse=True)

    async def get_by_conversation(self, conversation_id: str) -> list[DetectionCostRecord]:
        records = [r for r in self._records.values() if r.conversation_id == conversation_id]
        return sorted(records, key=lambda r: r.day, reverse=True)

    async def get_aggregate(
        self,
        *,
        user_id: str | None = None,
        conversation_id: str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> DetectionCostAggregate:
        """Sum matching records; ``start`` and ``end`` are inclusive days."""
        matching = [
            r
            for r in self._records.values()
            if (user_id is None or r.user_id == user_id)
            and (conversation_id is None or r.conversation_id == conversation_id)
            and (start is None or r.day >= start)
            and (end is None or r.day <= end)
        ]
        request_count = sum(r.request_count for r in matching)
        total_latency_ms = sum(r.total_latency_ms for r in matching)
        error_count = sum(r.error_count for r in matching)
        return DetectionCostAggregate(
            request_count=request_count,
            total_tokens=sum(r.total_tokens for r in matching),
            total_latency_ms=total_latency_ms,
            error_count=error_count,
            avg_latency_ms=round(total_latency_ms / request_count, 2) if request_count else 0.0,
            error_rate=round(error_count / request_count * 100, 2) if request_count else 0.0,
        )

"""Storage of PII detection metadata.

Only offsets, types and confidences are stored, never the PII values
themselves. The message text lives in the message store; joining the two
reconstructs the mask regions for a stored message.

Writes are best-effort: ``persist`` logs and swallows storage failures so
that a detection-store outage never fails a chat response.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from chatshield.pii.types import Detection

logger = logging.getLogger(__name__)


class StoredDetection(BaseModel):
    """A persisted detection row."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    message_id: str
    pii_type: str
    start_offset: int
    end_offset: int
    placeholder: str
    confidence: float | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_detection(self) -> Detection:
        return Detection(
            pii_type=self.pii_type,
            start_offset=self.start_offset,
            end_offset=self.end_offset,
            placeholder=self.placeholder,
            confidence=self.confidence,
        )


class DetectionStore(ABC):
    """Abstract detection store."""

    @abstractmethod
    async def persist(self, message_id: str, detections: list[Detection]) -> int:
        """Batch-insert detections for one message.

        Rows identical on (message, type, offsets) to an existing row are
        skipped. Never raises.

        Returns:
            Number of rows inserted.
        """

    @abstractmethod
    async def get_by_message(self, message_id: str) -> list[StoredDetection]:
        ...

    @abstractmethod
    async def query(
        self,
        *,
        message_ids: list[str] | None = None,
        pii_type: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[StoredDetection]:
        ...

    @abstractmethod
    async def delete_for_message(self, message_id: str) -> int:
        ...


class InMemoryDetectionStore(DetectionStore):
    """Process-local detection store for development and tests.

    Rows are kept per message id. An ``asyncio.Lock`` serializes writers.
    """

    def __init__(self) -> None:
        self._rows: dict[str, list[StoredDetection]] = {}
        self._lock = asyncio.Lock()

    async def persist(self, message_id: str, detections: list[Detection]) -> int:
        if not detections:
            return 0
        try:
            async with self._lock:
                rows = self._rows.setdefault(message_id, [])
                seen = {(r.pii_type, r.start_offset, r.end_offset) for r in rows}
                inserted = 0
                for detection in detections:
                    key = (detection.pii_type, detection.start_offset, detection.end_offset)
                    if key in seen:
                        continue
                    seen.add(key)
                    rows.append(
                        StoredDetection(
                            message_id=message_id,
                            pii_type=detection.pii_type,
                            start_offset=detection.start_offset,
                            end_offset=detection.end_offset,
                            placeholder=detection.placeholder,
                            confidence=detection.confidence,
                        )
                    )
                    inserted += 1
            logger.info(
                "Persisted PII detections message_id=%s inserted=%d skipped=%d",
                message_id,
                inserted,
                len(detections) - inserted,
            )
            return inserted
        except Exception:
            logger.exception("Failed to persist PII detections message_id=%s", message_id)
            return 0

    async def get_by_message(self, message_id: str) -> list[StoredDetection]:
        rows = self._rows.get(message_id, [])
        return sorted(rows, key=lambda r: r.start_offset)

    async def query(
        self,
        *,
        message_ids: list[str] | None = None,
        pii_type: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[StoredDetection]:
        if message_ids is None:
            candidates = [r for rows in self._rows.values() for r in rows]
        else:
            candidates = [r for mid in message_ids for r in self._rows.get(mid, [])]

        results = [
            r
            for r in candidates
            if (pii_type is None or r.pii_type == pii_type)
            and (since is None or r.created_at >= since)
            and (until is None or r.created_at <= until)
        ]
        results.sort(key=lambda r: r.created_at, reverse=True)
        return results

    async def delete_for_message(self, message_id: str) -> int:
        async with self._lock:
            removed = self._rows.pop(message_id, [])
        return len(removed)

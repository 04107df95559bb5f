"""Two-layer PII scan of one piece of text.

Regex findings are computed synchronously, the AI detector is awaited,
and the two are merged with regex precedence. A failed AI call degrades
to the regex findings alone.
"""

import logging

from chatshield.pii.ai_detector import PiiDetectionService
from chatshield.pii.regex_detector import detect_pii_regex, merge_detections
from chatshield.pii.types import Detection

logger = logging.getLogger(__name__)


class PiiScanner:
    """Regex + AI scan with a single entry point.

    Args:
        pii_types: Enabled PII types.
        ai_detector: AI layer, or ``None`` to run regex only.
        enabled: When False, ``scan`` returns no detections at all.
    """

    def __init__(
        self,
        pii_types: list[str],
        ai_detector: PiiDetectionService | None = None,
        *,
        enabled: bool = True,
    ) -> None:
        self._pii_types = list(pii_types)
        self._ai_detector = ai_detector
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def scan(
        self,
        text: str,
        *,
        user_id: str | None = None,
        conversation_id: str | None = None,
    ) -> list[Detection]:
        """Return merged detections with offsets relative to ``text``."""
        if not self._enabled or not text:
            return []

        regex_detections = detect_pii_regex(text, self._pii_types)
        if self._ai_detector is None:
            return regex_detections

        response = await self._ai_detector.detect_pii(
            text, user_id=user_id, conversation_id=conversation_id
        )
        if not response.success:
            logger.info(
                "AI PII detection unavailable, using regex findings only "
                "conversation_id=%s regex_detections=%d error=%s",
                conversation_id,
                len(regex_detections),
                response.error,
            )
            return regex_detections

        return merge_detections(regex_detections, response.detections)

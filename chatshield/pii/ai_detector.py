"""LLM-based PII detection.

Catches the semantic PII types (names, addresses, dates of birth, ...)
that regular expressions cannot. The model is asked for findings only
(type, value, confidence); offsets are resolved here by searching the
value in the scanned text.

``PiiDetectionService.detect_pii`` never raises. Provider errors, timeouts,
malformed model output and an open circuit all come back as
``DetectionResponse(success=False)``, and callers fall back to the regex findings.
"""

import asyncio
import json
import logging
import math
import re
import time

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from chatshield.chat.ports import ChatClient, ChatMessage
from chatshield.pii.circuit_breaker import CircuitBreaker
from chatshield.pii.cost_tracking import PiiDetectionCostTracker
from chatshield.pii.masking import mask_pii
from chatshield.pii.prompts import build_detection_prompt, build_system_prompt
from chatshield.pii.types import Detection, DetectionResponse, PiiType, spans_overlap

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(\[[\s\S]*\])\s*```")


class DetectionParseError(ValueError):
    """The detector model returned output that is not a JSON array."""


class AiFinding(BaseModel):
    """One item of the detector model's JSON output."""

    model_config = ConfigDict(populate_by_name=True)

    pii_type: PiiType = Field(alias="piiType")
    value: str = Field(min_length=1)
    confidence: float = 0.5

    @field_validator("pii_type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("value", mode="before")
    @classmethod
    def strip_value(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v):
        if isinstance(v, bool) or not isinstance(v, (int, float)) or math.isnan(v):
            return 0.5
        return min(1.0, max(0.0, float(v)))


def find_non_overlapping_occurrence(
    text: str, value: str, used: list[tuple[int, int]]
) -> tuple[int, int] | None:
    """First occurrence of ``value`` in ``text`` not overlapping ``used``."""
    search_from = 0
    while True:
        index = text.find(value, search_from)
        if index == -1:
            return None
        end = index + len(value)
        if not spans_overlap(index, end, used):
            return index, end
        search_from = index + 1


def parse_detection_response(
    text: str, raw: str, enabled_types: list[str] | tuple[str, ...]
) -> list[Detection]:
    """Turn the model's raw output into offset-resolved detections.

    Args:
        text: The text that was scanned.
        raw: Model output, optionally wrapped in a ```json fence.
        enabled_types: Allow-listed PII types; anything else is dropped.

    Returns:
        Non-overlapping detections sorted by ``start_offset``.

    Raises:
        DetectionParseError: Output is not valid JSON or not an array.
    """
    payload = raw.strip()
    fence = _FENCE_RE.search(payload)
    if fence:
        payload = fence.group(1)

    try:
        items = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise DetectionParseError("PII detection returned malformed JSON") from exc

    if not isinstance(items, list):
        raise DetectionParseError(
            f"PII detection returned {type(items).__name__}, expected a JSON array"
        )

    enabled = set(enabled_types)
    used: list[tuple[int, int]] = []
    detections: list[Detection] = []
    for item in items:
        try:
            finding = AiFinding.model_validate(item)
        except ValidationError as exc:
            logger.debug("Skipping invalid PII finding: %s", exc.errors(include_input=False))
            continue
        if finding.pii_type not in enabled:
            logger.debug("Skipping PII finding of disabled type=%s", finding.pii_type)
            continue

        span = find_non_overlapping_occurrence(text, finding.value, used)
        if span is None:
            logger.debug(
                "PII finding value not found in text type=%s value_len=%d",
                finding.pii_type,
                len(finding.value),
            )
            continue
        used.append(span)
        detections.append(Detection.create(finding.pii_type, span[0], span[1], finding.confidence))

    detections.sort(key=lambda d: d.start_offset)
    return detections


class PiiDetectionService:
    """AI PII detector backed by a ``ChatClient``.

    Args:
        chat_client: Provider used for the detection completion.
        model: Detection model name.
        pii_types: Enabled PII types (shown to the model and allow-listed).
        timeout_seconds: Upper bound on one detection call.
        max_tokens: Completion budget for the detector output.
        cost_tracker: Optional per-call usage recorder.
        circuit_breaker: Optional breaker that short-circuits a failing model.
    """

    def __init__(
        self,
        chat_client: ChatClient,
        *,
        model: str,
        pii_types: list[str],
        timeout_seconds: float = 5.0,
        max_tokens: int = 2000,
        cost_tracker: PiiDetectionCostTracker | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ) -> None:
        self._client = chat_client
        self._model = model
        self._pii_types = list(pii_types)
        self._timeout_seconds = timeout_seconds
        self._max_tokens = max_tokens
        self._cost_tracker = cost_tracker
        self._circuit_breaker = circuit_breaker

    @property
    def circuit_breaker(self) -> CircuitBreaker | None:
        return self._circuit_breaker

    async def detect_pii(
        self,
        text: str,
        *,
        user_id: str | None = None,
        conversation_id: str | None = None,
    ) -> DetectionResponse:
        """Detect PII in ``text``. Never raises (except on cancellation)."""
        if not text or not text.strip():
            return DetectionResponse()

        if self._circuit_breaker is not None and not await self._circuit_breaker.allow_request():
            logger.info("PII detector circuit open; skipping AI detection")
            return DetectionResponse(success=False, error="PII detection circuit open")

        messages = [
            ChatMessage(role="system", content=build_system_prompt(self._pii_types)),
            ChatMessage(role="user", content=build_detection_prompt(text)),
        ]
        started = time.monotonic()
        tokens = 0
        try:
            async with asyncio.timeout(self._timeout_seconds):
                completion = await self._client.complete(
                    messages, model=self._model, temperature=0, max_tokens=self._max_tokens
                )
            if completion.usage is not None:
                tokens = completion.usage.total_tokens
            if completion.content:
                detections = parse_detection_response(text, completion.content, self._pii_types)
            else:
                logger.warning("PII detection returned empty content")
                detections = []
        except asyncio.CancelledError:
            if self._circuit_breaker is not None:
                await self._circuit_breaker.record_cancellation()
            raise
        except Exception as exc:
            if isinstance(exc, TimeoutError):
                error = f"PII detection timeout after {int(self._timeout_seconds * 1000)}ms"
            else:
                error = str(exc) or type(exc).__name__
            latency_ms = int((time.monotonic() - started) * 1000)
            logger.warning(
                "PII detection failed conversation_id=%s latency_ms=%d error=%s",
                conversation_id,
                latency_ms,
                error,
            )
            if self._circuit_breaker is not None:
                await self._circuit_breaker.record_failure()
            await self._track_cost(user_id, conversation_id, tokens, latency_ms, success=False)
            return DetectionResponse(success=False, error=error)

        latency_ms = int((time.monotonic() - started) * 1000)
        if self._circuit_breaker is not None:
            await self._circuit_breaker.record_success()
        await self._track_cost(user_id, conversation_id, tokens, latency_ms, success=True)
        logger.info(
            "PII detection completed conversation_id=%s detections=%d tokens=%d latency_ms=%d",
            conversation_id,
            len(detections),
            tokens,
            latency_ms,
        )
        if detections and logger.isEnabledFor(logging.DEBUG):
            logger.debug("PII detection masked text: %s", mask_pii(text, detections))
        return DetectionResponse(detections=detections)

    async def _track_cost(
        self,
        user_id: str | None,
        conversation_id: str | None,
        tokens: int,
        latency_ms: int,
        *,
        success: bool,
    ) -> None:
        if self._cost_tracker is None or user_id is None:
            return
        try:
            await self._cost_tracker.track(user_id, conversation_id, tokens, latency_ms, success)
        except Exception:
            logger.warning("Failed to track PII detection cost", exc_info=True)

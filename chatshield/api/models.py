"""Pydantic v2 request/response models for the chat-shield API."""

from datetime import date, datetime

from pydantic import BaseModel, Field


class CreateConversationRequest(BaseModel):
    title: str | None = Field(None, max_length=200)


class ConversationResponse(BaseModel):
    id: str
    title: str | None = None
    message_count: int
    total_tokens: int
    created_at: datetime


class ChatRequest(BaseModel):
    # Length and emptiness are enforced after sanitizing, by admission (400).
    conversation_id: str = Field(..., min_length=1, max_length=100)
    content: str


# --- SSE Event Schemas (Wire Format Documentation) ---
# Each event is sent as ``data: <json>\n\n`` with the ``type`` discriminator
# inside the JSON. Events are built as dicts in chat/stream.py; these schemas
# are the canonical reference for each event type.


class SSEContentEvent(BaseModel):
    """``content``: incremental text, a contiguous slice of the reply."""

    type: str = "content"
    content: str


class SSEPiiMaskEvent(BaseModel):
    """``pii_mask``: mask ``[startOffset, endOffset)`` of the text sent so far.

    Offsets index the concatenation of all ``content`` events.
    """

    type: str = "pii_mask"
    startOffset: int
    endOffset: int
    piiType: str
    originalLength: int


class SSEDoneEvent(BaseModel):
    """``done``: reply persisted; last event of a successful stream."""

    type: str = "done"
    userMessageId: str
    assistantMessageId: str
    totalTokens: int


class SSEErrorEvent(BaseModel):
    """``error``: the stream failed; last event of a failed stream."""

    type: str = "error"
    error: str


class MessageResponse(BaseModel):
    id: str
    role: str
    content: str
    token_count: int
    created_at: datetime


class DetectionResponse(BaseModel):
    pii_type: str
    start_offset: int
    end_offset: int
    placeholder: str
    confidence: float | None = None


class SendMessageResponse(BaseModel):
    user_message: MessageResponse
    assistant_message: MessageResponse
    detections: list[DetectionResponse]
    total_tokens: int


class MaskRegionResponse(BaseModel):
    start_offset: int
    end_offset: int
    pii_type: str
    original_length: int


class MessagePiiResponse(BaseModel):
    """Untagged message text plus the regions a client must mask."""

    message_id: str
    text: str
    mask_regions: list[MaskRegionResponse]


class DailyPiiCost(BaseModel):
    day: date
    conversation_id: str | None = None
    request_count: int
    total_tokens: int
    total_latency_ms: int
    error_count: int


class PiiCostResponse(BaseModel):
    request_count: int
    total_tokens: int
    total_latency_ms: int
    error_count: int
    avg_latency_ms: float
    error_rate: float
    daily: list[DailyPiiCost] = Field(default_factory=list)


class LiveResponse(BaseModel):
    status: str = "alive"


class HealthResponse(BaseModel):
    status: str
    version: str
    environment: str
    pii_detection_enabled: bool
    ai_detection_enabled: bool
    persistence_mode: str
    circuit_breaker_state: str = "unknown"

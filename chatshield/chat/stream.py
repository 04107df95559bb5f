"""Streaming chat responses with inline PII detection.

Lifecycle of one request::

    VALIDATING -> STREAMING -> FINALIZING -> COMPLETED
                       \\            \\
                        +------------+--> FAILED

``ChatStreamUseCase.execute`` runs admission (raising typed errors, nothing
persisted) and returns a ``ChatStream``. Iterating ``ChatStream.events()``
starts a runner task that:

1. Persists the user message and opens the provider stream.
2. Emits every delta as a ``content`` event immediately, and appends it to a
   side buffer. Complete batches are cut from the buffer and each one is
   scanned in its own task, concurrently with the stream.
3. Each scan task shifts its findings by the batch's absolute offset and
   emits one ``pii_mask`` event per detection. Clients mask text they have
   already rendered.
4. At stream end, flushes the buffer, joins the scan tasks, persists the
   assistant message and its detections, and emits ``done``.

A provider error or timeout emits ``error`` and removes the orphaned user
message. Scan failures never reach the stream: the affected batch simply
produces no ``pii_mask`` events.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum

from chatshield.chat.admission import MessageAdmission
from chatshield.chat.ports import (
    ChatClient,
    ChatMessage,
    Message,
    MessageRepository,
    TokenUsage,
)
from chatshield.config import Settings
from chatshield.limits import InMemoryTokenTracker
from chatshield.pii.batching import extract_batches
from chatshield.pii.masking import mask_pii, mask_region
from chatshield.pii.persistence import DetectionStore
from chatshield.pii.scanner import PiiScanner
from chatshield.pii.tags import insert_tags, parse_tags, validate_tags
from chatshield.pii.types import Detection

logger = logging.getLogger(__name__)

STREAM_ERROR_MESSAGE = "Failed to get AI response"


class StreamState(str, Enum):
    VALIDATING = "validating"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class StreamSession:
    """Mutable per-request state. Never persisted.

    ``buffer_offset`` is the absolute offset of ``content_buffer[0]`` in
    ``assistant_content``; ``buffer_offset + len(content_buffer)`` always
    equals ``sent_original_length``.
    """

    user_id: str
    conversation_id: str
    content: str
    assistant_content: str = ""
    content_buffer: str = ""
    buffer_offset: int = 0
    sent_original_length: int = 0
    all_detections: list[Detection] = field(default_factory=list)
    detection_tasks: set[asyncio.Task] = field(default_factory=set)
    state: StreamState = StreamState.VALIDATING
    closed: bool = False
    user_message_id: str | None = None
    assistant_message_id: str | None = None


# ---------------------------------------------------------------------------
# Wire events
# ---------------------------------------------------------------------------


def content_event(content: str) -> dict:
    return {"type": "content", "content": content}


def pii_mask_event(detection: Detection) -> dict:
    return {"type": "pii_mask", **mask_region(detection)}


def done_event(user_message_id: str, assistant_message_id: str, total_tokens: int) -> dict:
    return {
        "type": "done",
        "userMessageId": user_message_id,
        "assistantMessageId": assistant_message_id,
        "totalTokens": total_tokens,
    }


def error_event(message: str = STREAM_ERROR_MESSAGE) -> dict:
    return {"type": "error", "error": message}


# ---------------------------------------------------------------------------
# Use cases
# ---------------------------------------------------------------------------


class ChatUseCase:
    """Collaborators and reply bookkeeping shared by the chat use cases."""

    def __init__(
        self,
        *,
        chat_client: ChatClient,
        repository: MessageRepository,
        admission: MessageAdmission,
        scanner: PiiScanner,
        detection_store: DetectionStore,
        token_tracker: InMemoryTokenTracker,
        settings: Settings,
    ) -> None:
        self.chat_client = chat_client
        self.repository = repository
        self.admission = admission
        self.scanner = scanner
        self.detection_store = detection_store
        self.token_tracker = token_tracker
        self.settings = settings

    async def _open_turn(
        self, conversation_id: str, content: str
    ) -> tuple[Message, list[ChatMessage]]:
        """Load context, persist the user message, build the provider prompt."""
        context = await self.repository.get_context_messages(
            conversation_id, self.settings.CONTEXT_WINDOW_SIZE
        )
        user_message = await self.repository.create_message(conversation_id, "user", content)
        messages = [ChatMessage(role=m.role, content=self._provider_content(m)) for m in context]
        messages.append(ChatMessage(role="user", content=content))
        return user_message, messages

    def _provider_content(self, message: Message) -> str:
        """Plain text of a stored message, without inline PII tags."""
        if self.settings.PII_PERSISTENCE_MODE == "inline_tags" and message.role == "assistant":
            return parse_tags(message.content).text
        return message.content

    def _resolve_usage(
        self, messages: list[ChatMessage], reply: str, usage: TokenUsage | None
    ) -> TokenUsage:
        if usage is not None and usage.total_tokens > 0:
            return usage
        return TokenUsage(
            prompt_tokens=self.chat_client.estimate_token_count(messages),
            completion_tokens=self.chat_client.estimate_token_count(
                [ChatMessage(role="assistant", content=reply)]
            ),
        )

    async def _store_reply(
        self, conversation_id: str, reply: str, detections: list[Detection], completion_tokens: int
    ) -> Message:
        """Persist the assistant message in the configured PII persistence mode."""
        inline = self.settings.PII_PERSISTENCE_MODE == "inline_tags"
        stored = reply
        if inline:
            stored = insert_tags(reply, detections)
            validation = validate_tags(stored)
            if not validation.valid:
                logger.warning(
                    "Tagged reply failed validation conversation_id=%s errors=%s",
                    conversation_id,
                    validation.errors,
                )
        assistant_message = await self.repository.create_message(
            conversation_id, "assistant", stored, completion_tokens
        )
        if not inline and detections:
            try:
                await self.detection_store.persist(assistant_message.id, detections)
            except Exception:
                logger.exception(
                    "PII detection persistence failed message_id=%s", assistant_message.id
                )
        return assistant_message

    async def _record_usage(
        self, user_id: str, conversation_id: str, user_message_id: str, usage: TokenUsage
    ) -> None:
        await self.repository.update_message_tokens(user_message_id, usage.prompt_tokens)
        await self.token_tracker.track_usage(user_id, usage.total_tokens)
        await self.token_tracker.update_conversation_tokens(conversation_id, usage.total_tokens)

    async def _discard_user_message(self, message_id: str | None) -> None:
        if message_id is None:
            return
        try:
            await self.repository.delete_message(message_id)
        except Exception:
            logger.warning("Failed to delete orphaned user message id=%s", message_id, exc_info=True)


class ChatStreamUseCase(ChatUseCase):
    """Entry point for streaming chat."""

    async def execute(self, user_id: str, conversation_id: str, content: str) -> "ChatStream":
        """Admit the message and return a stream ready to be iterated.

        Raises:
            ChatError: Any admission failure. Raised before a stream exists.
        """
        admitted = await self.admission.admit(user_id, conversation_id, content)
        session = StreamSession(
            user_id=user_id, conversation_id=conversation_id, content=admitted.content
        )
        return ChatStream(self, session)


class ChatStream:
    """One streaming response. Iterate ``events()`` exactly once."""

    def __init__(self, use_case: ChatStreamUseCase, session: StreamSession) -> None:
        self._use_case = use_case
        self.session = session
        self._queue: asyncio.Queue[dict | None] = asyncio.Queue()
        self._runner: asyncio.Task | None = None
        self._terminated = False

    async def events(self) -> AsyncIterator[dict]:
        """Yield wire events until ``done`` or ``error``.

        Closing the generator (client disconnect) marks the session closed
        and cancels the runner; scan tasks that finish later drop their
        events.
        """
        self._runner = asyncio.create_task(self._run())
        try:
            while True:
                event = await self._queue.get()
                if event is None:
                    break
                yield event
        finally:
            self.session.closed = True
            if not self._runner.done():
                self._runner.cancel()

    def _emit(self, event: dict) -> None:
        if self.session.closed or self._terminated:
            return
        self._queue.put_nowait(event)

    def _emit_terminal(self, event: dict) -> None:
        """Emit ``done`` or ``error``; nothing is emitted after it."""
        self._emit(event)
        self._terminated = True

    async def _cancel_scans(self) -> None:
        pending = [t for t in self.session.detection_tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run(self) -> None:
        uc = self._use_case
        s = self.session
        try:
            s.state = StreamState.STREAMING
            user_message, messages = await uc._open_turn(s.conversation_id, s.content)
            s.user_message_id = user_message.id

            usage: TokenUsage | None = None
            async with asyncio.timeout(uc.settings.STREAM_TIMEOUT_SECONDS):
                async for chunk in uc.chat_client.stream_chat(messages):
                    if chunk.content:
                        self._on_delta(chunk.content)
                    if chunk.usage is not None:
                        usage = chunk.usage

            await self._finalize(messages, usage)
        except asyncio.CancelledError:
            for task in s.detection_tasks:
                task.cancel()
            logger.info(
                "Chat stream cancelled conversation_id=%s state=%s sent=%d",
                s.conversation_id,
                s.state.value,
                s.sent_original_length,
            )
            raise
        except Exception:
            s.state = StreamState.FAILED
            logger.exception(
                "Streaming error conversation_id=%s user_id=%s sent=%d",
                s.conversation_id,
                s.user_id,
                s.sent_original_length,
            )
            # Pending scans must not emit after the terminal error event.
            await self._cancel_scans()
            self._emit_terminal(error_event())
            if s.assistant_message_id is None:
                await uc._discard_user_message(s.user_message_id)
        finally:
            self._queue.put_nowait(None)

    def _on_delta(self, delta: str) -> None:
        s = self.session
        s.assistant_content += delta
        self._emit(content_event(delta))
        s.sent_original_length += len(delta)

        if not self._use_case.scanner.enabled:
            s.buffer_offset = s.sent_original_length
            return

        s.content_buffer += delta
        batches, remaining = extract_batches(
            s.content_buffer, self._use_case.settings.PII_MAX_BATCH_CHARS
        )
        offset = s.buffer_offset
        for batch in batches:
            self._schedule_scan(batch, offset)
            offset += len(batch)
        s.content_buffer = remaining
        s.buffer_offset = offset

    def _schedule_scan(self, text: str, base_offset: int) -> None:
        if not text.strip():
            return
        task = asyncio.create_task(self._scan_batch(text, base_offset))
        self.session.detection_tasks.add(task)

    async def _scan_batch(self, text: str, base_offset: int) -> None:
        s = self.session
        try:
            detections = await self._use_case.scanner.scan(
                text, user_id=s.user_id, conversation_id=s.conversation_id
            )
        except Exception:
            logger.exception(
                "PII detection task failed, continuing stream conversation_id=%s offset=%d",
                s.conversation_id,
                base_offset,
            )
            return
        if not detections:
            return

        absolute = [d.shifted(base_offset) for d in detections]
        s.all_detections.extend(absolute)
        for detection in absolute:
            self._emit(pii_mask_event(detection))

        logger.info(
            "PII detected in stream conversation_id=%s detections=%d types=%s",
            s.conversation_id,
            len(detections),
            sorted({d.pii_type for d in detections}),
        )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "PII masked batch: %s",
                mask_pii(text, detections, self._use_case.settings.PII_MASK_CHAR),
            )

    async def _finalize(self, messages: list[ChatMessage], usage: TokenUsage | None) -> None:
        uc = self._use_case
        s = self.session
        s.state = StreamState.FINALIZING

        if s.content_buffer:
            self._schedule_scan(s.content_buffer, s.buffer_offset)
            s.buffer_offset += len(s.content_buffer)
            s.content_buffer = ""

        if s.detection_tasks:
            await asyncio.gather(*s.detection_tasks, return_exceptions=True)

        detections = sorted(s.all_detections, key=lambda d: d.start_offset)
        resolved = uc._resolve_usage(messages, s.assistant_content, usage)

        assistant_message = await uc._store_reply(
            s.conversation_id, s.assistant_content, detections, resolved.completion_tokens
        )
        s.assistant_message_id = assistant_message.id

        await uc._record_usage(s.user_id, s.conversation_id, s.user_message_id, resolved)

        s.state = StreamState.COMPLETED
        self._emit_terminal(
            done_event(s.user_message_id, assistant_message.id, resolved.total_tokens)
        )
        logger.info(
            "Streaming response completed conversation_id=%s prompt_tokens=%d "
            "completion_tokens=%d detections=%d",
            s.conversation_id,
            resolved.prompt_tokens,
            resolved.completion_tokens,
            len(detections),
        )

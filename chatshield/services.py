"""Composition root.

``build_services`` constructs every collaborator explicitly from settings.
The FastAPI lifespan stores the result on ``app.state.services``; tests
build their own with fake clients.
"""

import logging
from dataclasses import dataclass

from chatshield.chat.admission import MessageAdmission
from chatshield.chat.llm_client import GeminiChatClient
from chatshield.chat.ports import ChatClient
from chatshield.chat.repository import InMemoryMessageRepository
from chatshield.chat.send_message import SendMessageUseCase
from chatshield.chat.stream import ChatStreamUseCase
from chatshield.config import Settings
from chatshield.limits import InMemoryTokenTracker, SlidingWindowRateLimiter
from chatshield.pii.ai_detector import PiiDetectionService
from chatshield.pii.circuit_breaker import CircuitBreaker
from chatshield.pii.cost_tracking import PiiDetectionCostTracker
from chatshield.pii.persistence import InMemoryDetectionStore
from chatshield.pii.scanner import PiiScanner

logger = logging.getLogger(__name__)


@dataclass
class ChatServices:
    settings: Settings
    chat_client: ChatClient
    repository: InMemoryMessageRepository
    detection_store: InMemoryDetectionStore
    cost_tracker: PiiDetectionCostTracker
    rate_limiter: SlidingWindowRateLimiter
    token_tracker: InMemoryTokenTracker
    detector: PiiDetectionService | None
    scanner: PiiScanner
    stream_use_case: ChatStreamUseCase
    send_use_case: SendMessageUseCase


def build_services(settings: Settings, chat_client: ChatClient | None = None) -> ChatServices:
    """Wire the service graph.

    Args:
        settings: Application settings.
        chat_client: Provider override; defaults to ``GeminiChatClient``.
    """
    chat_client = chat_client or GeminiChatClient(settings)
    detection_store = InMemoryDetectionStore()
    repository = InMemoryMessageRepository(detection_store)
    cost_tracker = PiiDetectionCostTracker()
    rate_limiter = SlidingWindowRateLimiter(settings.RATE_LIMIT_PER_MINUTE, window_seconds=60.0)
    token_tracker = InMemoryTokenTracker(settings.DAILY_TOKEN_LIMIT, repository)

    detector = None
    if settings.PII_DETECTION_ENABLED and settings.PII_AI_DETECTION_ENABLED:
        detector = PiiDetectionService(
            chat_client,
            model=settings.PII_DETECTION_MODEL,
            pii_types=settings.PII_TYPES,
            timeout_seconds=settings.PII_DETECTION_TIMEOUT_SECONDS,
            max_tokens=settings.PII_DETECTION_MAX_TOKENS,
            cost_tracker=cost_tracker,
            circuit_breaker=CircuitBreaker(
                failure_threshold=settings.PII_CB_FAILURE_THRESHOLD,
                cooldown_seconds=settings.PII_CB_COOLDOWN_SECONDS,
                rolling_window_seconds=settings.PII_CB_ROLLING_WINDOW_SECONDS,
            ),
        )
    scanner = PiiScanner(settings.PII_TYPES, detector, enabled=settings.PII_DETECTION_ENABLED)

    admission = MessageAdmission(
        repository,
        rate_limiter,
        token_tracker,
        max_message_length=settings.MAX_MESSAGE_LENGTH,
        max_messages_per_conversation=settings.MAX_MESSAGES_PER_CONVERSATION,
    )
    use_case_deps = dict(
        chat_client=chat_client,
        repository=repository,
        admission=admission,
        scanner=scanner,
        detection_store=detection_store,
        token_tracker=token_tracker,
        settings=settings,
    )
    logger.info(
        "Services built pii_enabled=%s ai_detection=%s persistence_mode=%s",
        settings.PII_DETECTION_ENABLED,
        detector is not None,
        settings.PII_PERSISTENCE_MODE,
    )
    return ChatServices(
        settings=settings,
        chat_client=chat_client,
        repository=repository,
        detection_store=detection_store,
        cost_tracker=cost_tracker,
        rate_limiter=rate_limiter,
        token_tracker=token_tracker,
        detector=detector,
        scanner=scanner,
        stream_use_case=ChatStreamUseCase(**use_case_deps),
        send_use_case=SendMessageUseCase(**use_case_deps),
    )

"""FastAPI application for chat-shield.

Uses lifespan context manager, SSE streaming via sse-starlette,
and pure ASGI middleware (no BaseHTTPMiddleware).
"""

import asyncio
import contextlib
import json
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncGenerator

from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from chatshield.chat.errors import (
    AuthenticationError,
    ChatError,
    ConversationNotFoundError,
    ForbiddenError,
    MessageNotFoundError,
    RateLimitExceededError,
)
from chatshield.config import get_settings
from chatshield.pii.tags import parse_tags
from chatshield.services import ChatServices, build_services

from .errors import error_response
from .middleware import (
    ApiKeyMiddleware,
    ErrorHandlingMiddleware,
    RequestBodyLimitMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from .models import (
    ChatRequest,
    ConversationResponse,
    CreateConversationRequest,
    DailyPiiCost,
    DetectionResponse,
    HealthResponse,
    LiveResponse,
    MaskRegionResponse,
    MessagePiiResponse,
    MessageResponse,
    PiiCostResponse,
    SendMessageResponse,
)

logger = logging.getLogger(__name__)


async def _sweep_expired(services: ChatServices, interval: float) -> None:
    """Evict idle rate-limit windows and stale quota counters until cancelled."""
    while True:
        await asyncio.sleep(interval)
        services.rate_limiter.sweep()
        services.token_tracker.sweep()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the service graph on startup, stop background tasks on shutdown."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Initializing chat services (environment=%s)...", settings.ENVIRONMENT)
    services = build_services(settings)
    app.state.services = services

    sweeper = asyncio.create_task(
        _sweep_expired(services, settings.RATE_LIMIT_SWEEP_SECONDS)
    )
    app.state.ready = True
    yield
    app.state.ready = False
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    logger.info("Application shutdown complete.")


def get_services(request: Request) -> ChatServices:
    return request.app.state.services


def get_user_id(x_user_id: str | None = Header(None)) -> str:
    """Caller identity from the ``X-User-ID`` header."""
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationError()
    return x_user_id.strip()


def _message_response(message) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        role=message.role,
        content=message.content,
        token_count=message.token_count,
        created_at=message.created_at,
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    app = FastAPI(
        title="chat-shield",
        version=settings.VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID", "X-API-Key", "X-User-ID"],
    )

    # Pure ASGI middleware - Starlette executes in REVERSE add order.
    #   ApiKey           (added 1st, executes last / innermost)
    #   Security         (added 2nd)
    #   Logging          (added 3rd)
    #   ErrorHandling    (added 4th)
    #   BodyLimit        (added 5th, executes first / outermost)
    app.add_middleware(ApiKeyMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestBodyLimitMiddleware)

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        headers = None
        if isinstance(exc, RateLimitExceededError):
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response(exc.code, exc.message, exc.details),
            headers=headers,
        )

    # ------------------------------------------------------------------
    # POST /conversations
    # ------------------------------------------------------------------
    @app.post("/conversations", response_model=ConversationResponse, status_code=201)
    async def create_conversation(
        body: CreateConversationRequest | None = None,
        user_id: str = Depends(get_user_id),
        services: ChatServices = Depends(get_services),
    ):
        conversation = await services.repository.create_conversation(
            user_id, body.title if body else None
        )
        return ConversationResponse(**conversation.model_dump(exclude={"user_id"}))

    # ------------------------------------------------------------------
    # POST /chat/stream - SSE with retroactive PII masking events
    # ------------------------------------------------------------------
    @app.post("/chat/stream")
    async def chat_stream(
        body: ChatRequest,
        user_id: str = Depends(get_user_id),
        services: ChatServices = Depends(get_services),
    ):
        # Admission errors raise here, before the response starts.
        stream = await services.stream_use_case.execute(
            user_id, body.conversation_id, body.content
        )

        async def event_generator():
            async for event in stream.events():
                yield {"data": json.dumps(event)}

        return EventSourceResponse(event_generator(), sep="\n")

    # ------------------------------------------------------------------
    # POST /chat/messages - non-streaming send
    # ------------------------------------------------------------------
    @app.post("/chat/messages", response_model=SendMessageResponse)
    async def send_message(
        body: ChatRequest,
        user_id: str = Depends(get_user_id),
        services: ChatServices = Depends(get_services),
    ):
        result = await services.send_use_case.execute(user_id, body.conversation_id, body.content)
        return SendMessageResponse(
            user_message=_message_response(result.user_message),
            assistant_message=_message_response(result.assistant_message),
            detections=[DetectionResponse(**d.model_dump()) for d in result.detections],
            total_tokens=result.total_tokens,
        )

    # ------------------------------------------------------------------
    # GET /messages/{message_id}/pii - mask regions of a stored message
    # ------------------------------------------------------------------
    @app.get("/messages/{message_id}/pii", response_model=MessagePiiResponse)
    async def message_pii(
        message_id: str,
        pii_type: str | None = None,
        user_id: str = Depends(get_user_id),
        services: ChatServices = Depends(get_services),
    ):
        message = await services.repository.get_message(message_id)
        if message is None:
            raise MessageNotFoundError()
        conversation = await services.repository.find_conversation(message.conversation_id)
        if conversation is None:
            raise ConversationNotFoundError()
        if conversation.user_id != user_id:
            raise ForbiddenError()

        inline = services.settings.PII_PERSISTENCE_MODE == "inline_tags"
        if inline and message.role != "assistant":
            text = message.content
            regions = []
        elif inline:
            parsed = parse_tags(message.content)
            text = parsed.text
            regions = [
                MaskRegionResponse(
                    start_offset=r.start_offset,
                    end_offset=r.end_offset,
                    pii_type=r.pii_type,
                    original_length=r.original_length,
                )
                for r in parsed.mask_regions
                if pii_type is None or r.pii_type == pii_type
            ]
        else:
            text = message.content
            if pii_type is None:
                rows = await services.detection_store.get_by_message(message_id)
            else:
                rows = await services.detection_store.query(
                    message_ids=[message_id], pii_type=pii_type
                )
                rows.sort(key=lambda r: r.start_offset)
            regions = [
                MaskRegionResponse(
                    start_offset=r.start_offset,
                    end_offset=r.end_offset,
                    pii_type=r.pii_type,
                    original_length=r.end_offset - r.start_offset,
                )
                for r in rows
            ]
        return MessagePiiResponse(message_id=message_id, text=text, mask_regions=regions)

    # ------------------------------------------------------------------
    # GET /pii/costs - caller's detector usage, optionally per conversation
    # ------------------------------------------------------------------
    @app.get("/pii/costs", response_model=PiiCostResponse)
    async def pii_costs(
        start: date | None = None,
        end: date | None = None,
        conversation_id: str | None = None,
        user_id: str = Depends(get_user_id),
        services: ChatServices = Depends(get_services),
    ):
        tracker = services.cost_tracker
        if conversation_id is None:
            records = await tracker.get_by_user(user_id)
        else:
            conversation = await services.repository.find_conversation(conversation_id)
            if conversation is None:
                raise ConversationNotFoundError()
            if conversation.user_id != user_id:
                raise ForbiddenError()
            records = await tracker.get_by_conversation(conversation_id)

        aggregate = await tracker.get_aggregate(
            user_id=user_id, conversation_id=conversation_id, start=start, end=end
        )
        daily = [
            DailyPiiCost(**r.model_dump(exclude={"user_id"}))
            for r in records
            if r.user_id == user_id
            and (start is None or r.day >= start)
            and (end is None or r.day <= end)
        ]
        return PiiCostResponse(**aggregate.model_dump(), daily=daily)

    # ------------------------------------------------------------------
    # GET /live - liveness probe, always 200
    # ------------------------------------------------------------------
    @app.get("/live", response_model=LiveResponse)
    async def liveness():
        return LiveResponse()

    # ------------------------------------------------------------------
    # GET /health - readiness probe, 503 until services are up
    # ------------------------------------------------------------------
    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request):
        ready = getattr(request.app.state, "ready", False)
        services: ChatServices | None = getattr(request.app.state, "services", None)

        cb_state = "unknown"
        detector = services.detector if services is not None else None
        if detector is not None and detector.circuit_breaker is not None:
            cb_state = detector.circuit_breaker.state

        settings = services.settings if services is not None else get_settings()
        # An open detector circuit degrades scanning to regex only; chat still serves.
        ready = ready and services is not None
        healthy = ready and cb_state != "open"
        body = HealthResponse(
            status="healthy" if healthy else "degraded",
            version=settings.VERSION,
            environment=settings.ENVIRONMENT,
            pii_detection_enabled=settings.PII_DETECTION_ENABLED,
            ai_detection_enabled=detector is not None,
            persistence_mode=settings.PII_PERSISTENCE_MODE,
            circuit_breaker_state=cb_state,
        )
        return JSONResponse(content=body.model_dump(), status_code=200 if ready else 503)

    return app


app = create_app()

if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(
        "chatshield.api.app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8080")),
        reload=True,
    )

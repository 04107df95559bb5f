"""Pure ASGI middleware for the chat-shield API.

Uses raw ASGI middleware (NOT BaseHTTPMiddleware) to preserve SSE streaming.
Provides request logging, error handling, security headers, API key
authentication and request body size limits.
"""

import asyncio
import hmac
import json
import logging
import time
import uuid

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from chatshield.config import get_settings

from .errors import HTTP_STATUS, ErrorCode, error_response

logger = logging.getLogger(__name__)


def _get_access_logger() -> logging.Logger:
    """Return a logger configured for structured JSON output."""
    log = logging.getLogger("chatshield.access")
    if not log.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        log.addHandler(handler)
        log.setLevel(logging.INFO)
        log.propagate = False
    return log


_access_logger = _get_access_logger()


async def _send_error(send: Send, code: ErrorCode, message: str) -> None:
    payload = json.dumps(error_response(code, message)).encode()
    await send(
        {
            "type": "http.response.start",
            "status": HTTP_STATUS[code],
            "headers": [
                (b"content-type", b"application/json"),
                (b"content-length", str(len(payload)).encode()),
            ],
        }
    )
    await send({"type": "http.response.body", "body": payload})


class RequestLoggingMiddleware:
    """Pure ASGI middleware for structured request logging.

    Injects X-Request-ID, emits a JSON log line per request,
    and adds X-Response-Time-Ms header. Only method and path are logged;
    bodies never reach the access log.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = headers.get(b"x-request-id", b"").decode() or str(uuid.uuid4())[:8]
        start_time = time.monotonic()
        method = scope.get("method", "?")
        path = scope.get("path", "/")

        status_code: int | None = None

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 0)
                duration_ms = (time.monotonic() - start_time) * 1000
                extra_headers = [
                    (b"x-request-id", request_id.encode()),
                    (b"x-response-time-ms", f"{duration_ms:.1f}".encode()),
                ]
                message["headers"] = list(message.get("headers", [])) + extra_headers
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_ms = (time.monotonic() - start_time) * 1000
            _access_logger.info(
                json.dumps(
                    {
                        "severity": "INFO",
                        "request_id": request_id,
                        "method": method,
                        "path": path,
                        "status": status_code,
                        "duration_ms": round(duration_ms, 1),
                    }
                )
            )


class ErrorHandlingMiddleware:
    """Catch unhandled exceptions and return a structured 500 JSON body.

    Prevents stack traces from leaking to clients.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except asyncio.CancelledError:
            # Client disconnected (normal for SSE)
            logger.info(
                "Client disconnected: %s %s",
                scope.get("method", "?"),
                scope.get("path", "/"),
            )
        except Exception:
            logger.exception(
                "Unhandled exception on %s %s",
                scope.get("method", "?"),
                scope.get("path", "/"),
            )
            if not response_started:
                await _send_error(send, ErrorCode.INTERNAL_ERROR, "An unexpected error occurred.")


class SecurityHeadersMiddleware:
    """Add security headers to every HTTP response."""

    HEADERS = [
        (b"x-content-type-options", b"nosniff"),
        (b"x-frame-options", b"DENY"),
        (b"referrer-policy", b"strict-origin-when-cross-origin"),
        (b"content-security-policy", b"default-src 'none'; frame-ancestors 'none'"),
    ]

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                message["headers"] = list(message.get("headers", [])) + list(self.HEADERS)
            await send(message)

        await self.app(scope, receive, send_wrapper)


class ApiKeyMiddleware:
    """Require a matching ``X-API-Key`` header when ``API_KEY`` is set.

    The configured key is re-read from settings at most once per
    ``KEY_TTL_SECONDS`` so rotated keys are picked up without a restart.
    Probe endpoints are exempt.
    """

    EXEMPT_PATHS = frozenset({"/health", "/live"})
    KEY_TTL_SECONDS = 60.0

    def __init__(self, app: ASGIApp) -> None:
        self.app = app
        self._cached_key: str | None = None
        self._cached_at = 0.0

    def _configured_key(self) -> str:
        now = time.monotonic()
        if self._cached_key is None or now - self._cached_at >= self.KEY_TTL_SECONDS:
            self._cached_key = get_settings().API_KEY.get_secret_value()
            self._cached_at = now
        return self._cached_key

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope.get("path", "/") in self.EXEMPT_PATHS:
            await self.app(scope, receive, send)
            return

        expected = self._configured_key()
        if not expected:
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        provided = headers.get(b"x-api-key", b"").decode()
        if provided and hmac.compare_digest(provided.encode(), expected.encode()):
            await self.app(scope, receive, send)
            return

        await _send_error(send, ErrorCode.UNAUTHORIZED, "Invalid or missing API key.")


class RequestBodyLimitMiddleware:
    """Reject request bodies larger than ``MAX_REQUEST_BODY_SIZE`` with 413.

    Declared sizes are checked from Content-Length. Bodies without one are
    read up to the limit before the app sees them, then replayed.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def _reject(self, send: Send, limit: int) -> None:
        await _send_error(send, ErrorCode.PAYLOAD_TOO_LARGE, f"Request body exceeds {limit} bytes.")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        limit = get_settings().MAX_REQUEST_BODY_SIZE
        headers = dict(scope.get("headers", []))
        content_length = headers.get(b"content-length")
        if content_length is not None:
            try:
                declared = int(content_length)
            except ValueError:
                declared = 0
            if declared > limit:
                await self._reject(send, limit)
                return
            await self.app(scope, receive, send)
            return

        if scope.get("method") in ("GET", "HEAD", "OPTIONS"):
            await self.app(scope, receive, send)
            return

        messages: list[Message] = []
        received = 0
        while True:
            message = await receive()
            messages.append(message)
            if message["type"] != "http.request":
                break
            received += len(message.get("body", b""))
            if received > limit:
                await self._reject(send, limit)
                return
            if not message.get("more_body", False):
                break

        async def replay() -> Message:
            if messages:
                return messages.pop(0)
            return await receive()

        await self.app(scope, replay, send)

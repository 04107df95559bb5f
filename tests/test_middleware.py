"""Tests for pure ASGI middleware (middleware.py).

Tests each middleware in isolation using Starlette test utilities.
"""

from unittest.mock import MagicMock, patch

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient


def _ok_app(request: Request) -> JSONResponse:
    """Simple handler that returns 200 OK."""
    return JSONResponse({"ok": True})


async def _echo_app(request: Request) -> JSONResponse:
    """Handler that reports the size of the body it received."""
    body = await request.body()
    return JSONResponse({"received": len(body)})


def _error_app(request: Request):
    """Handler that raises an unhandled exception."""
    raise RuntimeError("Intentional test error")


class TestRequestLoggingMiddleware:
    def test_adds_request_id_header(self):
        """Response includes X-Request-ID header."""
        from chatshield.api.middleware import RequestLoggingMiddleware

        app = Starlette(routes=[Route("/test", _ok_app)])
        app.add_middleware(RequestLoggingMiddleware)
        resp = TestClient(app).get("/test")
        assert "x-request-id" in resp.headers

    def test_preserves_existing_request_id(self):
        """If client sends X-Request-ID, it is preserved."""
        from chatshield.api.middleware import RequestLoggingMiddleware

        app = Starlette(routes=[Route("/test", _ok_app)])
        app.add_middleware(RequestLoggingMiddleware)
        resp = TestClient(app).get("/test", headers={"X-Request-ID": "custom-id-42"})
        assert resp.headers["x-request-id"] == "custom-id-42"

    def test_adds_response_time_header(self):
        """Response includes X-Response-Time-Ms header."""
        from chatshield.api.middleware import RequestLoggingMiddleware

        app = Starlette(routes=[Route("/test", _ok_app)])
        app.add_middleware(RequestLoggingMiddleware)
        resp = TestClient(app).get("/test")
        assert float(resp.headers["x-response-time-ms"]) >= 0


class TestErrorHandlingMiddleware:
    def test_returns_500_json_on_unhandled_exception(self):
        """Unhandled exceptions return structured 500 JSON."""
        from chatshield.api.middleware import ErrorHandlingMiddleware

        app = Starlette(routes=[Route("/error", _error_app)])
        app.add_middleware(ErrorHandlingMiddleware)
        client = TestClient(app, raise_server_exceptions=False)
        resp = client.get("/error")
        assert resp.status_code == 500
        data = resp.json()
        assert data["error"]["code"] == "internal_error"
        assert "Intentional" not in data["error"]["message"]

    def test_passes_through_normal_requests(self):
        from chatshield.api.middleware import ErrorHandlingMiddleware

        app = Starlette(routes=[Route("/ok", _ok_app)])
        app.add_middleware(ErrorHandlingMiddleware)
        resp = TestClient(app).get("/ok")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}


class TestSecurityHeadersMiddleware:
    def test_all_security_headers_present(self):
        """All expected security headers are set on responses."""
        from chatshield.api.middleware import SecurityHeadersMiddleware

        app = Starlette(routes=[Route("/test", _ok_app)])
        app.add_middleware(SecurityHeadersMiddleware)
        resp = TestClient(app).get("/test")
        assert resp.headers["x-content-type-options"] == "nosniff"
        assert resp.headers["x-frame-options"] == "DENY"
        assert resp.headers["referrer-policy"] == "strict-origin-when-cross-origin"
        assert "content-security-policy" in resp.headers


class TestApiKeyMiddleware:
    def _app(self):
        from chatshield.api.middleware import ApiKeyMiddleware

        app = Starlette(
            routes=[
                Route("/chat/stream", _ok_app, methods=["POST"]),
                Route("/health", _ok_app),
                Route("/live", _ok_app),
            ]
        )
        app.add_middleware(ApiKeyMiddleware)
        return TestClient(app)

    def test_no_key_configured_passes_through(self):
        """When API_KEY is empty, all requests pass through."""
        with patch("chatshield.api.middleware.get_settings") as mock_settings:
            mock_settings.return_value.API_KEY = MagicMock(get_secret_value=lambda: "")
            resp = self._app().post("/chat/stream")
            assert resp.status_code == 200

    def test_valid_key_passes(self):
        with patch("chatshield.api.middleware.get_settings") as mock_settings:
            mock_settings.return_value.API_KEY = MagicMock(get_secret_value=lambda: "test-secret-key")
            resp = self._app().post("/chat/stream", headers={"X-API-Key": "test-secret-key"})
            assert resp.status_code == 200

    def test_invalid_key_returns_401(self):
        with patch("chatshield.api.middleware.get_settings") as mock_settings:
            mock_settings.return_value.API_KEY = MagicMock(get_secret_value=lambda: "test-secret-key")
            resp = self._app().post("/chat/stream", headers={"X-API-Key": "wrong-key"})
            assert resp.status_code == 401
            assert resp.json()["error"]["code"] == "unauthorized"

    def test_missing_key_returns_401(self):
        with patch("chatshield.api.middleware.get_settings") as mock_settings:
            mock_settings.return_value.API_KEY = MagicMock(get_secret_value=lambda: "test-secret-key")
            resp = self._app().post("/chat/stream")
            assert resp.status_code == 401

    def test_probes_exempt_from_auth(self):
        """/health and /live bypass the API key check."""
        with patch("chatshield.api.middleware.get_settings") as mock_settings:
            mock_settings.return_value.API_KEY = MagicMock(get_secret_value=lambda: "test-secret-key")
            client = self._app()
            assert client.get("/health").status_code == 200
            assert client.get("/live").status_code == 200

    def test_key_cached_within_ttl(self):
        """The configured key is read once per TTL window."""
        fetch_count = {"n": 0}

        def counting_secret():
            fetch_count["n"] += 1
            return "stable-key"

        with patch("chatshield.api.middleware.get_settings") as mock_settings:
            mock_settings.return_value.API_KEY = MagicMock(get_secret_value=counting_secret)
            client = self._app()
            for _ in range(5):
                client.post("/chat/stream", headers={"X-API-Key": "stable-key"})
            assert fetch_count["n"] == 1


class TestRequestBodyLimitMiddleware:
    def _client(self):
        from chatshield.api.middleware import RequestBodyLimitMiddleware

        app = Starlette(routes=[Route("/chat/stream", _echo_app, methods=["POST"])])
        app.add_middleware(RequestBodyLimitMiddleware)
        return TestClient(app)

    def test_small_body_passes(self):
        with patch("chatshield.api.middleware.get_settings") as mock_settings:
            mock_settings.return_value.MAX_REQUEST_BODY_SIZE = 100
            resp = self._client().post("/chat/stream", content=b"x" * 50)
            assert resp.status_code == 200
            assert resp.json() == {"received": 50}

    def test_declared_oversize_rejected(self):
        """A Content-Length over the limit is rejected with 413."""
        with patch("chatshield.api.middleware.get_settings") as mock_settings:
            mock_settings.return_value.MAX_REQUEST_BODY_SIZE = 100
            resp = self._client().post("/chat/stream", content=b"x" * 101)
            assert resp.status_code == 413
            assert resp.json()["error"]["code"] == "payload_too_large"

    def test_chunked_oversize_rejected(self):
        """Bodies without Content-Length are counted as they are read."""

        def chunks():
            for _ in range(5):
                yield b"x" * 40

        with patch("chatshield.api.middleware.get_settings") as mock_settings:
            mock_settings.return_value.MAX_REQUEST_BODY_SIZE = 100
            resp = self._client().post("/chat/stream", content=chunks())
            assert resp.status_code == 413

    def test_chunked_within_limit_replayed(self):
        """A pre-read body reaches the app intact."""

        def chunks():
            yield b"a" * 30
            yield b"b" * 30

        with patch("chatshield.api.middleware.get_settings") as mock_settings:
            mock_settings.return_value.MAX_REQUEST_BODY_SIZE = 100
            resp = self._client().post("/chat/stream", content=chunks())
            assert resp.status_code == 200
            assert resp.json() == {"received": 60}

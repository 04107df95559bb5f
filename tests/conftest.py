"""Shared test fixtures for chat-shield tests."""

import asyncio
import sys
from contextlib import asynccontextmanager

import pytest

from chatshield.chat.ports import ChatChunk, ChatClient, ChatCompletion, TokenUsage
from chatshield.chat.llm_client import estimate_token_count


@pytest.fixture(autouse=True)
def _clear_singleton_caches():
    """Reset the cached Settings between tests."""
    yield
    from chatshield.config import get_settings

    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _reset_sse_exit_event():
    """sse-starlette keeps a process-wide exit event bound to the first loop."""
    from sse_starlette.sse import AppStatus

    AppStatus.should_exit_event = None
    yield


def scanned_text(messages) -> str:
    """Recover the text under inspection from a detector prompt."""
    prompt = messages[-1].content
    start = prompt.index("<<<TEXT\n") + len("<<<TEXT\n")
    end = prompt.rindex("\nTEXT>>>")
    return prompt[start:end]


class FakeChatClient(ChatClient):
    """Scripted provider.

    ``stream_chat`` yields ``chunks`` (raising after ``fail_after`` of them
    when set). ``complete`` serves detector calls: ``detection_output`` is
    either a raw string or a callable taking the scanned text.
    """

    def __init__(
        self,
        chunks=None,
        *,
        usage: TokenUsage | None = None,
        fail_after: int | None = None,
        chunk_delay: float = 0.0,
        detection_output="[]",
        detection_error: Exception | None = None,
        detection_delay: float = 0.0,
    ):
        self.chunks = list(chunks or [])
        self.usage = usage
        self.fail_after = fail_after
        self.chunk_delay = chunk_delay
        self.detection_output = detection_output
        self.detection_error = detection_error
        self.detection_delay = detection_delay
        self.stream_calls: list = []
        self.scanned: list[str] = []

    async def stream_chat(self, messages, *, model=None, temperature=None, max_tokens=None):
        self.stream_calls.append(list(messages))
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index >= self.fail_after:
                raise RuntimeError("provider connection reset")
            yield ChatChunk(content=chunk)
            await asyncio.sleep(self.chunk_delay)
        if self.fail_after is not None and self.fail_after >= len(self.chunks):
            raise RuntimeError("provider connection reset")
        if self.usage is not None:
            yield ChatChunk(usage=self.usage)

    async def complete(self, messages, *, model=None, temperature=None, max_tokens=None):
        text = scanned_text(messages)
        self.scanned.append(text)
        if self.detection_delay:
            await asyncio.sleep(self.detection_delay)
        if self.detection_error is not None:
            raise self.detection_error
        output = self.detection_output
        if callable(output):
            output = output(text)
        return ChatCompletion(content=output, usage=TokenUsage(prompt_tokens=10, completion_tokens=5))

    def estimate_token_count(self, messages) -> int:
        return estimate_token_count(messages)


@pytest.fixture
def make_settings():
    """Build Settings with test-friendly defaults and overrides."""
    from chatshield.config import Settings

    def _make(**overrides):
        values = {
            "GOOGLE_API_KEY": "test-key",
            "API_KEY": "",
            "PII_TYPES": ["email", "phone", "ssn", "credit_card", "ip", "name", "address"],
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def make_services(make_settings):
    """Build the real service graph around a ``FakeChatClient``."""
    from chatshield.services import build_services

    def _make(client: FakeChatClient | None = None, **overrides):
        return build_services(make_settings(**overrides), chat_client=client or FakeChatClient())

    return _make


def make_test_app(services):
    """Create the app with a lifespan that installs ``services``.

    Replaces the real lifespan to avoid needing API keys.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.services = services
        app.state.ready = True
        yield
        app.state.ready = False

    __import__("chatshield.api.app")
    app_module = sys.modules["chatshield.api.app"]

    original_lifespan = app_module.lifespan
    app_module.lifespan = test_lifespan
    try:
        app = app_module.create_app()
    finally:
        app_module.lifespan = original_lifespan
    return app

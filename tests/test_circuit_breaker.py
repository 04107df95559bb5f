"""Tests for the AI detector circuit breaker."""

import asyncio

import pytest

from chatshield.pii.circuit_breaker import CircuitBreaker


class TestCircuitBreaker:
    """Test CircuitBreaker state transitions."""

    @pytest.mark.asyncio
    async def test_starts_closed(self):
        cb = CircuitBreaker()
        assert cb.state == "closed"
        assert await cb.allow_request() is True

    @pytest.mark.asyncio
    async def test_opens_at_threshold(self):
        cb = CircuitBreaker(failure_threshold=3, cooldown_seconds=60)
        for _ in range(2):
            await cb.record_failure()
        assert cb.state == "closed"
        await cb.record_failure()
        assert cb.state == "open"
        assert cb.failure_count == 3
        assert await cb.allow_request() is False

    @pytest.mark.asyncio
    async def test_success_resets_failures(self):
        cb = CircuitBreaker(failure_threshold=2)
        await cb.record_failure()
        await cb.record_success()
        await cb.record_failure()
        assert cb.state == "closed"
        assert cb.failure_count == 1

    @pytest.mark.asyncio
    async def test_half_open_allows_single_probe(self):
        cb = CircuitBreaker(failure_threshold=1, cooldown_seconds=0.05)
        await cb.record_failure()
        await asyncio.sleep(0.06)

        assert cb.state == "half_open"
        assert await cb.allow_request() is True
        assert await cb.allow_request() is False

    @pytest.mark.asyncio
    async def test_probe_success_closes(self):
        cb = CircuitBreaker(failure_threshold=1, cooldown_seconds=0.05)
        await cb.record_failure()
        await asyncio.sleep(0.06)
        await cb.allow_request()
        await cb.record_success()
        assert cb.state == "closed"
        assert cb.failure_count == 0

    @pytest.mark.asyncio
    async def test_probe_failure_reopens(self):
        cb = CircuitBreaker(failure_threshold=1, cooldown_seconds=0.05)
        await cb.record_failure()
        await asyncio.sleep(0.06)
        await cb.allow_request()
        await cb.record_failure()
        assert cb.state == "open"
        assert await cb.allow_request() is False

    @pytest.mark.asyncio
    async def test_cancelled_probe_released(self):
        """A cancelled probe frees the half-open slot without counting a failure."""
        cb = CircuitBreaker(failure_threshold=1, cooldown_seconds=0.05)
        await cb.record_failure()
        await asyncio.sleep(0.06)
        assert await cb.allow_request() is True
        await cb.record_cancellation()
        assert await cb.allow_request() is True
        assert cb.failure_count == 1

    @pytest.mark.asyncio
    async def test_failures_outside_window_do_not_count(self):
        cb = CircuitBreaker(failure_threshold=2, rolling_window_seconds=0.05)
        await cb.record_failure()
        await asyncio.sleep(0.06)
        await cb.record_failure()
        assert cb.state == "closed"
        assert cb.failure_count == 1

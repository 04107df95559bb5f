"""Circuit breaker for AI PII detector calls.

Tracks detector failures within a rolling time window and temporarily
short-circuits the AI layer when a threshold is reached, so a degraded
detection model does not add its full timeout to every batch of every
stream. The regex layer keeps running while the breaker is open.

States: closed (normal) -> open (blocking) -> half_open (probe one request).
Coroutine-safe via ``asyncio.Lock``.
"""

import asyncio
import collections
import logging
import time

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """In-memory circuit breaker owned by one ``PiiDetectionService``.

    Only failures within the last ``rolling_window_seconds`` count toward
    the threshold. After ``cooldown_seconds`` without a new failure the
    breaker lets exactly one probe through; success closes it, failure
    re-opens it.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60.0,
        rolling_window_seconds: float = 300.0,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._cooldown_seconds = cooldown_seconds
        self._rolling_window_seconds = rolling_window_seconds

        self._failure_timestamps: collections.deque[float] = collections.deque()
        self._last_failure_time: float | None = None
        self._state = "closed"
        self._half_open_in_progress = False
        self._lock = asyncio.Lock()

    def _prune_old_failures(self) -> None:
        cutoff = time.monotonic() - self._rolling_window_seconds
        while self._failure_timestamps and self._failure_timestamps[0] <= cutoff:
            self._failure_timestamps.popleft()

    def _cooldown_expired(self) -> bool:
        if self._last_failure_time is None:
            return False
        return (time.monotonic() - self._last_failure_time) >= self._cooldown_seconds

    @property
    def state(self) -> str:
        """Current state for monitoring. Never mutates; see ``allow_request``."""
        if self._state == "open" and self._cooldown_expired():
            return "half_open"
        return self._state

    @property
    def failure_count(self) -> int:
        cutoff = time.monotonic() - self._rolling_window_seconds
        return sum(1 for t in self._failure_timestamps if t > cutoff)

    async def allow_request(self) -> bool:
        """Return True if a detector call may proceed.

        The open -> half_open transition happens here, under the lock.
        """
        async with self._lock:
            if self._state == "open" and self._cooldown_expired():
                self._state = "half_open"
                self._half_open_in_progress = False

            if self._state == "closed":
                return True
            if self._state == "half_open" and not self._half_open_in_progress:
                self._half_open_in_progress = True
                return True
            return False

    async def record_success(self) -> None:
        async with self._lock:
            prev_state = self._state
            self._failure_timestamps.clear()
            self._state = "closed"
            self._half_open_in_progress = False
            if prev_state != "closed":
                logger.info("PII detector circuit %s -> closed", prev_state)

    async def record_cancellation(self) -> None:
        """Release a cancelled half-open probe without counting a failure."""
        async with self._lock:
            if self._state == "half_open" and self._half_open_in_progress:
                self._half_open_in_progress = False

    async def record_failure(self) -> None:
        async with self._lock:
            now = time.monotonic()
            self._failure_timestamps.append(now)
            self._last_failure_time = now
            self._prune_old_failures()

            if self._state == "half_open":
                self._state = "open"
                self._half_open_in_progress = False
                logger.warning(
                    "PII detector circuit re-opened after failed probe (cooldown: %ss)",
                    self._cooldown_seconds,
                )
            elif (
                self._state == "closed"
                and len(self._failure_timestamps) >= self._failure_threshold
            ):
                self._state = "open"
                logger.warning(
                    "PII detector circuit OPEN after %d failures in %.0fs window (cooldown: %ss)",
                    len(self._failure_timestamps),
                    self._rolling_window_seconds,
                    self._cooldown_seconds,
                )

"""Per-user sliding-window rate limiter.

Keeps a deque of request timestamps per user. A request is allowed while
fewer than ``max_requests`` timestamps fall inside the last
``window_seconds``. ``check`` is read-only; ``consume`` records the request
when it is allowed.
"""

import collections
import logging
import math
import time
from collections.abc import Callable

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class RateLimitDecision(BaseModel):
    allowed: bool
    retry_after: int | None = None  # seconds until the oldest request expires


class SlidingWindowRateLimiter:
    """In-memory rate limiter (process-scoped).

    In multi-instance deployments each instance tracks its own window.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        # {user_id: deque of request timestamps}
        self._requests: dict[str, collections.deque[float]] = {}

    def _valid_timestamps(self, user_id: str, now: float) -> collections.deque[float]:
        window_start = now - self.window_seconds
        bucket = self._requests.get(user_id)
        if bucket is None:
            return collections.deque()
        while bucket and bucket[0] <= window_start:
            bucket.popleft()
        return bucket

    def check(self, user_id: str) -> RateLimitDecision:
        """Decide whether ``user_id`` may make a request, without recording it."""
        now = self._clock()
        bucket = self._valid_timestamps(user_id, now)
        if len(bucket) < self.max_requests:
            return RateLimitDecision(allowed=True)

        retry_after = math.ceil(bucket[0] + self.window_seconds - now) if bucket else None
        return RateLimitDecision(allowed=False, retry_after=max(1, retry_after or 1))

    def consume(self, user_id: str) -> RateLimitDecision:
        """Record a request for ``user_id`` if the window allows it."""
        decision = self.check(user_id)
        if decision.allowed:
            bucket = self._requests.setdefault(user_id, collections.deque())
            bucket.append(self._clock())
            logger.debug(
                "Rate limit consumed user_id=%s count=%d limit=%d",
                user_id,
                len(bucket),
                self.max_requests,
            )
        else:
            logger.warning(
                "Rate limit exceeded user_id=%s retry_after=%s", user_id, decision.retry_after
            )
        return decision

    def get_count(self, user_id: str) -> int:
        return len(self._valid_timestamps(user_id, self._clock()))

    def sweep(self) -> int:
        """Evict users with no requests inside the window.

        Returns:
            Number of users evicted.
        """
        now = self._clock()
        evicted = 0
        for user_id in list(self._requests):
            if not self._valid_timestamps(user_id, now):
                del self._requests[user_id]
                evicted += 1
        if evicted:
            logger.debug("Rate limiter swept %d idle users", evicted)
        return evicted

    def __len__(self) -> int:
        return len(self._requests)

"""Tests for the sliding-window rate limiter."""

from chatshield.limits import SlidingWindowRateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestSlidingWindowRateLimiter:
    """Test SlidingWindowRateLimiter."""

    def test_allows_up_to_limit(self):
        limiter = SlidingWindowRateLimiter(3, clock=FakeClock())
        assert all(limiter.consume("u1").allowed for _ in range(3))
        assert limiter.get_count("u1") == 3

    def test_blocks_over_limit_with_retry_after(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(2, window_seconds=60, clock=clock)
        limiter.consume("u1")
        clock.now += 15.2
        limiter.consume("u1")

        decision = limiter.consume("u1")
        assert decision.allowed is False
        # Oldest request expires at 1060; now is 1015.2.
        assert decision.retry_after == 45
        assert limiter.get_count("u1") == 2

    def test_window_slides(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(1, window_seconds=60, clock=clock)
        assert limiter.consume("u1").allowed
        assert not limiter.consume("u1").allowed
        clock.now += 60
        assert limiter.consume("u1").allowed

    def test_retry_after_at_least_one_second(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(1, window_seconds=60, clock=clock)
        limiter.consume("u1")
        clock.now += 59.99
        assert limiter.check("u1").retry_after == 1

    def test_check_does_not_record(self):
        limiter = SlidingWindowRateLimiter(1, clock=FakeClock())
        for _ in range(5):
            assert limiter.check("u1").allowed
        assert limiter.get_count("u1") == 0

    def test_users_are_independent(self):
        limiter = SlidingWindowRateLimiter(1, clock=FakeClock())
        assert limiter.consume("u1").allowed
        assert limiter.consume("u2").allowed
        assert not limiter.consume("u1").allowed

    def test_sweep_evicts_idle_users(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(5, window_seconds=60, clock=clock)
        limiter.consume("idle")
        clock.now += 30
        limiter.consume("active")
        clock.now += 31

        assert limiter.sweep() == 1
        assert len(limiter) == 1
        assert limiter.get_count("active") == 1

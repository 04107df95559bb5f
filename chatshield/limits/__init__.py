"""Request rate limiting and daily token quotas."""

from .rate_limiter import RateLimitDecision, SlidingWindowRateLimiter
from .token_tracker import InMemoryTokenTracker, QuotaCheck

__all__ = ["RateLimitDecision", "SlidingWindowRateLimiter", "InMemoryTokenTracker", "QuotaCheck"]

"""Core rate limit module."""

from core.ratelimit.limiter import TokenBucket
from core.ratelimit.tracker import RateLimitInfo, RateLimitTracker

__all__ = ["RateLimitInfo", "RateLimitTracker", "TokenBucket"]

"""Utility modules for solrelay."""

from solrelay.utils.backoff import RetryPolicy, retry_delay
from solrelay.utils.ratelimit import RateLimiter, get_rate_limiter, reset_rate_limiter

__all__ = [
    "RateLimiter",
    "RetryPolicy",
    "get_rate_limiter",
    "reset_rate_limiter",
    "retry_delay",
]

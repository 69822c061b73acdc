"""Middleware package for the relay."""

from relay.app.middleware.logging import RequestLoggingMiddleware
from relay.app.middleware.rate_limit import FixedWindowRateLimiter, RateLimitMiddleware

__all__ = [
    "FixedWindowRateLimiter",
    "RateLimitMiddleware",
    "RequestLoggingMiddleware",
]

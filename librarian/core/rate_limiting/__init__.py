"""Rate limiting package.

Provides per-route request rate limiting with in-process counters and
best-effort Redis persistence.
"""

from librarian.core.rate_limiting.window_limiter import (
    DEFAULT_RULES,
    WINDOW_SECONDS,
    RateLimitDecision,
    RateLimitRule,
    WindowRateLimiter,
)
from librarian.observability import metrics


class RateLimitExceeded(Exception):
    """Raised when rate limit is exceeded."""

    def __init__(
        self,
        limit_type: str,
        limit: int,
        remaining: int,
        retry_after: int,
        reason: str | None = None,
    ):
        self.limit_type = limit_type
        self.limit = limit
        self.remaining = remaining
        self.retry_after = retry_after
        self.reason = reason or "Too many requests"
        super().__init__(f"{limit_type} rate limit exceeded. Retry after {retry_after}s")


def enforce(limiter: WindowRateLimiter, route: str, key: str) -> RateLimitDecision:
    """Check a request and raise if it is rejected.

    Raises:
        RateLimitExceeded: If the request must not proceed
    """
    decision = limiter.check(route, key)
    if not decision.allowed:
        metrics.RATE_LIMIT_REJECTIONS.labels(route=route).inc()
        raise RateLimitExceeded(
            limit_type=route,
            limit=decision.limit,
            remaining=decision.remaining,
            retry_after=decision.reset,
            reason=decision.reason,
        )
    return decision


__all__ = [
    "DEFAULT_RULES",
    "WINDOW_SECONDS",
    "RateLimitDecision",
    "RateLimitExceeded",
    "RateLimitRule",
    "WindowRateLimiter",
    "enforce",
]

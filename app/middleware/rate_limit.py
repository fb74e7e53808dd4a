"""
Rate Limiting

Token bucket rate limiter for the unauthenticated auth endpoints (login,
registration start, password reset request).

Features:
- Per-client buckets keyed by user ID or IP address (X-Forwarded-For aware)
- Separate buckets per route
- Automatic bucket refill
- Idle buckets pruned once the limiter holds too many
- FastAPI dependency that answers 429 with Retry-After
"""

import math
import time
from dataclasses import dataclass, field
from typing import Callable, Dict

from fastapi import Request

from app.core.config import settings
from app.core.exceptions import RateLimited


# ============== Token Bucket Implementation ==============

@dataclass
class TokenBucket:
    """Token bucket for rate limiting."""
    capacity: int          # Maximum tokens
    refill_rate: float     # Tokens per second
    tokens: float = field(default=0, init=False)
    last_refill: float = field(default=0, init=False)

    def __post_init__(self):
        self.tokens = float(self.capacity)
        self.last_refill = time.time()

    def consume(self, tokens: int = 1) -> bool:
        """
        Attempt to consume tokens.

        Args:
            tokens: Number of tokens to consume.

        Returns:
            True if tokens were available, False otherwise.
        """
        self._refill()

        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    def seconds_until_available(self, tokens: int = 1) -> int:
        """Whole seconds until ``tokens`` could be consumed."""
        self._refill()
        missing = tokens - self.tokens
        if missing <= 0:
            return 0
        return math.ceil(missing / self.refill_rate)

    def _refill(self) -> None:
        """Refill tokens based on elapsed time."""
        now = time.time()
        elapsed = now - self.last_refill

        self.tokens = min(
            self.capacity,
            self.tokens + (elapsed * self.refill_rate)
        )
        self.last_refill = now


# ============== Rate Limiter ==============

class RateLimiter:
    """
    Per-client rate limiter using token bucket algorithm.
    """

    def __init__(
        self,
        requests_per_minute: int = 60,
        burst_capacity: int = 10,
        max_buckets: int = 10000,
    ):
        """
        Initialize rate limiter.

        Args:
            requests_per_minute: Sustained rate limit.
            burst_capacity: Maximum burst size.
            max_buckets: Bucket count at which idle buckets get pruned.
        """
        self._buckets: Dict[str, TokenBucket] = {}
        self._requests_per_minute = requests_per_minute
        self._burst_capacity = burst_capacity
        self._refill_rate = requests_per_minute / 60.0  # Per second
        self.max_buckets = max_buckets

    def _get_key(self, request: Request) -> str:
        """
        Get rate limit key for a request.

        Uses user ID if authenticated, otherwise client IP address.
        """
        if hasattr(request.state, "user") and request.state.user:
            return f"user:{request.state.user.id}"

        return f"ip:{client_ip(request)}"

    def _get_bucket(self, key: str) -> TokenBucket:
        """Get or create bucket for key."""
        if key not in self._buckets:
            self._buckets[key] = TokenBucket(
                capacity=self._burst_capacity,
                refill_rate=self._refill_rate,
            )
        return self._buckets[key]

    def is_allowed(self, request: Request, scope: str = "") -> bool:
        """
        Check if request is allowed.

        Args:
            request: FastAPI request object.
            scope: Optional bucket namespace (e.g. the route).

        Returns:
            True if allowed, False if rate limited.
        """
        bucket = self._get_bucket(f"{scope}{self._get_key(request)}")
        return bucket.consume()

    def retry_after(self, request: Request, scope: str = "") -> int:
        bucket = self._get_bucket(f"{scope}{self._get_key(request)}")
        return max(1, bucket.seconds_until_available())

    def cleanup(self, max_age: float = 3600) -> int:
        """
        Remove stale buckets.

        Args:
            max_age: Maximum age in seconds for inactive buckets.

        Returns:
            Number of buckets removed.
        """
        now = time.time()
        stale_keys = [
            key for key, bucket in self._buckets.items()
            if (now - bucket.last_refill) > max_age
        ]

        for key in stale_keys:
            del self._buckets[key]

        return len(stale_keys)

    def prune_if_full(self) -> int:
        """
        Drop idle buckets once ``max_buckets`` is reached.

        A bucket left alone long enough to refill completely behaves like a
        new one, so only those are removed.
        """
        if len(self._buckets) < self.max_buckets:
            return 0
        return self.cleanup(max_age=self._burst_capacity / self._refill_rate)


def client_ip(request: Request) -> str:
    """Client address, preferring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


# ============== Global Rate Limiters ==============

auth_limiter = RateLimiter(
    requests_per_minute=settings.AUTH_RATE_LIMIT_PER_MINUTE,
    burst_capacity=settings.AUTH_RATE_LIMIT_BURST,
)


# ============== Dependency for Specific Endpoints ==============

def rate_limit(limiter: RateLimiter = None) -> Callable:
    """
    Build a dependency applying ``limiter`` to an endpoint.

    Usage:
        @router.post("/login", dependencies=[Depends(rate_limit(auth_limiter))])
        async def login(...):
            ...
    """
    limiter = limiter or auth_limiter

    async def dependency(request: Request) -> None:
        scope = f"{request.url.path}|"
        limiter.prune_if_full()
        if not limiter.is_allowed(request, scope):
            raise RateLimited(
                limiter.retry_after(request, scope),
                "Rate limit exceeded. Please try again later.",
            )

    return dependency

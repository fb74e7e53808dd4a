"""
Rate Limiting Unit Tests

Tests for the token bucket, the per-client limiter and the endpoint dependency.
"""

from unittest.mock import MagicMock

import pytest


def _request(host: str = "127.0.0.1", forwarded=None, path: str = "/api/v1/auth/login"):
    mock_request = MagicMock()
    mock_request.client.host = host
    mock_request.headers.get.return_value = forwarded
    mock_request.state = MagicMock()
    mock_request.state.user = None
    mock_request.url.path = path
    return mock_request


class TestTokenBucket:
    """Tests for TokenBucket implementation."""

    def test_initial_tokens_at_capacity(self):
        """Verify bucket starts at full capacity."""
        from app.middleware.rate_limit import TokenBucket

        bucket = TokenBucket(capacity=10, refill_rate=1.0)

        assert bucket.tokens == 10.0

    def test_consume_fails_when_empty(self):
        """Verify consume fails when insufficient tokens."""
        from app.middleware.rate_limit import TokenBucket

        bucket = TokenBucket(capacity=2, refill_rate=0.01)

        assert bucket.consume(2) is True
        assert bucket.consume(1) is False

    def test_refill_over_time(self):
        """Verify tokens refill from the elapsed time."""
        from unittest.mock import patch

        from app.middleware.rate_limit import TokenBucket

        with patch("app.middleware.rate_limit.time.time", return_value=1000.0):
            bucket = TokenBucket(capacity=10, refill_rate=10.0)
            bucket.consume(10)

        with patch("app.middleware.rate_limit.time.time", return_value=1000.5):
            bucket._refill()

        assert bucket.tokens == pytest.approx(5.0)

    def test_seconds_until_available(self):
        """Verify the wait is rounded up to whole seconds."""
        from unittest.mock import patch

        from app.middleware.rate_limit import TokenBucket

        with patch("app.middleware.rate_limit.time.time", return_value=1000.0):
            bucket = TokenBucket(capacity=1, refill_rate=0.4)
            assert bucket.seconds_until_available() == 0
            bucket.consume()
            assert bucket.seconds_until_available() == 3  # 2.5s


class TestRateLimiter:
    """Tests for RateLimiter implementation."""

    def test_blocks_requests_over_burst(self):
        """Verify requests over burst limit are blocked."""
        from app.middleware.rate_limit import RateLimiter

        limiter = RateLimiter(requests_per_minute=1, burst_capacity=3)
        mock_request = _request("192.168.1.1")

        for _ in range(3):
            assert limiter.is_allowed(mock_request) is True

        assert limiter.is_allowed(mock_request) is False
        assert limiter.retry_after(mock_request) >= 1

    def test_scopes_have_separate_buckets(self):
        """Verify one route exhausting its bucket leaves another untouched."""
        from app.middleware.rate_limit import RateLimiter

        limiter = RateLimiter(requests_per_minute=1, burst_capacity=1)
        mock_request = _request()

        assert limiter.is_allowed(mock_request, "login|") is True
        assert limiter.is_allowed(mock_request, "login|") is False
        assert limiter.is_allowed(mock_request, "reset|") is True

    def test_forwarded_for_is_preferred(self):
        """Verify the first X-Forwarded-For hop identifies the client."""
        from app.middleware.rate_limit import RateLimiter

        limiter = RateLimiter()

        key = limiter._get_key(_request("10.0.0.1", forwarded="203.0.113.7, 10.0.0.1"))

        assert key == "ip:203.0.113.7"

    def test_uses_user_id_when_authenticated(self):
        """Verify user ID is used for authenticated users."""
        from app.middleware.rate_limit import RateLimiter

        limiter = RateLimiter(requests_per_minute=60, burst_capacity=5)

        mock_user = MagicMock()
        mock_user.id = 123
        mock_request = _request()
        mock_request.state.user = mock_user

        assert limiter._get_key(mock_request) == "user:123"

    def test_cleanup_removes_stale_buckets(self):
        """Verify cleanup removes buckets idle longer than max_age."""
        from unittest.mock import patch

        from app.middleware.rate_limit import RateLimiter

        limiter = RateLimiter(requests_per_minute=60, burst_capacity=5)

        with patch("app.middleware.rate_limit.time.time", return_value=1000.0):
            limiter.is_allowed(_request("10.0.0.1"))
        assert len(limiter._buckets) == 1

        with patch("app.middleware.rate_limit.time.time", return_value=1000.0 + 3601):
            removed = limiter.cleanup(max_age=3600)

        assert removed == 1
        assert len(limiter._buckets) == 0


class TestRateLimitDependency:
    """Tests for the rate_limit dependency factory."""

    @pytest.mark.asyncio
    async def test_dependency_raises_rate_limited(self):
        """Verify an exhausted bucket raises RateLimited with Retry-After."""
        from app.core.exceptions import RateLimited
        from app.middleware.rate_limit import RateLimiter, rate_limit

        dependency = rate_limit(RateLimiter(requests_per_minute=1, burst_capacity=1))
        mock_request = _request()

        await dependency(mock_request)
        with pytest.raises(RateLimited) as exc_info:
            await dependency(mock_request)

        assert exc_info.value.status_code == 429
        assert exc_info.value.message == "Rate limit exceeded. Please try again later."
        assert int(exc_info.value.headers()["Retry-After"]) >= 1

    @pytest.mark.asyncio
    async def test_dependency_prunes_idle_buckets_when_full(self):
        """Verify the bucket map stops growing once max_buckets is reached."""
        from unittest.mock import patch

        from app.middleware.rate_limit import RateLimiter, rate_limit

        limiter = RateLimiter(requests_per_minute=60, burst_capacity=5, max_buckets=2)
        dependency = rate_limit(limiter)

        with patch("app.middleware.rate_limit.time.time", return_value=1000.0):
            await dependency(_request("10.0.0.1"))
            await dependency(_request("10.0.0.2"))
        assert len(limiter._buckets) == 2

        with patch("app.middleware.rate_limit.time.time", return_value=1010.0):
            await dependency(_request("10.0.0.3"))

        assert list(limiter._buckets) == ["/api/v1/auth/login|ip:10.0.0.3"]

    def test_busy_buckets_survive_pruning(self):
        """Verify buckets that have not refilled yet are kept."""
        from unittest.mock import patch

        from app.middleware.rate_limit import RateLimiter

        limiter = RateLimiter(requests_per_minute=60, burst_capacity=5, max_buckets=1)

        with patch("app.middleware.rate_limit.time.time", return_value=1000.0):
            limiter.is_allowed(_request("10.0.0.1"))
        with patch("app.middleware.rate_limit.time.time", return_value=1002.0):
            removed = limiter.prune_if_full()

        assert removed == 0
        assert len(limiter._buckets) == 1

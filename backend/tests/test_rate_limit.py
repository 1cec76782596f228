"""Tests for the sliding-window rate limiter."""

from __future__ import annotations

import pytest

from shelfcopy.errors import RateLimitExceededError
from shelfcopy.utils.rate_limit import SlidingWindowRateLimiter


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class TestWindow:
    def test_five_pass_sixth_fails(self, clock) -> None:
        """5 checks within the window succeed, the 6th fails with retry-after ≤ 60."""
        limiter = SlidingWindowRateLimiter(interval=60, limit=5, clock=clock)
        for i in range(5):
            status = limiter.check("shop-1:status")
            assert status.remaining == 4 - i
            clock.now += 1

        with pytest.raises(RateLimitExceededError) as exc_info:
            limiter.check("shop-1:status")
        assert 0 < exc_info.value.retry_after <= 60
        assert exc_info.value.retryable is True
        assert exc_info.value.limit == 5

    def test_succeeds_after_window_passes(self, clock) -> None:
        limiter = SlidingWindowRateLimiter(interval=60, limit=5, clock=clock)
        for _ in range(5):
            limiter.check("t")
        with pytest.raises(RateLimitExceededError):
            limiter.check("t")
        clock.now += 61
        assert limiter.check("t").remaining == 4

    def test_retry_after_counts_from_oldest_entry(self, clock) -> None:
        limiter = SlidingWindowRateLimiter(interval=60, limit=2, clock=clock)
        limiter.check("t")
        clock.now += 20
        limiter.check("t")
        clock.now += 10
        with pytest.raises(RateLimitExceededError) as exc_info:
            limiter.check("t")
        assert exc_info.value.retry_after == 30

    def test_tokens_are_independent(self, clock) -> None:
        limiter = SlidingWindowRateLimiter(interval=60, limit=1, clock=clock)
        limiter.check("a")
        limiter.check("b")
        with pytest.raises(RateLimitExceededError):
            limiter.check("a")

    def test_per_call_limit_override(self, clock) -> None:
        limiter = SlidingWindowRateLimiter(interval=60, limit=1, clock=clock)
        assert limiter.check("t", limit=3).limit == 3
        limiter.check("t", limit=3)
        limiter.check("t", limit=3)
        with pytest.raises(RateLimitExceededError):
            limiter.check("t", limit=3)


class TestTokenCap:
    def test_full_cache_fails_every_check(self, clock) -> None:
        limiter = SlidingWindowRateLimiter(
            interval=60, limit=5, unique_token_per_interval=2, clock=clock
        )
        limiter.check("a")
        limiter.check("b")
        with pytest.raises(RateLimitExceededError):
            limiter.check("a")
        with pytest.raises(RateLimitExceededError):
            limiter.check("c")

    def test_expired_tokens_are_purged(self, clock) -> None:
        limiter = SlidingWindowRateLimiter(
            interval=60, limit=5, unique_token_per_interval=2, clock=clock
        )
        limiter.check("a")
        limiter.check("b")
        clock.now += 61
        assert limiter.check("c").remaining == 4

"""Sliding-window request throttle keyed by an arbitrary token.

Independent of the credit ledger: the limiter caps request *rate*, the
ledger caps request *cost*. State is process-local.
"""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from shelfcopy.errors import RateLimitExceededError

log = structlog.get_logger("rate_limit")


@dataclass(frozen=True)
class RateLimitStatus:
    limit: int
    remaining: int


class SlidingWindowRateLimiter:
    """Allow ``limit`` checks per token within any ``interval``-second window.

    ``unique_token_per_interval`` caps how many tokens may be tracked at
    once; when the cache is full every check fails until entries age out.
    """

    def __init__(
        self,
        interval: float = 60.0,
        limit: int = 10,
        unique_token_per_interval: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval = interval
        self.limit = limit
        self.unique_token_per_interval = unique_token_per_interval
        self._clock = clock
        self._windows: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def _purge(self, clear_before: float) -> None:
        for token in list(self._windows):
            fresh = [ts for ts in self._windows[token] if ts > clear_before]
            if fresh:
                self._windows[token] = fresh
            else:
                del self._windows[token]

    def _seconds_until_expiry(self, oldest: float, now: float) -> int:
        return max(1, math.ceil(oldest + self.interval - now))

    def check(self, token: str, limit: int | None = None) -> RateLimitStatus:
        """Record one request for ``token`` or raise RateLimitExceededError."""
        token_limit = self.limit if limit is None else limit
        with self._lock:
            now = self._clock()
            self._purge(now - self.interval)

            if len(self._windows) >= self.unique_token_per_interval:
                oldest = min(ts for window in self._windows.values() for ts in window)
                retry_after = self._seconds_until_expiry(oldest, now)
                log.warning(
                    "rate_limit_cache_full",
                    tracked_tokens=len(self._windows),
                    retry_after=retry_after,
                )
                raise RateLimitExceededError(
                    "Rate limit exceeded at the service level",
                    retry_after=retry_after,
                    limit=token_limit,
                )

            window = self._windows.get(token, [])
            if len(window) >= token_limit:
                retry_after = self._seconds_until_expiry(min(window), now)
                raise RateLimitExceededError(
                    "Rate limit exceeded", retry_after=retry_after, limit=token_limit
                )

            window.append(now)
            self._windows[token] = window
            return RateLimitStatus(limit=token_limit, remaining=max(0, token_limit - len(window)))

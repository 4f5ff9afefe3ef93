"""
Fixed-window rate limiter on top of the two-tier cache counter.

Implements:
- Per-identifier limits (tenant, API key, client IP)
- One counter key per window, expired by Redis when the window ends
- Fail-open behaviour when the cache itself errors
"""

import time
from dataclasses import dataclass
from typing import Optional

from marketplace_hub.cache.two_tier_cache import TwoTierCache
from marketplace_hub.utils.exceptions import CacheUnavailableError
from marketplace_hub.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class RateLimitResult:
    """Outcome of a rate limit check, shaped for X-RateLimit-* headers."""
    allowed: bool
    limit: int
    remaining: int
    reset_at: int  # Unix timestamp when the window resets


class RateLimiter:
    """
    Counts requests per identifier in fixed windows.

    With Redis down the counter lives in the local tier, where concurrent
    increments may undercount; limits are then approximate but still
    enforced per process.
    """

    def __init__(self, cache: TwoTierCache, limit: int = 100, window_seconds: int = 60):
        """
        Args:
            cache: Two-tier cache holding the counters
            limit: Maximum requests allowed per window
            window_seconds: Window length in seconds
        """
        self.cache = cache
        self.limit = limit
        self.window_seconds = window_seconds

    def _window_start(self, now: float) -> int:
        return int(now // self.window_seconds) * self.window_seconds

    def _key(self, identifier: str, window_start: int) -> str:
        return f"rate_limit:{identifier}:{window_start}"

    def check(self, identifier: str, now: Optional[float] = None) -> RateLimitResult:
        """
        Count one request for ``identifier`` and decide whether it is allowed.

        Args:
            identifier: Unique identifier for the caller (e.g. "company:{id}")
            now: Override for the current Unix time

        Returns:
            RateLimitResult for the current window
        """
        now = time.time() if now is None else now
        window_start = self._window_start(now)
        reset_at = window_start + self.window_seconds
        key = self._key(identifier, window_start)

        try:
            count = self.cache.increment(key, 1)
        except Exception as e:
            logger.error(f"Rate limit check failed for {identifier}: {e}", exc_info=True)
            return RateLimitResult(True, self.limit, self.limit, reset_at)

        if count == 1:
            try:
                self.cache.set_expiration(key, self.window_seconds + 1)
            except CacheUnavailableError:
                # Local counters are keyed by window and age out with the default TTL
                pass

        allowed = count <= self.limit
        remaining = max(0, self.limit - count)

        if not allowed:
            logger.warning(f"Rate limit exceeded for {identifier} ({count}/{self.limit})")

        return RateLimitResult(allowed, self.limit, remaining, reset_at)

    def reset(self, identifier: str, now: Optional[float] = None) -> bool:
        """Clear the current window's counter for ``identifier``."""
        now = time.time() if now is None else now
        return self.cache.delete(self._key(identifier, self._window_start(now)))

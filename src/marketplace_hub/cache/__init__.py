"""
Caching layer for Marketplace Hub.
"""

from .local_store import LocalTTLStore
from .two_tier_cache import TwoTierCache
from .rate_limiter import RateLimiter, RateLimitResult

__all__ = ["LocalTTLStore", "TwoTierCache", "RateLimiter", "RateLimitResult"]

"""
In-process key/value store with per-entry TTL.

Backs the two-tier cache when Redis is unreachable. Expired entries are
dropped lazily on read and swept periodically on write.
"""

import threading
import time
from typing import Any, Dict, Optional, Tuple

from marketplace_hub.utils.logger import get_logger

logger = get_logger(__name__)

_MISSING = object()


class LocalTTLStore:
    """
    Thread-safe dict with expiry deadlines.

    Each operation takes the lock, but compound operations built from them
    (such as the cache's increment fallback) are not atomic.
    """

    def __init__(self, default_ttl: int = 3600, cleanup_interval: int = 600):
        """
        Args:
            default_ttl: TTL in seconds when the caller passes none
            cleanup_interval: Minimum seconds between sweeps of expired entries
        """
        self.default_ttl = default_ttl
        self.cleanup_interval = cleanup_interval
        self._items: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = threading.Lock()
        self._last_cleanup = time.monotonic()

    def _deadline(self, ttl: Optional[int]) -> Optional[float]:
        if ttl is None:
            ttl = self.default_ttl
        if ttl <= 0:
            return None
        return time.monotonic() + ttl

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        with self._lock:
            self._items[key] = (value, self._deadline(ttl))
        self._maybe_cleanup()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._items.get(key)
            if entry is None:
                return default
            value, deadline = entry
            if deadline is not None and deadline <= time.monotonic():
                del self._items[key]
                return default
            return value

    def contains(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def remaining_ttl(self, key: str) -> Optional[float]:
        """Seconds until expiry, None when the key is missing or never expires."""
        with self._lock:
            entry = self._items.get(key)
            if entry is None or entry[1] is None:
                return None
            return max(0.0, entry[1] - time.monotonic())

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._items.pop(key, None) is not None

    def flush(self) -> None:
        with self._lock:
            self._items.clear()

    def purge_expired(self) -> int:
        """Remove expired entries, returning how many were dropped."""
        now = time.monotonic()
        with self._lock:
            expired = [
                key for key, (_, deadline) in self._items.items()
                if deadline is not None and deadline <= now
            ]
            for key in expired:
                del self._items[key]
            self._last_cleanup = now
        if expired:
            logger.debug(f"Local cache purged {len(expired)} expired entries")
        return len(expired)

    def _maybe_cleanup(self) -> None:
        if time.monotonic() - self._last_cleanup >= self.cleanup_interval:
            self.purge_expired()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

"""
Explicitly owned in-memory TTL cache.

Used for the historical-deal read cache and the narrative response cache.
Each cache is constructed by its owner and passed to the code that needs it;
nothing in this package keeps a cache at module level.

Usage:
    cache = TTLCache(ttl_seconds=300)
    deals = cache.get("org-1")
    if deals is None:
        deals = load_deals("org-1")
        cache.set("org-1", deals)
"""

import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


class TTLCache:
    """
    Key/value cache whose entries expire a fixed time after being written.

    Args:
        ttl_seconds: Lifetime of an entry.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value, or None when absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, value)

    def invalidate(self, *keys: Hashable) -> None:
        """Drop the given keys immediately."""
        with self._lock:
            for key in keys:
                self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

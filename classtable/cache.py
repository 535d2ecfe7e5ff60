"""
Small in-process cache with per-entry TTL and least-used eviction.

Used to keep group overview results for a couple of minutes. It is an
optional layer: everything works (just slower) when no cache is passed.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


class MemoryCache:
    def __init__(
        self,
        max_size: int = 50,
        default_ttl: float = 120.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (expires_at, value)
        self._items: Dict[Hashable, Tuple[float, Any]] = {}
        self._hits: Dict[Hashable, int] = {}

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return default
            expires_at, value = item
            if self._clock() >= expires_at:
                self._drop(key)
                return default
            self._hits[key] = self._hits.get(key, 0) + 1
            return value

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            if key not in self._items and len(self._items) >= self.max_size:
                self._evict_least_used()
            self._items[key] = (self._clock() + ttl, value)
            self._hits.setdefault(key, 0)

    def evict(self, key: Hashable) -> None:
        with self._lock:
            self._drop(key)

    def evict_matching(self, predicate: Callable[[Hashable], bool]) -> int:
        """
        Drop every key for which predicate(key) is true. Returns the count.
        """
        with self._lock:
            doomed = [k for k in self._items if predicate(k)]
            for k in doomed:
                self._drop(k)
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self._hits.clear()

    def __len__(self) -> int:
        return len(self._items)

    def _drop(self, key: Hashable) -> None:
        self._items.pop(key, None)
        self._hits.pop(key, None)

    def _evict_least_used(self) -> None:
        now = self._clock()
        expired = [k for k, (expires_at, _) in self._items.items() if now >= expires_at]
        if expired:
            for k in expired:
                self._drop(k)
            return
        # min() returns the first minimum, i.e. the oldest insert on ties
        victim = min(self._hits, key=lambda k: self._hits[k])
        self._drop(victim)

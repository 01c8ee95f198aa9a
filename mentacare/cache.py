from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class _Miss:
    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS = _Miss()


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    stored_at: float
    ttl: float


class TTLCache:
    """
    Process-local key -> payload map with per-entry TTL and an LRU capacity bound.

    Expiry is checked lazily on read. Stored payloads are shared with callers,
    who must treat them as read-only.
    """

    def __init__(self, max_entries: int = 1024, clock: Optional[Callable[[], float]] = None) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._max_entries = max_entries
        self._clock = clock or time.monotonic
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not MISS

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return MISS
            if self._clock() - entry.stored_at >= entry.ttl:
                del self._entries[key]
                return MISS
            self._entries.move_to_end(key)
            return entry.value

    def set(self, key: str, value: Any, ttl: float) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(key=key, value=value, stored_at=self._clock(), ttl=float(ttl))
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("cache evicted %s", evicted)

    def invalidate(self, pattern: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if pattern in key]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug("cache invalidated %d key(s) matching %r", len(doomed), pattern)
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_or_fetch(self, key: str, fetch: Callable[[], Any], ttl: float) -> Any:
        cached = self.get(key)
        if cached is not MISS:
            return cached
        value = fetch()
        self.set(key, value, ttl)
        return value

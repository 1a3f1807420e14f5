"""
In-Memory Cache Backend.

Suitable for single-process deployments. Each worker process has its own
cache; use RedisCache for shared state.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .base import MISS, CacheEntry, validate_ttl

logger = logging.getLogger(__name__)


@dataclass
class InMemoryCache:
    """
    Dict-backed TTL cache.

    Expired entries are evicted lazily on read. When the number of entries
    exceeds max_entries, expired entries are dropped first and then the
    half closest to expiry.

    Writes replace the whole entry under a lock, so a reader sees either the
    old or the new value, never a mix. Values are copied on the way in and
    on the way out; mutating a returned value never changes the entry.
    """

    max_entries: int = 10000
    clock: Callable[[], float] = time.monotonic

    _entries: dict[str, CacheEntry] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    hits: int = field(default=0, init=False)
    misses: int = field(default=0, init=False)

    async def get(self, key: str) -> Any:
        now = self.clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return MISS
            if entry.is_expired(now):
                del self._entries[key]
                self.misses += 1
                return MISS
            self.hits += 1
            value = entry.value
        return copy.deepcopy(value)

    async def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        ttl = validate_ttl(ttl_seconds)
        entry = CacheEntry(key=key, value=copy.deepcopy(value), expires_at=self.clock() + ttl)
        with self._lock:
            self._entries[key] = entry
            if len(self._entries) > self.max_entries:
                self._cleanup()

    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    async def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _cleanup(self) -> None:
        """Drop expired entries, then the half closest to expiry. Caller holds the lock."""
        now = self.clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]

        if len(self._entries) <= self.max_entries:
            return

        by_expiry = sorted(self._entries, key=lambda k: self._entries[k].expires_at)
        for key in by_expiry[: len(by_expiry) // 2]:
            del self._entries[key]
        logger.debug(f"[cache] capacity cleanup, {len(self._entries)} entries kept")

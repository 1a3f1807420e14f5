"""
Cache Layer Contract.

Key/value store with a hard TTL, used to memoize expensive external calls.

Contract:
    get(key)                    -> value | MISS
    set(key, value, ttl_seconds)
    delete(key)                 -> bool
    clear()

Semantics:
    - TTL is a hard expiry, not refresh-on-read. A `get` issued once
      `ttl_seconds` have elapsed since the matching `set` returns MISS.
    - Concurrent `set` on one key is last-writer-wins; no partial write is
      ever observable.
    - The cache is advisory: two concurrent misses on the same key may both
      compute the value. Backends never act as a lock.

Backends (InMemoryCache, RedisCache) are interchangeable; the pipeline only
depends on this protocol.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar, runtime_checkable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Miss:
    """Sentinel type for a cache miss (distinct from a cached None)."""

    _instance: _Miss | None = None

    def __new__(cls) -> _Miss:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISS"


MISS = _Miss()


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A stored value and the monotonic time it stops being visible."""

    key: str
    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@runtime_checkable
class CacheBackend(Protocol):
    """
    Protocol for cache backends.

    Implementations can use:
    - In-memory (single process)
    - Redis (distributed)
    """

    async def get(self, key: str) -> Any:
        """Return the cached value or MISS."""
        ...

    async def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Store a value for ttl_seconds."""
        ...

    async def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it existed."""
        ...

    async def clear(self) -> None:
        """Remove every entry."""
        ...


def validate_ttl(ttl_seconds: float) -> float:
    if ttl_seconds <= 0:
        raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
    return float(ttl_seconds)


class NamespacedCache:
    """
    View of a backend with every key prefixed by a namespace.

    Feature code receives one of these, namespaced by feature id, so cache
    keys are always composed of feature id + request signature and one
    feature cannot read or overwrite another's entries.
    """

    def __init__(self, backend: CacheBackend, namespace: str):
        self._backend = backend
        self._namespace = namespace

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    def key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> Any:
        return await self._backend.get(self.key(key))

    async def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        await self._backend.set(self.key(key), value, ttl_seconds)

    async def delete(self, key: str) -> bool:
        return await self._backend.delete(self.key(key))

    def __repr__(self) -> str:
        return f"<NamespacedCache namespace={self._namespace!r}>"


async def cached(
    cache: CacheBackend | NamespacedCache,
    key: str,
    ttl_seconds: float,
    loader: Callable[[], Awaitable[T]],
) -> T:
    """
    Return the cached value for key, computing it with loader on a miss.

    The loader runs at most once per call. Its result is stored only when it
    returns normally; exceptions propagate and nothing is cached.
    """
    value = await cache.get(key)
    if value is not MISS:
        logger.debug(f"[cache] hit key={key}")
        return value

    logger.debug(f"[cache] miss key={key}")
    value = await loader()
    await cache.set(key, value, ttl_seconds)
    return value

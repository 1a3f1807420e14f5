"""
Rate Limiting for featurehost.

Counts requests per identity key inside a time window and rejects callers
that exceed a threshold.

Design Philosophy:
- Atomic increment-and-compare per key (no read-modify-write race)
- Per-key limiting (feature + caller IP, API key, or wallet address)
- Pluggable counter storage (in-memory, Redis)
- Non-blocking: over-limit requests are rejected, never queued

Two strategies are available:
- FixedWindowLimiter: window opens on the first hit for a key and closes
  `window_seconds` later. Backed by a CounterStore.
- SlidingWindowLimiter: counts hits in the trailing `window_seconds`.
  More accurate at window edges, but keeps a timestamp per hit.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)


# =============================================================================
# Decision
# =============================================================================


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    """Outcome of a single acquire."""

    allowed: bool
    count: int
    limit: int
    retry_after: float = 0.0

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


class Limiter(Protocol):
    """Interface shared by the window limiters."""

    max_requests: int
    window_seconds: float

    async def acquire(self, key: str) -> RateLimitDecision: ...

    async def reset(self, key: str) -> None: ...


# =============================================================================
# Counter Storage Protocol
# =============================================================================


@dataclass(frozen=True, slots=True)
class WindowCount:
    """Counter value after an increment, and seconds until its window closes."""

    count: int
    expires_in: float


class CounterStore(Protocol):
    """
    Protocol for fixed-window counter storage.

    `incr` must be atomic: concurrent increments on one key never lose a hit.

    Implementations can use:
    - In-memory (single process)
    - Redis (distributed)
    """

    async def incr(self, key: str, window_seconds: float) -> WindowCount:
        """Increment the counter for key, opening a new window if none is live."""
        ...

    async def reset(self, key: str) -> None:
        """Drop the counter for key."""
        ...


# =============================================================================
# In-Memory Storage
# =============================================================================


@dataclass
class _Window:
    count: int
    expires_at: float


@dataclass
class InMemoryCounterStore:
    """
    In-memory counter storage.

    Suitable for single-process deployments.
    Not suitable for distributed systems.
    """

    max_keys: int = 10000
    clock: Callable[[], float] = time.monotonic
    windows: dict[str, _Window] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    async def incr(self, key: str, window_seconds: float) -> WindowCount:
        now = self.clock()
        with self._lock:
            window = self.windows.get(key)
            if window is None or now >= window.expires_at:
                window = _Window(count=0, expires_at=now + window_seconds)
                self.windows[key] = window
            window.count += 1
            count, expires_in = window.count, window.expires_at - now

            if len(self.windows) > self.max_keys:
                self._cleanup(now)

        return WindowCount(count=count, expires_in=expires_in)

    async def reset(self, key: str) -> None:
        with self._lock:
            self.windows.pop(key, None)

    def _cleanup(self, now: float) -> None:
        """Remove closed windows, then the oldest half. Caller holds the lock."""
        for key in [k for k, w in self.windows.items() if now >= w.expires_at]:
            del self.windows[key]

        if len(self.windows) <= self.max_keys:
            return

        sorted_keys = sorted(self.windows, key=lambda k: self.windows[k].expires_at)
        for key in sorted_keys[: len(sorted_keys) // 2]:
            del self.windows[key]


# =============================================================================
# Redis Storage
# =============================================================================


class RedisCounterStore:
    """
    Redis counter storage.

    Opens the window with `SET NX PX` and increments with `INCR` inside one
    MULTI/EXEC transaction, so the increment-and-compare is atomic across
    workers.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "featurehost:ratelimit",
        client: Any = None,
    ) -> None:
        self._redis_url = redis_url
        self._key_prefix = key_prefix
        self._client: Any = client

    async def _get_client(self) -> Any:
        """Get or create Redis client."""
        if self._client is None:
            try:
                import redis.asyncio as aioredis
            except ImportError:
                raise ImportError(
                    "redis package required for RedisCounterStore. Install with: pip install redis"
                )
            self._client = aioredis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}"

    async def incr(self, key: str, window_seconds: float) -> WindowCount:
        client = await self._get_client()
        window_ms = max(1, int(window_seconds * 1000))
        redis_key = self._key(key)

        async with client.pipeline(transaction=True) as pipe:
            pipe.set(redis_key, 0, px=window_ms, nx=True)
            pipe.incr(redis_key)
            pipe.pttl(redis_key)
            _, count, ttl_ms = await pipe.execute()

        expires_in = ttl_ms / 1000 if ttl_ms and ttl_ms > 0 else window_seconds
        return WindowCount(count=int(count), expires_in=expires_in)

    async def reset(self, key: str) -> None:
        client = await self._get_client()
        await client.delete(self._key(key))


# =============================================================================
# Fixed Window Limiter
# =============================================================================


@dataclass
class FixedWindowLimiter:
    """
    Fixed window rate limiter.

    The (max_requests + 1)-th request inside a window is rejected; the first
    request after the window closes opens a fresh one.

    Example:
        limiter = FixedWindowLimiter(
            max_requests=30,
            window_seconds=60.0,  # 30 requests per minute
        )

        decision = await limiter.acquire("gas-tracker:203.0.113.7")
        if not decision.allowed:
            raise RateLimited(...)

    Args:
        max_requests: Requests allowed per window
        window_seconds: Window length
        store: Counter storage backend
    """

    max_requests: int
    window_seconds: float
    store: CounterStore = field(default_factory=InMemoryCounterStore)

    async def acquire(self, key: str) -> RateLimitDecision:
        """
        Count a request and decide whether it is allowed.

        Rejected requests still count toward the window.
        """
        window = await self.store.incr(key, self.window_seconds)
        allowed = window.count <= self.max_requests

        if allowed:
            logger.debug(
                f"[ratelimit] acquired: key={key}, count={window.count}/{self.max_requests}"
            )
        else:
            logger.debug(
                f"[ratelimit] exceeded: key={key}, count={window.count}/{self.max_requests}, "
                f"retry_after={window.expires_in:.1f}s"
            )

        return RateLimitDecision(
            allowed=allowed,
            count=window.count,
            limit=self.max_requests,
            retry_after=0.0 if allowed else window.expires_in,
        )

    async def reset(self, key: str) -> None:
        """Reset rate limit for a key."""
        await self.store.reset(key)

    def get_config(self) -> dict[str, Any]:
        return {
            "strategy": "fixed",
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
        }


# =============================================================================
# Sliding Window Limiter
# =============================================================================


@dataclass
class SlidingWindowEntry:
    """Entry for sliding window rate limiting."""

    timestamps: list[float] = field(default_factory=list)


@dataclass
class SlidingWindowLimiter:
    """
    Sliding window rate limiter.

    More accurate than a fixed window for strict rate limits,
    but requires more memory. Single-process only.

    Keys whose window has emptied are swept at most once per window, and
    immediately when more than max_keys are tracked.

    Example:
        limiter = SlidingWindowLimiter(
            max_requests=100,
            window_seconds=60.0,  # 100 requests per minute
        )
    """

    max_requests: int
    window_seconds: float
    clock: Callable[[], float] = time.monotonic
    max_keys: int = 10000
    entries: dict[str, SlidingWindowEntry] = field(default_factory=dict)
    _last_sweep: float | None = field(default=None, init=False, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    def _cleanup_old_timestamps(self, entry: SlidingWindowEntry, now: float) -> None:
        """Remove timestamps outside the window."""
        cutoff = now - self.window_seconds
        entry.timestamps = [t for t in entry.timestamps if t > cutoff]

    def _sweep(self, now: float) -> None:
        """Drop keys with no hits left in the window. Caller holds the lock."""
        if self._last_sweep is None:
            self._last_sweep = now
        due = now - self._last_sweep >= self.window_seconds
        if not due and len(self.entries) <= self.max_keys:
            return
        self._last_sweep = now

        cutoff = now - self.window_seconds
        stale = [
            key for key, entry in self.entries.items()
            if not entry.timestamps or entry.timestamps[-1] <= cutoff
        ]
        for key in stale:
            del self.entries[key]

        if len(self.entries) > self.max_keys:
            by_latest = sorted(self.entries, key=lambda k: self.entries[k].timestamps[-1])
            for key in by_latest[: len(by_latest) // 2]:
                del self.entries[key]
        logger.debug(f"[ratelimit] sweep: {len(stale)} idle keys dropped, {len(self.entries)} kept")

    async def acquire(self, key: str) -> RateLimitDecision:
        """
        Attempt to acquire rate limit.

        Only allowed requests are recorded.
        """
        async with self._lock:
            now = self.clock()
            self._sweep(now)
            entry = self.entries.get(key) or SlidingWindowEntry()
            self._cleanup_old_timestamps(entry, now)

            if len(entry.timestamps) < self.max_requests:
                entry.timestamps.append(now)
                self.entries[key] = entry
                return RateLimitDecision(
                    allowed=True,
                    count=len(entry.timestamps),
                    limit=self.max_requests,
                )

            # Wait until oldest timestamp expires
            oldest = entry.timestamps[0] if entry.timestamps else now
            retry_after = max(0.0, oldest + self.window_seconds - now)
            logger.debug(f"[ratelimit] exceeded: key={key}, retry_after={retry_after:.1f}s")
            return RateLimitDecision(
                allowed=False,
                count=len(entry.timestamps) + 1,
                limit=self.max_requests,
                retry_after=retry_after,
            )

    async def check(self, key: str) -> tuple[bool, int]:
        """
        Check current state without consuming.

        Returns (would_succeed, remaining_requests)
        """
        async with self._lock:
            entry = self.entries.get(key) or SlidingWindowEntry()
            self._cleanup_old_timestamps(entry, self.clock())
            remaining = self.max_requests - len(entry.timestamps)
            return remaining > 0, remaining

    async def reset(self, key: str) -> None:
        async with self._lock:
            self.entries.pop(key, None)

    def get_config(self) -> dict[str, Any]:
        return {
            "strategy": "sliding",
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
        }


__all__ = [
    "CounterStore",
    "FixedWindowLimiter",
    "InMemoryCounterStore",
    "Limiter",
    "RateLimitDecision",
    "RedisCounterStore",
    "SlidingWindowEntry",
    "SlidingWindowLimiter",
    "WindowCount",
]

"""
featurehost Cache Layer

TTL key/value caching with swappable backends, plus cached external fetches.
"""

from .base import MISS, CacheBackend, CacheEntry, NamespacedCache, cached
from .fetch import CachedFetcher, fetch_with_cache, request_signature
from .memory import InMemoryCache
from .redis_backend import RedisCache

__all__ = [
    "MISS",
    "CacheBackend",
    "CacheEntry",
    "NamespacedCache",
    "cached",
    "InMemoryCache",
    "RedisCache",
    "CachedFetcher",
    "fetch_with_cache",
    "request_signature",
]

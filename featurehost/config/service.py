"""
Settings loading and service construction.

Settings come from FEATUREHOST_* environment variables. build_services()
turns them into the PipelineServices shared by every feature pipeline.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache

import httpx

from featurehost.auth import StaticTokenAuthority
from featurehost.cache import CacheBackend, InMemoryCache, RedisCache
from featurehost.cache.fetch import DEFAULT_FETCH_TIMEOUT
from featurehost.pipeline import (
    FixedWindowLimiter,
    IdentityPolicy,
    InMemoryCounterStore,
    Limiter,
    PipelineServices,
    RedisCounterStore,
    SlidingWindowLimiter,
)

from .schemas import CacheBackendKind, HostSettings, RateLimitStrategy

logger = logging.getLogger(__name__)


@lru_cache()
def get_settings() -> HostSettings:
    """
    Get host settings from environment.

    Uses lru_cache for singleton pattern.
    """
    values: dict[str, object] = {
        # Service
        "service_name": os.getenv("FEATUREHOST_SERVICE_NAME", "featurehost"),
        "environment": os.getenv("FEATUREHOST_ENVIRONMENT", "development"),
        "debug": os.getenv("FEATUREHOST_DEBUG", "false").lower() == "true",
        "log_level": os.getenv("FEATUREHOST_LOG_LEVEL", "INFO"),
        # Manifests
        "manifest_dir": os.getenv("FEATUREHOST_MANIFEST_DIR", "features"),
        # Rate limiting
        "rate_limit_requests": os.getenv("FEATUREHOST_RATE_LIMIT_REQUESTS", "30"),
        "rate_limit_window_seconds": os.getenv("FEATUREHOST_RATE_LIMIT_WINDOW_SECONDS", "60"),
        "rate_limit_strategy": os.getenv("FEATUREHOST_RATE_LIMIT_STRATEGY", "fixed"),
        "rate_limit_identity": os.getenv("FEATUREHOST_RATE_LIMIT_IDENTITY", "ip"),
        # Execution
        "execution_timeout_seconds": os.getenv("FEATUREHOST_EXECUTION_TIMEOUT_SECONDS", "15"),
        # Cache
        "cache_backend": os.getenv("FEATUREHOST_CACHE_BACKEND", "memory"),
        "cache_max_entries": os.getenv("FEATUREHOST_CACHE_MAX_ENTRIES", "10000"),
        "default_cache_ttl_seconds": os.getenv("FEATUREHOST_DEFAULT_CACHE_TTL_SECONDS", "60"),
        # Auth
        "api_keys": os.getenv("FEATUREHOST_API_KEYS", ""),
    }
    redis_url = os.getenv("FEATUREHOST_REDIS_URL")
    if redis_url:
        values["redis_url"] = redis_url
    return HostSettings.model_validate(values)


def build_limiter(settings: HostSettings) -> Limiter:
    if settings.rate_limit_strategy is RateLimitStrategy.SLIDING:
        return SlidingWindowLimiter(
            max_requests=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )

    if settings.cache_backend is CacheBackendKind.REDIS:
        store = RedisCounterStore(settings.redis_url.get_secret_value())
    else:
        store = InMemoryCounterStore()
    return FixedWindowLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
        store=store,
    )


def build_cache(settings: HostSettings) -> CacheBackend:
    if settings.cache_backend is CacheBackendKind.REDIS:
        return RedisCache(settings.redis_url.get_secret_value())
    return InMemoryCache(max_entries=settings.cache_max_entries)


def build_services(settings: HostSettings | None = None) -> PipelineServices:
    """
    Build the shared pipeline services from settings.

    Args:
        settings: Host settings (defaults to get_settings())
    """
    settings = settings or get_settings()

    authority = StaticTokenAuthority(settings.api_keys) if settings.api_keys else None
    if authority is None:
        logger.warning("[config] No API keys configured; features requiring auth will reject")

    services = PipelineServices(
        limiter=build_limiter(settings),
        authority=authority,
        cache=build_cache(settings),
        identity_policy=IdentityPolicy(settings.rate_limit_identity),
        execution_timeout=settings.execution_timeout_seconds,
        default_fetch_ttl=settings.default_cache_ttl_seconds,
        http_client=httpx.AsyncClient(timeout=DEFAULT_FETCH_TIMEOUT),
    )

    logger.info(
        f"[config] Services built: rate_limit={settings.rate_limit_requests}/"
        f"{settings.rate_limit_window_seconds:g}s ({settings.rate_limit_strategy.value}), "
        f"cache={settings.cache_backend.value}, timeout={settings.execution_timeout_seconds:g}s"
    )
    return services

"""
featurehost Configuration

Environment-driven settings and construction of shared pipeline services.
"""

from .schemas import CacheBackendKind, HostSettings, RateLimitStrategy
from .service import build_cache, build_limiter, build_services, get_settings

__all__ = [
    "HostSettings",
    "RateLimitStrategy",
    "CacheBackendKind",
    "get_settings",
    "build_services",
    "build_limiter",
    "build_cache",
]

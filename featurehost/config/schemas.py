"""
Configuration Schemas for featurehost.

Security:
    Sensitive fields use SecretStr to prevent accidental logging
    of credentials. Access the value with `.get_secret_value()`.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, SecretStr, field_validator


class RateLimitStrategy(str, Enum):
    FIXED = "fixed"
    SLIDING = "sliding"


class CacheBackendKind(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


class HostSettings(BaseModel):
    """
    Host settings model.

    Used for type-safe settings access.

    Security:
        API keys and connection URLs use SecretStr to prevent accidental logging.
        Access secret values with: settings.redis_url.get_secret_value()
    """

    # Service identity
    service_name: str = "featurehost"
    environment: str = "development"
    debug: bool = False
    log_level: str = Field(default="INFO", description="Root log level")

    # Manifests
    manifest_dir: str = Field(default="features", description="Directory scanned for manifests")

    # Rate limiting
    rate_limit_requests: int = Field(default=30, ge=1, description="Requests allowed per window")
    rate_limit_window_seconds: float = Field(default=60.0, gt=0, description="Window length")
    rate_limit_strategy: RateLimitStrategy = RateLimitStrategy.FIXED
    rate_limit_identity: str = Field(default="ip", pattern=r"^(ip|api_key|wallet)$")

    # Execution
    execution_timeout_seconds: float = Field(default=15.0, gt=0, description="Handler time bound")

    # Cache
    cache_backend: CacheBackendKind = CacheBackendKind.MEMORY
    cache_max_entries: int = Field(default=10000, ge=1)
    default_cache_ttl_seconds: float = Field(default=60.0, gt=0)
    redis_url: SecretStr = Field(
        default=SecretStr("redis://localhost:6379/0"),
        description="Redis URL for cache and counters when cache_backend=redis",
    )

    # Auth (SecretStr prevents accidental logging)
    api_keys: tuple[SecretStr, ...] = Field(default=(), description="Accepted API keys")

    class Config:
        env_prefix = "FEATUREHOST_"
        case_sensitive = False

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("api_keys", mode="before")
    @classmethod
    def _split_keys(cls, value: object) -> object:
        # Comma-separated in the environment.
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        return value

"""
Tests for featurehost configuration and credential authorities.
"""
import pytest
from pydantic import SecretStr, ValidationError

from featurehost.auth import AllowAnyCredential, StaticTokenAuthority
from featurehost.cache import InMemoryCache, RedisCache
from featurehost.config import HostSettings, build_services, get_settings
from featurehost.config.schemas import CacheBackendKind, RateLimitStrategy
from featurehost.config.service import build_cache, build_limiter
from featurehost.pipeline import (
    FixedWindowLimiter,
    IdentityPolicy,
    RedisCounterStore,
    SlidingWindowLimiter,
)


@pytest.fixture
def clean_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestHostSettings:
    def test_defaults(self):
        settings = HostSettings()

        assert settings.rate_limit_requests == 30
        assert settings.rate_limit_window_seconds == 60.0
        assert settings.rate_limit_strategy is RateLimitStrategy.FIXED
        assert settings.execution_timeout_seconds == 15.0
        assert settings.cache_backend is CacheBackendKind.MEMORY
        assert settings.api_keys == ()

    def test_api_keys_split_and_hidden(self):
        settings = HostSettings(api_keys="alpha, beta,,")

        assert [k.get_secret_value() for k in settings.api_keys] == ["alpha", "beta"]
        assert "alpha" not in repr(settings)

    def test_log_level_uppercased(self):
        assert HostSettings(log_level="debug").log_level == "DEBUG"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"rate_limit_requests": 0},
            {"rate_limit_window_seconds": 0},
            {"execution_timeout_seconds": -1},
            {"rate_limit_identity": "cookie"},
            {"cache_backend": "memcached"},
        ],
    )
    def test_rejects_bad_values(self, overrides):
        with pytest.raises(ValidationError):
            HostSettings(**overrides)


class TestGetSettings:
    """Tests for get_settings environment loading."""

    def test_reads_environment(self, monkeypatch, clean_settings):
        monkeypatch.setenv("FEATUREHOST_RATE_LIMIT_REQUESTS", "5")
        monkeypatch.setenv("FEATUREHOST_RATE_LIMIT_STRATEGY", "sliding")
        monkeypatch.setenv("FEATUREHOST_API_KEYS", "k1,k2")
        monkeypatch.setenv("FEATUREHOST_DEBUG", "TRUE")
        monkeypatch.setenv("FEATUREHOST_REDIS_URL", "redis://cache:6379/1")

        settings = get_settings()

        assert settings.rate_limit_requests == 5
        assert settings.rate_limit_strategy is RateLimitStrategy.SLIDING
        assert len(settings.api_keys) == 2
        assert settings.debug is True
        assert settings.redis_url.get_secret_value() == "redis://cache:6379/1"

    def test_is_cached(self, clean_settings):
        assert get_settings() is get_settings()


class TestBuilders:
    def test_fixed_limiter(self):
        limiter = build_limiter(HostSettings(rate_limit_requests=7))

        assert isinstance(limiter, FixedWindowLimiter)
        assert limiter.max_requests == 7

    def test_sliding_limiter(self):
        limiter = build_limiter(HostSettings(rate_limit_strategy="sliding"))

        assert isinstance(limiter, SlidingWindowLimiter)

    def test_redis_backend(self):
        settings = HostSettings(cache_backend="redis")

        assert isinstance(build_cache(settings), RedisCache)
        assert isinstance(build_limiter(settings).store, RedisCounterStore)

    def test_memory_cache_capacity(self):
        cache = build_cache(HostSettings(cache_max_entries=5))

        assert isinstance(cache, InMemoryCache)
        assert cache.max_entries == 5

    @pytest.mark.asyncio
    async def test_build_services(self):
        settings = HostSettings(
            api_keys="secret",
            rate_limit_identity="wallet",
            execution_timeout_seconds=3,
        )

        services = build_services(settings)
        try:
            assert services.execution_timeout == 3
            assert services.identity_policy is IdentityPolicy.WALLET
            assert await services.authority.verify("secret")
            assert services.http_client is not None
        finally:
            await services.aclose()

    @pytest.mark.asyncio
    async def test_build_services_without_keys(self, caplog):
        services = build_services(HostSettings())
        try:
            assert services.authority is None
            assert "No API keys" in caplog.text
        finally:
            await services.aclose()


class TestStaticTokenAuthority:
    """Tests for StaticTokenAuthority."""

    @pytest.mark.asyncio
    async def test_verify(self):
        authority = StaticTokenAuthority(["alpha", SecretStr("beta")])

        assert await authority.verify("alpha")
        assert await authority.verify("beta")
        assert not await authority.verify("gamma")
        assert not await authority.verify("alph")

    def test_drops_empty_keys(self):
        assert len(StaticTokenAuthority(["", SecretStr(""), "k"])) == 1

    def test_repr_hides_keys(self):
        assert "alpha" not in repr(StaticTokenAuthority(["alpha"]))

    @pytest.mark.asyncio
    async def test_allow_any(self):
        authority = AllowAnyCredential()

        assert await authority.verify("anything")
        assert not await authority.verify("")

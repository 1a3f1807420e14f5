"""
Cached External Fetches.

Memoizes read-only HTTP calls to external providers through the cache layer.

Guarantees:
    - Hit: the cached payload is returned with zero external calls.
    - Miss: exactly one request is made; the payload is stored only when the
      call succeeded (2xx) and is then returned.
    - Failure: FetchError is raised and nothing is cached.

Concurrent misses on the same key may both fetch. Providers behind this
helper are assumed idempotent and side-effect-free for reads.

Usage:
    payload = await fetch_with_cache(
        cache,
        "https://api.example.com/fees",
        {"params": {"network": "solana"}},
        ttl=30,
    )

    # Or, with a long-lived client
    fetcher = CachedFetcher(cache, default_ttl=30)
    payload = await fetcher.fetch("https://api.example.com/fees", params={"network": "solana"})
    await fetcher.close()
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Mapping
from typing import Any

import httpx

from featurehost.errors import FetchError

from .base import MISS, CacheBackend, NamespacedCache

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 10.0  # seconds


def request_signature(
    method: str,
    url: str,
    params: Mapping[str, Any] | None = None,
    json_body: Any = None,
    headers: Mapping[str, str] | None = None,
) -> str:
    """
    Stable cache key for a request.

    Covers method, URL, query params, JSON body and headers. Header names are
    case-insensitive. The whole key is a sha256 digest, so credentials sent in
    headers never appear in it, but callers with different credentials never
    share an entry.
    """
    material = json.dumps(
        {
            "method": method.upper(),
            "url": url,
            "params": sorted((str(k), str(v)) for k, v in (params or {}).items()),
            "json": json_body,
            "headers": sorted((str(k).lower(), str(v)) for k, v in (headers or {}).items()),
        },
        sort_keys=True,
        default=str,
    )
    return "fetch:" + hashlib.sha256(material.encode("utf-8")).hexdigest()


class CachedFetcher:
    """
    HTTP fetcher that consults a cache before calling out.

    Owns its httpx.AsyncClient unless one is passed in.
    """

    def __init__(
        self,
        cache: CacheBackend | NamespacedCache,
        *,
        client: httpx.AsyncClient | None = None,
        default_ttl: float = 60.0,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
    ):
        self._cache = cache
        self._client = client
        self._owns_client = client is None
        self._default_ttl = default_ttl
        self._timeout = timeout
        self.external_calls = 0

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def fetch(
        self,
        url: str,
        *,
        method: str = "GET",
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        json: Any = None,
        ttl: float | None = None,
    ) -> Any:
        """
        Fetch url, serving from cache when possible.

        Returns:
            Decoded JSON payload, or the response text for non-JSON bodies

        Raises:
            FetchError: Network failure or non-2xx response
        """
        key = request_signature(method, url, params, json, headers)

        cached_value = await self._cache.get(key)
        if cached_value is not MISS:
            logger.debug(f"[fetch] cache hit {method.upper()} {_safe_url(url)}")
            return cached_value

        payload = await self._perform(method, url, params=params, headers=headers, json=json)
        await self._cache.set(key, payload, ttl if ttl is not None else self._default_ttl)
        return payload

    async def _perform(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, Any] | None,
        headers: Mapping[str, str] | None,
        json: Any,
    ) -> Any:
        client = self._get_client()
        self.external_calls += 1
        logger.debug(f"[fetch] {method.upper()} {_safe_url(url)}")

        try:
            response = await client.request(
                method.upper(),
                url,
                params=dict(params) if params else None,
                headers=dict(headers) if headers else None,
                json=json,
            )
        except httpx.HTTPError as e:
            logger.warning(f"[fetch] {method.upper()} {_safe_url(url)} failed: {type(e).__name__}")
            raise FetchError(
                f"Upstream request failed: {type(e).__name__}",
                url=url,
            ) from e

        if not response.is_success:
            logger.warning(
                f"[fetch] {method.upper()} {_safe_url(url)} returned {response.status_code}"
            )
            raise FetchError(
                f"Upstream request failed with status {response.status_code}",
                url=url,
                upstream_status=response.status_code,
            )

        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            try:
                return response.json()
            except ValueError as e:
                raise FetchError("Upstream returned malformed JSON", url=url) from e
        return response.text


async def fetch_with_cache(
    cache: CacheBackend | NamespacedCache,
    url: str,
    options: Mapping[str, Any] | None = None,
    ttl: float = 60.0,
    *,
    client: httpx.AsyncClient | None = None,
) -> Any:
    """
    One-shot cached fetch.

    Args:
        cache: Cache backend (or namespaced view)
        url: Absolute URL
        options: Optional `method`, `params`, `headers`, `json`, `timeout`
        ttl: Seconds the successful payload stays cached
        client: Existing httpx.AsyncClient (a temporary one is used otherwise)
    """
    opts = dict(options or {})
    timeout = opts.pop("timeout", DEFAULT_FETCH_TIMEOUT)
    fetcher = CachedFetcher(cache, client=client, default_ttl=ttl, timeout=timeout)
    try:
        return await fetcher.fetch(url, ttl=ttl, **opts)
    finally:
        await fetcher.close()


def _safe_url(url: str) -> str:
    """URL without its query string, for logs."""
    return url.split("?", 1)[0]

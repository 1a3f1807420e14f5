"""
Feature Pipeline for featurehost.

Turns one inbound request into one ResponseEnvelope for one feature.

Execution Model:
    RECEIVED    parameters extracted (query for GET, JSON body for POST)
    VALIDATING  rate limit, auth, wallet and parameter checks
    AUTHORIZED  capability set fixed to the manifest's grants
    EXECUTING   handler (or its mock on the test route), bounded by a timeout
    FORMATTING  result checked and wrapped in the envelope
    COMPLETED   envelope returned

Any failure moves the invocation to FAILED and still produces an envelope.
Errors raised by feature code never leak past this module: a HandlerError
keeps its message, anything else is logged and reduced to a generic one.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from featurehost.actions import Action, TradeAction, parse_actions
from featurehost.cache import CacheBackend, CachedFetcher, InMemoryCache, NamespacedCache
from featurehost.errors import (
    ExecutionTimeout,
    FeatureError,
    HandlerError,
    PermissionDenied,
)
from featurehost.handlers import Handler, HandlerResult
from featurehost.manifest import HttpMethod, Manifest, Permission

from .context import FeatureRequest, InvocationContext, InvocationState
from .envelope import ResponseEnvelope
from .ratelimit import Limiter
from .validators import (
    AuthValidator,
    CredentialAuthority,
    IdentityPolicy,
    RateLimitValidator,
    RequestValidator,
)

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Feature execution failed"
DEFAULT_EXECUTION_TIMEOUT = 15.0  # seconds


# =============================================================================
# Services
# =============================================================================


@dataclass
class PipelineServices:
    """
    Shared collaborators every pipeline draws on.

    One instance is built at startup (see featurehost.config.build_services)
    and handed to the registry, which passes it to each pipeline it creates.

    Attributes:
        limiter: Rate limiter shared by all features (keys are feature-scoped)
        authority: Credential authority for features with requiresAuth
        cache: Cache backend; each feature sees a namespaced view of it
        identity_policy: Which request attribute identifies a caller
        execution_timeout: Upper bound on one handler call, in seconds
        default_fetch_ttl: TTL for ctx.fetch() when the handler passes none
        http_client: Shared client for external fetches. When None, each
            invocation that fetches opens (and closes) its own client.
    """

    limiter: Limiter | None = None
    authority: CredentialAuthority | None = None
    cache: CacheBackend = field(default_factory=InMemoryCache)
    identity_policy: IdentityPolicy = IdentityPolicy.IP
    execution_timeout: float = DEFAULT_EXECUTION_TIMEOUT
    default_fetch_ttl: float = 60.0
    http_client: httpx.AsyncClient | None = None

    def __post_init__(self) -> None:
        if self.execution_timeout <= 0:
            raise ValueError(
                f"execution_timeout must be positive, got {self.execution_timeout}"
            )

    def request_validator(self) -> RequestValidator:
        rate_limit = (
            RateLimitValidator(self.limiter, self.identity_policy) if self.limiter else None
        )
        return RequestValidator(rate_limit=rate_limit, auth=AuthValidator(self.authority))

    async def aclose(self) -> None:
        """Close the shared HTTP client and the cache backend."""
        if self.http_client is not None and not self.http_client.is_closed:
            await self.http_client.aclose()
        close = getattr(self.cache, "close", None)
        if close is not None:
            await close()


# =============================================================================
# Parameter extraction
# =============================================================================


def extract_params(manifest: Manifest, request: FeatureRequest) -> dict[str, Any]:
    """
    Collect request parameters.

    GET reads the query string. POST reads the JSON object body, falling back
    to query-string values for keys the body does not set. A malformed or
    non-object body contributes nothing.
    """
    params: dict[str, Any] = dict(request.query)
    if manifest.api.method is HttpMethod.GET:
        return params

    body = _decode_body(request.body)
    if body is None:
        return params
    params.update(body)
    return params


def _decode_body(body: bytes | str | Mapping[str, Any] | None) -> dict[str, Any] | None:
    if body is None:
        return None
    if isinstance(body, Mapping):
        return dict(body)
    if isinstance(body, bytes):
        if not body.strip():
            return None
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug("[pipeline] request body is not UTF-8, ignoring")
            return None
    if not body.strip():
        return None
    try:
        decoded = json.loads(body)
    except ValueError:
        logger.debug("[pipeline] malformed JSON body, ignoring")
        return None
    if not isinstance(decoded, dict):
        logger.debug("[pipeline] JSON body is not an object, ignoring")
        return None
    return decoded


# =============================================================================
# Pipeline
# =============================================================================


class FeaturePipeline:
    """
    Request pipeline bound to one registered feature.

    Example:
        pipeline = FeaturePipeline(manifest, GasTracker(), services)
        envelope = await pipeline.handle(
            FeatureRequest(method="GET", path="/gas", query={"network": "solana"}),
        )
        return JSONResponse(envelope.to_dict(), status_code=envelope.status_code)
    """

    def __init__(self, manifest: Manifest, handler: Handler, services: PipelineServices):
        self.manifest = manifest
        self.handler = handler
        self.services = services
        self._validator = services.request_validator()
        self._cache = NamespacedCache(services.cache, manifest.id)

    @property
    def feature_id(self) -> str:
        return self.manifest.id

    @property
    def permissions(self) -> frozenset[Permission]:
        return frozenset(self.manifest.permissions.granted())

    def _new_context(self, request: FeatureRequest, test_mode: bool) -> InvocationContext:
        return InvocationContext(
            feature_id=self.manifest.id,
            version=self.manifest.version,
            request=request,
            test_mode=test_mode,
            cache=self._cache,
            fetcher=CachedFetcher(
                self._cache,
                client=self.services.http_client,
                default_ttl=self.services.default_fetch_ttl,
            ),
        )

    async def handle(
        self,
        request: FeatureRequest,
        *,
        test_mode: bool = False,
    ) -> ResponseEnvelope:
        """
        Run the request through every stage and return the envelope.

        Never raises for request-level failures; the envelope carries the
        status code instead.
        """
        ctx = self._new_context(request, test_mode)
        try:
            return await self._run(ctx, request)
        finally:
            if ctx.fetcher is not None:
                await ctx.fetcher.close()

    async def _run(self, ctx: InvocationContext, request: FeatureRequest) -> ResponseEnvelope:
        logger.debug(
            f"[pipeline] {self.feature_id} received: "
            f"execution_id={str(ctx.execution_id)[:8]}..., test_mode={ctx.test_mode}"
        )

        try:
            ctx.params = extract_params(self.manifest, request)

            ctx.advance(InvocationState.VALIDATING)
            result = await self._validator.validate(request, self.manifest, ctx.params)
            if not result.is_valid:
                logger.warning(
                    f"[pipeline] {self.feature_id} rejected: "
                    f"{result.error.code} ({result.status_code})"
                )
                return self._failure(ctx, result.error)

            ctx.advance(InvocationState.AUTHORIZED)
            ctx.grant(self.permissions)

            ctx.advance(InvocationState.EXECUTING)
            handler_result = await self._execute(ctx)
            actions = self._check_result(handler_result)

            ctx.advance(InvocationState.FORMATTING)
            envelope = self._format(ctx, handler_result, actions)

            ctx.advance(InvocationState.COMPLETED)
        except FeatureError as e:
            if not isinstance(e, HandlerError) or e.status_code != 500:
                logger.warning(f"[pipeline] {self.feature_id} failed: {e.code}: {e.message}")
            else:
                logger.error(f"[pipeline] {self.feature_id} handler error: {e.message}")
            return self._failure(ctx, e)
        except Exception as e:
            logger.error(
                f"[pipeline] {self.feature_id} unexpected error: {type(e).__name__}: {e}",
                exc_info=True,
            )
            return self._failure(ctx, HandlerError(GENERIC_FAILURE))

        logger.info(
            f"[pipeline] {self.feature_id} completed: "
            f"execution_id={str(ctx.execution_id)[:8]}..., duration={ctx.elapsed_ms:.1f}ms"
        )
        return envelope

    async def _execute(self, ctx: InvocationContext) -> HandlerResult:
        use_mock = ctx.test_mode and self.manifest.testing.mock_data
        call = self.handler.mock if use_mock else self.handler.execute
        timeout = self.services.execution_timeout

        try:
            raw = await asyncio.wait_for(call(dict(ctx.params), ctx), timeout=timeout)
        except TimeoutError as e:
            raise ExecutionTimeout(timeout) from e
        except FeatureError:
            raise
        except Exception as e:
            logger.error(
                f"[pipeline] {self.feature_id} handler '{self.handler.name}' raised "
                f"{type(e).__name__}: {e}",
                exc_info=True,
            )
            raise HandlerError(GENERIC_FAILURE) from e

        return HandlerResult.from_raw(raw)

    def _check_result(self, result: HandlerResult) -> list[Action]:
        """Parse actions and enforce the trade ceiling on the result."""
        try:
            actions = parse_actions(result.actions)
        except ValueError as e:
            raise HandlerError("Feature returned a malformed action") from e

        wants_trade = result.intent == "trade" or any(
            isinstance(action, TradeAction) for action in actions
        )
        if wants_trade and not self.manifest.permissions.allows(Permission.EXECUTE_TRADE):
            raise PermissionDenied(Permission.EXECUTE_TRADE.value, self.feature_id)
        return actions

    def _format(
        self,
        ctx: InvocationContext,
        result: HandlerResult,
        actions: list[Action],
    ) -> ResponseEnvelope:
        try:
            json.dumps(result.data)
            json.dumps([action.payload for action in actions])
        except (TypeError, ValueError) as e:
            logger.error(
                f"[pipeline] {self.feature_id} returned a non-serializable result: {e}"
            )
            raise HandlerError("Feature returned a non-serializable result") from e

        return ResponseEnvelope.ok(
            result.data,
            feature_id=self.manifest.id,
            version=self.manifest.version,
            message=result.message,
            intent=result.intent,
            actions=tuple(actions),
            metadata=self._metadata(ctx),
        )

    def _failure(self, ctx: InvocationContext, error: FeatureError) -> ResponseEnvelope:
        if not ctx.state.is_terminal:
            ctx.fail(error.code)
        logger.debug(f"[pipeline] audit: {ctx.to_audit_dict()}")
        return ResponseEnvelope.fail(
            error.public_message,
            error.status_code,
            feature_id=self.manifest.id,
            version=self.manifest.version,
            metadata=self._metadata(ctx),
            headers=error.headers,
        )

    def _metadata(self, ctx: InvocationContext) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "executionId": str(ctx.execution_id),
            "durationMs": round(ctx.elapsed_ms, 3),
            "responseType": self.manifest.response.type.value,
            "format": self.manifest.response.format.value,
        }
        if ctx.test_mode:
            metadata["testMode"] = True
        return metadata

    def __repr__(self) -> str:
        return f"FeaturePipeline(feature='{self.feature_id}', handler={self.handler!r})"

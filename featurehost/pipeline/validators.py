"""
Request Validators.

Independent checks over `(request, manifest)`, each producing a fresh
ValidationResult. The pipeline runs them concurrently and reports the first
failure in a fixed priority order, so the error a caller sees is the same no
matter how the checks interleave:

    1. rate limit   (429)
    2. auth         (401)
    3. wallet       (401)
    4. parameters   (400)

The rate-limit check is the only one with a side effect (it counts the
request), and it counts even when a later check fails.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from featurehost.errors import (
    FeatureError,
    InvalidParameter,
    MissingParameter,
    RateLimited,
    Unauthorized,
    WalletRequired,
)
from featurehost.manifest import Manifest, ParameterType

from .context import FeatureRequest
from .ratelimit import Limiter

logger = logging.getLogger(__name__)

WALLET_FIELDS = ("userPublicKey", "walletAddress", "publicKey")
_BASE58_KEY = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


# =============================================================================
# Result
# =============================================================================


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Tagged outcome: Valid (error is None) or Invalid(reason, status code)."""

    error: FeatureError | None = None

    @classmethod
    def valid(cls) -> ValidationResult:
        return cls()

    @classmethod
    def invalid(cls, error: FeatureError) -> ValidationResult:
        return cls(error=error)

    @property
    def is_valid(self) -> bool:
        return self.error is None

    @property
    def reason(self) -> str | None:
        return self.error.public_message if self.error else None

    @property
    def status_code(self) -> int:
        return self.error.status_code if self.error else 200


# =============================================================================
# Identity
# =============================================================================


class IdentityPolicy(str, Enum):
    """Which request attribute identifies a caller for rate limiting."""

    IP = "ip"
    API_KEY = "api_key"
    WALLET = "wallet"


def find_wallet(params: Mapping[str, Any]) -> str | None:
    """Return the first recognizable public key among the wallet fields."""
    for name in WALLET_FIELDS:
        value = params.get(name)
        if isinstance(value, str) and _BASE58_KEY.match(value.strip()):
            return value.strip()
    return None


def credential_digest(credential: str) -> str:
    """Short sha256 digest standing in for a credential in keys and logs."""
    return hashlib.sha256(credential.encode("utf-8")).hexdigest()[:16]


def identity_key(
    request: FeatureRequest,
    params: Mapping[str, Any],
    policy: IdentityPolicy,
) -> str:
    """
    Caller identity for rate limiting.

    Falls back to the client IP when the selected attribute is absent, so an
    unauthenticated caller cannot dodge the limit by omitting it.
    """
    if policy is IdentityPolicy.API_KEY:
        credential = request.credential()
        if credential:
            return f"key:{credential_digest(credential)}"
    elif policy is IdentityPolicy.WALLET:
        wallet = find_wallet(params)
        if wallet:
            return f"wallet:{wallet}"
    return f"ip:{request.client_ip or 'unknown'}"


# =============================================================================
# Validators
# =============================================================================


class CredentialAuthority(Protocol):
    """External authority that decides whether a credential is valid."""

    async def verify(self, credential: str) -> bool: ...


class RateLimitValidator:
    """Counts the request against the caller's window for this feature."""

    def __init__(self, limiter: Limiter, policy: IdentityPolicy = IdentityPolicy.IP):
        self._limiter = limiter
        self._policy = policy

    @property
    def limiter(self) -> Limiter:
        return self._limiter

    async def __call__(
        self,
        request: FeatureRequest,
        manifest: Manifest,
        params: Mapping[str, Any],
    ) -> ValidationResult:
        key = f"{manifest.id}:{identity_key(request, params, self._policy)}"
        decision = await self._limiter.acquire(key)
        if decision.allowed:
            return ValidationResult.valid()
        return ValidationResult.invalid(
            RateLimited(
                key=key,
                limit=self._limiter.max_requests,
                window=self._limiter.window_seconds,
                retry_after=decision.retry_after,
            )
        )


class AuthValidator:
    """Requires a credential accepted by the authority when the manifest asks for auth."""

    def __init__(self, authority: CredentialAuthority | None):
        self._authority = authority

    async def __call__(
        self,
        request: FeatureRequest,
        manifest: Manifest,
        params: Mapping[str, Any],
    ) -> ValidationResult:
        if not manifest.api.requires_auth:
            return ValidationResult.valid()

        credential = request.credential()
        if credential is None:
            return ValidationResult.invalid(Unauthorized())

        if self._authority is None or not await self._authority.verify(credential):
            return ValidationResult.invalid(Unauthorized("Invalid credentials"))

        return ValidationResult.valid()


def check_wallet(manifest: Manifest, params: Mapping[str, Any]) -> ValidationResult:
    """Requires a recognizable public key when the manifest asks for a wallet."""
    if manifest.api.requires_wallet and find_wallet(params) is None:
        return ValidationResult.invalid(WalletRequired())
    return ValidationResult.valid()


def check_parameters(manifest: Manifest, params: Mapping[str, Any]) -> ValidationResult:
    """
    Every required declared parameter must be present and non-blank, and
    present declared parameters must fit their declared type.

    Parameters the manifest does not declare are ignored.
    """
    for spec in manifest.api.parameters:
        value = params.get(spec.name)
        if value is None or (isinstance(value, str) and not value.strip()):
            if spec.required:
                return ValidationResult.invalid(MissingParameter(spec.name))
            continue
        if not _fits(value, spec.type):
            return ValidationResult.invalid(InvalidParameter(spec.name, spec.type.value))
    return ValidationResult.valid()


def _fits(value: Any, expected: ParameterType) -> bool:
    # Query-string values arrive as text, so numeric/boolean text is accepted.
    if expected is ParameterType.STRING:
        return isinstance(value, str | int | float) and not isinstance(value, bool)
    if expected is ParameterType.BOOLEAN:
        return isinstance(value, bool) or (
            isinstance(value, str) and value.lower() in ("true", "false", "1", "0")
        )
    if isinstance(value, bool):
        return False
    if expected is ParameterType.INTEGER:
        if isinstance(value, int):
            return True
        return isinstance(value, str) and re.fullmatch(r"[+-]?\d+", value.strip()) is not None
    if isinstance(value, int | float):
        return True
    if isinstance(value, str):
        try:
            float(value)
        except ValueError:
            return False
        return True
    return False


# =============================================================================
# Composition
# =============================================================================


class RequestValidator:
    """
    Runs every check concurrently and picks the first failure by priority.

    Example:
        validator = RequestValidator(
            rate_limit=RateLimitValidator(FixedWindowLimiter(30, 60.0)),
            auth=AuthValidator(StaticTokenAuthority(["secret"])),
        )
        result = await validator.validate(request, manifest, params)
    """

    def __init__(
        self,
        rate_limit: RateLimitValidator | None = None,
        auth: AuthValidator | None = None,
    ):
        self._rate_limit = rate_limit
        self._auth = auth or AuthValidator(None)

    async def validate(
        self,
        request: FeatureRequest,
        manifest: Manifest,
        params: Mapping[str, Any],
    ) -> ValidationResult:
        results = await run_validators(
            [
                self._rate_limit(request, manifest, params) if self._rate_limit else None,
                self._auth(request, manifest, params),
                check_wallet(manifest, params),
                check_parameters(manifest, params),
            ]
        )
        return first_failure(results)


async def run_validators(
    checks: Sequence[ValidationResult | Any | None],
) -> list[ValidationResult]:
    """
    Await every pending check concurrently; keep the input order.

    Items may be ValidationResults, awaitables producing one, or None (skipped).
    """
    pending = [check for check in checks if check is not None]
    awaitables = [
        check if not isinstance(check, ValidationResult) else _ready(check) for check in pending
    ]
    return list(await asyncio.gather(*awaitables))


async def _ready(result: ValidationResult) -> ValidationResult:
    return result


def first_failure(results: Sequence[ValidationResult]) -> ValidationResult:
    for result in results:
        if not result.is_valid:
            logger.debug(f"[validators] rejected: {result.error.code} ({result.status_code})")
            return result
    return ValidationResult.valid()

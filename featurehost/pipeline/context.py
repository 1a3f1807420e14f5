"""
Invocation Context for featurehost.

The request as the pipeline sees it, and the per-invocation state handed to
the feature handler: capabilities fixed by the manifest, a feature-scoped
cache, and a cached fetcher.

State Machine:
    RECEIVED -> VALIDATING -> AUTHORIZED -> EXECUTING -> FORMATTING -> COMPLETED
    FAILED is reachable from any non-terminal state.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar
from uuid import UUID, uuid4

from featurehost.cache.base import cached as _cached
from featurehost.errors import HandlerError, PermissionDenied
from featurehost.manifest import Permission

if TYPE_CHECKING:
    from featurehost.cache import CachedFetcher, NamespacedCache

T = TypeVar("T")


def _utc_now() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Request
# =============================================================================


@dataclass(frozen=True)
class FeatureRequest:
    """
    Transport-neutral inbound request.

    Header names are matched case-insensitively.
    """

    method: str
    path: str
    query: Mapping[str, str] = field(default_factory=dict)
    body: bytes | str | Mapping[str, Any] | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    client_ip: str = ""

    def header(self, name: str) -> str | None:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    def credential(self) -> str | None:
        """Bearer token from Authorization, or the X-API-Key header."""
        authorization = self.header("authorization")
        if authorization:
            scheme, _, token = authorization.partition(" ")
            if scheme.lower() == "bearer" and token.strip():
                return token.strip()
        api_key = self.header("x-api-key")
        return api_key.strip() if api_key and api_key.strip() else None


# =============================================================================
# State
# =============================================================================


class InvocationState(str, Enum):
    RECEIVED = "received"
    VALIDATING = "validating"
    AUTHORIZED = "authorized"
    EXECUTING = "executing"
    FORMATTING = "formatting"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (InvocationState.COMPLETED, InvocationState.FAILED)


_NEXT_STATE = {
    InvocationState.RECEIVED: InvocationState.VALIDATING,
    InvocationState.VALIDATING: InvocationState.AUTHORIZED,
    InvocationState.AUTHORIZED: InvocationState.EXECUTING,
    InvocationState.EXECUTING: InvocationState.FORMATTING,
    InvocationState.FORMATTING: InvocationState.COMPLETED,
}


# =============================================================================
# Context
# =============================================================================


@dataclass
class InvocationContext:
    """
    Request-scoped context passed to the handler.

    Provides:
    - Unique execution ID for tracing
    - The capability set granted by the manifest (and nothing more)
    - A cache namespaced by feature id
    - Cached external fetches
    - An audit trail of state transitions
    """

    feature_id: str
    version: str

    # Execution identification
    execution_id: UUID = field(default_factory=uuid4)
    started_at: datetime = field(default_factory=_utc_now)

    # Request
    request: FeatureRequest | None = None
    params: dict[str, Any] = field(default_factory=dict)
    test_mode: bool = False

    # Services (injected by the pipeline)
    cache: NamespacedCache | None = None
    fetcher: CachedFetcher | None = None

    # Audit trail
    state: InvocationState = InvocationState.RECEIVED
    transitions: list[dict[str, Any]] = field(default_factory=list)
    failure_reason: str | None = None

    # Capabilities, set once by the pipeline on authorization
    _permissions: frozenset[Permission] = field(default=frozenset(), init=False, repr=False)

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since the invocation started."""
        delta = datetime.now(UTC) - self.started_at
        return delta.total_seconds() * 1000

    # -------------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------------

    def advance(self, state: InvocationState) -> None:
        """
        Move to the next state.

        Raises:
            RuntimeError: If the transition is not the next step
        """
        if _NEXT_STATE.get(self.state) is not state:
            raise RuntimeError(f"Illegal transition {self.state.value} -> {state.value}")
        self._record(state)

    def fail(self, reason: str) -> None:
        if self.state.is_terminal:
            raise RuntimeError(f"Cannot fail from terminal state {self.state.value}")
        self.failure_reason = reason
        self._record(InvocationState.FAILED)

    def _record(self, state: InvocationState) -> None:
        self.transitions.append(
            {
                "from": self.state.value,
                "to": state.value,
                "elapsed_ms": self.elapsed_ms,
            }
        )
        self.state = state

    # -------------------------------------------------------------------------
    # Capabilities
    # -------------------------------------------------------------------------

    @property
    def permissions(self) -> frozenset[Permission]:
        """Capabilities granted by the manifest. Read-only for feature code."""
        return self._permissions

    def grant(self, permissions: frozenset[Permission]) -> None:
        """
        Install the manifest's grants.

        Raises:
            RuntimeError: Outside the AUTHORIZED state, or if already granted
        """
        if self.state is not InvocationState.AUTHORIZED or self._permissions:
            raise RuntimeError(f"Cannot grant permissions in state {self.state.value}")
        self._permissions = frozenset(permissions)

    def can(self, permission: Permission) -> bool:
        return permission in self.permissions

    def require(self, permission: Permission) -> None:
        """
        Assert that the manifest grants a capability.

        Raises:
            PermissionDenied: If it does not
        """
        if permission not in self.permissions:
            raise PermissionDenied(permission.value, self.feature_id)

    # -------------------------------------------------------------------------
    # Cache / fetch
    # -------------------------------------------------------------------------

    async def fetch(self, url: str, **options: Any) -> Any:
        """Cached external fetch (see CachedFetcher.fetch)."""
        if self.fetcher is None:
            raise HandlerError("External fetches are not available")
        return await self.fetcher.fetch(url, **options)

    async def cached(self, key: str, ttl_seconds: float, loader: Callable[[], Awaitable[T]]) -> T:
        """Memoize an async loader in the feature's cache namespace."""
        if self.cache is None:
            return await loader()
        return await _cached(self.cache, key, ttl_seconds, loader)

    def to_audit_dict(self) -> dict[str, Any]:
        """Generate audit record for logging."""
        return {
            "execution_id": str(self.execution_id),
            "feature_id": self.feature_id,
            "version": self.version,
            "started_at": self.started_at.isoformat(),
            "duration_ms": self.elapsed_ms,
            "state": self.state.value,
            "failure_reason": self.failure_reason,
            "test_mode": self.test_mode,
            "transitions": list(self.transitions),
        }

"""
Handler Contract.

The interface every feature author implements. The pipeline is the sole
caller of a handler, and a handler never builds the response envelope: it
returns data (optionally with a message, an intent, and UI actions) and the
pipeline does the rest.

Contract:
    execute(params, ctx) -> HandlerResult | {data, message?, intent?, actions?}
    mock(params, ctx)    -> same shape, used on the manifest's test route

Handlers must not trust themselves with capabilities: anything beyond
computing a result goes through `ctx.require(Permission.X)`, which only
succeeds when the manifest grants it.

Usage:
    class GasTracker(Handler):
        async def execute(self, params, ctx):
            fees = await ctx.fetch(FEES_URL, params={"network": params["network"]}, ttl=30)
            return HandlerResult(data=fees, message="Current network fees")

    # Or a plain function
    async def gas_tracker(params, ctx):
        return {"data": {...}}

    handler = FunctionHandler(gas_tracker)
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from featurehost.errors import HandlerError, RegistrationError

if TYPE_CHECKING:
    from featurehost.pipeline.context import InvocationContext

logger = logging.getLogger(__name__)

_RESULT_KEYS = {"data", "message", "intent", "actions"}


@dataclass
class HandlerResult:
    """
    What a handler hands back to the pipeline.

    Attributes:
        data: JSON-serializable payload
        message: Optional human-readable summary for chat rendering
        intent: Optional intent tag (e.g. "trade", "info")
        actions: Optional list of {type, payload} items for the UI layer
    """

    data: Any = None
    message: str | None = None
    intent: str | None = None
    actions: list[Any] = field(default_factory=list)

    @classmethod
    def from_raw(cls, raw: Any) -> HandlerResult:
        """
        Normalize whatever a handler returned.

        A mapping made only of result keys is read field by field; anything
        else is treated as the data payload itself.
        """
        if isinstance(raw, HandlerResult):
            return raw
        if isinstance(raw, Mapping) and raw and set(raw) <= _RESULT_KEYS:
            actions = raw.get("actions") or []
            if not isinstance(actions, list | tuple):
                raise HandlerError("Feature returned a malformed actions list")
            message = raw.get("message")
            intent = raw.get("intent")
            return cls(
                data=raw.get("data"),
                message=str(message) if message is not None else None,
                intent=str(intent) if intent is not None else None,
                actions=list(actions),
            )
        if isinstance(raw, Mapping) and {"actions", "intent"} & set(raw):
            extra = sorted(str(key) for key in set(raw) - _RESULT_KEYS)
            logger.warning(
                f"[handlers] result has unknown keys {extra}; "
                f"treating the whole mapping as data, actions and intent are ignored"
            )
        return cls(data=raw)


class Handler(ABC):
    """
    Base class for feature handlers.

    Subclasses must implement:
    - execute(): Compute the feature result from request parameters

    Subclasses may override:
    - mock(): Canned result served on the manifest's test route
    """

    @property
    def name(self) -> str:
        """Name used in logs."""
        return self.__class__.__name__

    @abstractmethod
    async def execute(
        self,
        params: Mapping[str, Any],
        ctx: InvocationContext,
    ) -> HandlerResult | Mapping[str, Any] | Any:
        """
        Compute the feature result.

        Args:
            params: Extracted request parameters
            ctx: Invocation context (capabilities, cache, fetch)

        Raises:
            HandlerError: With a message that is safe to show to the caller
            PermissionDenied: Via ctx.require() for ungranted capabilities
        """
        ...

    async def mock(
        self,
        params: Mapping[str, Any],
        ctx: InvocationContext,
    ) -> HandlerResult | Mapping[str, Any] | Any:
        """Return mock data. Default: not available."""
        raise HandlerError("Mock data is not available for this feature")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}')"


class FunctionHandler(Handler):
    """
    Adapts a plain function into a Handler.

    The function may be sync or async and may accept `(params)` or
    `(params, ctx)`. Sync functions run in a worker thread so they never
    block the event loop.
    """

    def __init__(
        self,
        func: Callable[..., Any],
        *,
        mock: Callable[..., Any] | None = None,
        name: str | None = None,
    ):
        self._func = func
        self._mock = mock
        self._name = name or getattr(func, "__name__", "handler")

    @property
    def name(self) -> str:
        return self._name

    async def execute(self, params: Mapping[str, Any], ctx: InvocationContext) -> Any:
        return await _call(self._func, params, ctx)

    async def mock(self, params: Mapping[str, Any], ctx: InvocationContext) -> Any:
        if self._mock is None:
            return await super().mock(params, ctx)
        return await _call(self._mock, params, ctx)


async def _call(func: Callable[..., Any], params: Mapping[str, Any], ctx: InvocationContext) -> Any:
    args = (params, ctx) if _accepts_context(func) else (params,)
    if inspect.iscoroutinefunction(func):
        return await func(*args)
    result = await asyncio.to_thread(func, *args)
    if inspect.isawaitable(result):
        return await result
    return result


def _accepts_context(func: Callable[..., Any]) -> bool:
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        return False
    positional = [
        p
        for p in signature.parameters.values()
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
    ]
    has_varargs = any(p.kind is p.VAR_POSITIONAL for p in signature.parameters.values())
    return has_varargs or len(positional) >= 2


# =============================================================================
# Resolution
# =============================================================================


def as_handler(obj: Any, *, reference: str = "") -> Handler:
    """
    Coerce a Handler instance, Handler subclass, or callable into a Handler.

    Raises:
        RegistrationError: If obj cannot act as a handler
    """
    if isinstance(obj, Handler):
        return obj
    if inspect.isclass(obj) and issubclass(obj, Handler):
        try:
            return obj()
        except TypeError as e:
            raise RegistrationError(
                f"Handler class {obj.__name__} must be constructible without arguments: {e}"
            ) from e
    if callable(obj):
        return FunctionHandler(obj)
    label = reference or repr(obj)
    raise RegistrationError(f"Handler {label} is not callable")


def resolve_handler(reference: str) -> Handler:
    """
    Import a handler from a 'package.module:attribute' reference.

    The attribute may be dotted (e.g. 'features.gas:GasTracker.instance').

    Raises:
        RegistrationError: If the module or attribute cannot be loaded
    """
    module_path, _, attr_path = reference.partition(":")
    if not module_path or not attr_path:
        raise RegistrationError(f"Invalid handler reference '{reference}'")

    try:
        obj: Any = importlib.import_module(module_path)
    except ImportError as e:
        raise RegistrationError(f"Cannot import handler module '{module_path}': {e}") from e

    for part in attr_path.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise RegistrationError(
                f"Handler reference '{reference}' not found: missing attribute '{part}'"
            ) from e

    handler = as_handler(obj, reference=reference)
    logger.debug(f"[handlers] Resolved {reference} -> {handler!r}")
    return handler

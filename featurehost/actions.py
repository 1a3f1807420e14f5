"""
Actions.

Handlers may attach a list of `{type, payload}` actions to their result for
the UI layer to act on (open a trade confirmation, raise an alert, ...).

The core never interprets actions beyond the permission check on trades: it
parses them into a closed set of variants and passes them through
unmodified. Unknown types are logged and kept as UnknownAction, never
dropped.

Consumers (the UI-side collaborator) resolve variants with ActionDispatcher:

    dispatcher = ActionDispatcher(
        on_trade=open_trade_modal,
        on_alert=show_toast,
    )
    await dispatcher.dispatch_all(envelope.actions)
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


# =============================================================================
# Variants
# =============================================================================


@dataclass(frozen=True, slots=True)
class Action:
    """Base action: a type tag and an opaque payload."""

    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def type(self) -> str:
        raise NotImplementedError

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "payload": self.payload}


@dataclass(frozen=True, slots=True)
class TradeAction(Action):
    """Asks the UI to stage a trade. Requires the executeTrade grant."""

    @property
    def type(self) -> str:
        return "trade"


@dataclass(frozen=True, slots=True)
class AlertAction(Action):
    """Asks the UI to surface an alert."""

    @property
    def type(self) -> str:
        return "alert"


@dataclass(frozen=True, slots=True)
class UnknownAction(Action):
    """Any other tag, carried through verbatim."""

    raw_type: str = ""

    @property
    def type(self) -> str:
        return self.raw_type


_KNOWN: dict[str, type[Action]] = {
    "trade": TradeAction,
    "alert": AlertAction,
}


def parse_action(raw: Action | Mapping[str, Any]) -> Action:
    """
    Parse one `{type, payload}` item.

    Raises:
        ValueError: If raw is not a mapping with a string `type`
    """
    if isinstance(raw, Action):
        return raw
    if not isinstance(raw, Mapping) or not isinstance(raw.get("type"), str):
        raise ValueError("action must be a mapping with a string 'type'")

    action_type = raw["type"]
    payload = raw.get("payload") or {}
    if not isinstance(payload, Mapping):
        payload = {"value": payload}

    cls = _KNOWN.get(action_type)
    if cls is None:
        logger.warning(f"[actions] Unknown action type '{action_type}', passing through")
        return UnknownAction(payload=dict(payload), raw_type=action_type)
    return cls(payload=dict(payload))


def parse_actions(raw_actions: Iterable[Action | Mapping[str, Any]]) -> list[Action]:
    return [parse_action(item) for item in raw_actions]


# =============================================================================
# Dispatch (consumer side)
# =============================================================================

ActionCallback = Callable[[Action], Awaitable[Any] | Any]


class ActionDispatcher:
    """
    Routes actions to per-variant callbacks.

    Unknown actions go to `on_unknown` when given; otherwise they are logged
    and skipped by the consumer (the list itself is never altered).
    """

    def __init__(
        self,
        *,
        on_trade: ActionCallback | None = None,
        on_alert: ActionCallback | None = None,
        on_unknown: ActionCallback | None = None,
    ):
        self._on_trade = on_trade
        self._on_alert = on_alert
        self._on_unknown = on_unknown

    async def dispatch(self, action: Action | Mapping[str, Any]) -> Any:
        parsed = parse_action(action)

        if isinstance(parsed, TradeAction):
            callback = self._on_trade
        elif isinstance(parsed, AlertAction):
            callback = self._on_alert
        else:
            callback = self._on_unknown

        if callback is None:
            logger.warning(f"[actions] No consumer for action type '{parsed.type}'")
            return None

        result = callback(parsed)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def dispatch_all(self, actions: Iterable[Action | Mapping[str, Any]]) -> list[Any]:
        return [await self.dispatch(action) for action in actions]

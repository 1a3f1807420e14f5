"""
Response Envelope.

The one response shape every feature produces, whoever wrote it:

    {
        "success": true,
        "data": {...},                  # or "error": "..." when success is false
        "featureId": "gas-tracker",
        "version": "1.0.0",
        "message": "...",               # optional, from the handler
        "intent": "...",                # optional, from the handler
        "actions": [{"type", "payload"}],  # optional, from the handler
        "metadata": {"timestamp": "...", "executionId": "...", ...}
    }

The pipeline is the sole writer. The HTTP status and any extra
headers (such as Retry-After) travel alongside in `status_code` and
`headers`; neither is part of the serialized body.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from featurehost.actions import Action


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True, slots=True)
class ResponseEnvelope:
    """Standard response wrapper for feature invocations."""

    success: bool
    feature_id: str | None
    version: str | None
    data: Any = None
    error: str | None = None
    message: str | None = None
    intent: str | None = None
    actions: tuple[Action, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)
    status_code: int = 200
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def ok(
        cls,
        data: Any,
        *,
        feature_id: str,
        version: str,
        message: str | None = None,
        intent: str | None = None,
        actions: tuple[Action, ...] = (),
        metadata: dict[str, Any] | None = None,
    ) -> ResponseEnvelope:
        """Create a successful envelope."""
        return cls(
            success=True,
            feature_id=feature_id,
            version=version,
            data=data,
            message=message,
            intent=intent,
            actions=tuple(actions),
            metadata={"timestamp": _utc_now_iso(), **(metadata or {})},
            status_code=200,
        )

    @classmethod
    def fail(
        cls,
        error: str,
        status_code: int,
        *,
        feature_id: str | None = None,
        version: str | None = None,
        metadata: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> ResponseEnvelope:
        """Create a failed envelope."""
        return cls(
            success=False,
            feature_id=feature_id,
            version=version,
            error=error,
            metadata={"timestamp": _utc_now_iso(), **(metadata or {})},
            status_code=status_code,
            headers=dict(headers or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire shape."""
        body: dict[str, Any] = {"success": self.success}
        if self.success:
            body["data"] = self.data
        else:
            body["error"] = self.error
        body["featureId"] = self.feature_id
        body["version"] = self.version
        if self.message is not None:
            body["message"] = self.message
        if self.intent is not None:
            body["intent"] = self.intent
        if self.actions:
            body["actions"] = [a.to_dict() for a in self.actions]
        body["metadata"] = self.metadata
        return body

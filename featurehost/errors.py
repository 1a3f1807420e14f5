"""
Error taxonomy for featurehost.

Every failure a caller can observe maps to one of these exceptions. Each
carries an HTTP-equivalent status code and a stable snake_case code, so the
pipeline can turn any of them into the same failure envelope.

Registration-time:
    SchemaError, EnumError, RegistrationError

Request-time (caller can retry correctly):
    RateLimited, Unauthorized, WalletRequired, MissingParameter,
    InvalidParameter, PermissionDenied, FeatureNotFound

Execution-time:
    HandlerError, ExecutionTimeout, FetchError
"""

from __future__ import annotations

import math
from typing import Any


# =============================================================================
# Base
# =============================================================================


class FeatureError(Exception):
    """Base exception for all featurehost errors."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code

    @property
    def public_message(self) -> str:
        """Message that is safe to place in a response envelope."""
        return self.message

    @property
    def headers(self) -> dict[str, str]:
        """Extra HTTP headers for the failure response."""
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.public_message,
            "status_code": self.status_code,
        }


# =============================================================================
# Manifest / Registration
# =============================================================================


class SchemaError(FeatureError):
    """Raised when a manifest is missing a field or a field has the wrong shape."""

    status_code = 400
    code = "schema_error"

    def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.errors = errors or []


class EnumError(SchemaError):
    """Raised when a manifest value is outside its closed set."""

    code = "enum_error"


class RegistrationError(FeatureError):
    """Raised when a manifest cannot be registered. The registry is left unchanged."""

    status_code = 400
    code = "registration_error"

    def __init__(self, message: str, *, feature_id: str | None = None):
        super().__init__(message)
        self.feature_id = feature_id


# =============================================================================
# Request-time validation
# =============================================================================


class RateLimited(FeatureError):
    """Raised when the caller exceeded the request threshold for the window."""

    status_code = 429
    code = "rate_limited"

    def __init__(
        self,
        key: str,
        limit: int,
        window: float,
        retry_after: float | None = None,
    ):
        self.key = key
        self.limit = limit
        self.window = window
        self.retry_after = retry_after
        super().__init__("Rate limit exceeded. Please try again later.")

    @property
    def headers(self) -> dict[str, str]:
        if self.retry_after is None:
            return {}
        return {"Retry-After": str(max(1, math.ceil(self.retry_after)))}


class Unauthorized(FeatureError):
    """Raised when a feature requires auth and no valid credential is present."""

    status_code = 401
    code = "unauthorized"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class WalletRequired(FeatureError):
    """Raised when a feature requires a wallet and none is connected."""

    status_code = 401
    code = "wallet_required"

    def __init__(self, message: str = "Wallet connection required"):
        super().__init__(message)


class MissingParameter(FeatureError):
    """Raised when a declared required parameter is absent."""

    status_code = 400
    code = "missing_parameter"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Missing required parameter: {name}")


class InvalidParameter(FeatureError):
    """Raised when a declared parameter does not fit its declared type."""

    status_code = 400
    code = "invalid_parameter"

    def __init__(self, name: str, expected: str):
        self.name = name
        self.expected = expected
        super().__init__(f"Invalid parameter '{name}': expected {expected}")


class PermissionDenied(FeatureError):
    """Raised when feature code exercises a capability its manifest does not grant."""

    status_code = 403
    code = "permission_denied"

    def __init__(self, permission: str, feature_id: str = ""):
        self.permission = permission
        self.feature_id = feature_id
        super().__init__(f"Permission denied: feature is not granted '{permission}'")


class FeatureNotFound(FeatureError):
    """Raised when no registered feature serves the requested route."""

    status_code = 404
    code = "not_found"

    def __init__(self, method: str, path: str):
        self.method = method
        self.path = path
        super().__init__(f"No feature registered for {method} {path}")


# =============================================================================
# Execution
# =============================================================================


class HandlerError(FeatureError):
    """
    Failure raised by feature code.

    Feature authors raise this with a message that is safe to show to the
    caller. Any other exception escaping a handler is reduced to a generic
    message by the pipeline.
    """

    status_code = 500
    code = "handler_error"


class ExecutionTimeout(FeatureError):
    """Raised when a handler exceeds the configured execution bound."""

    status_code = 504
    code = "timeout"

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Feature execution timed out after {timeout:g}s")


class FetchError(HandlerError):
    """Raised to feature code when an external fetch fails."""

    code = "fetch_error"

    def __init__(self, message: str, *, url: str = "", upstream_status: int | None = None):
        super().__init__(message)
        self.url = url
        self.upstream_status = upstream_status


__all__ = [
    "EnumError",
    "ExecutionTimeout",
    "FeatureError",
    "FeatureNotFound",
    "FetchError",
    "HandlerError",
    "InvalidParameter",
    "MissingParameter",
    "PermissionDenied",
    "RateLimited",
    "RegistrationError",
    "SchemaError",
    "Unauthorized",
    "WalletRequired",
]

"""
featurehost Request Pipeline

Validation, rate limiting, handler execution and response normalization for
one feature invocation.

Flow:
    FeatureRequest -> validators -> handler (timeout-bounded) -> ResponseEnvelope
"""

from .context import FeatureRequest, InvocationContext, InvocationState
from .envelope import ResponseEnvelope
from .executor import FeaturePipeline, PipelineServices, extract_params
from .ratelimit import (
    CounterStore,
    FixedWindowLimiter,
    InMemoryCounterStore,
    Limiter,
    RateLimitDecision,
    RedisCounterStore,
    SlidingWindowLimiter,
)
from .validators import (
    AuthValidator,
    CredentialAuthority,
    IdentityPolicy,
    RateLimitValidator,
    RequestValidator,
    ValidationResult,
    check_parameters,
    check_wallet,
    run_validators,
)

__all__ = [
    # Request / context
    "FeatureRequest",
    "InvocationContext",
    "InvocationState",
    # Envelope
    "ResponseEnvelope",
    # Pipeline
    "FeaturePipeline",
    "PipelineServices",
    "extract_params",
    # Rate limiting
    "Limiter",
    "RateLimitDecision",
    "CounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "FixedWindowLimiter",
    "SlidingWindowLimiter",
    # Validators
    "ValidationResult",
    "IdentityPolicy",
    "CredentialAuthority",
    "RateLimitValidator",
    "AuthValidator",
    "RequestValidator",
    "check_wallet",
    "check_parameters",
    "run_validators",
]

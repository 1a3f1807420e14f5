"""
featurehost - A manifest-driven host for third-party features.

Features are small request handlers described by a declarative manifest.
featurehost onboards them and runs every request through one pipeline:

- **Manifests**: Typed, immutable descriptors (identity, API contract, permissions)
- **Validation**: Rate limiting, auth, wallet and parameter checks before any feature code runs
- **Capabilities**: A feature can exercise only what its manifest grants
- **Caching**: TTL cache and cached external fetches, namespaced per feature
- **Envelope**: Every feature, whoever wrote it, answers in the same response shape

Quick Start:
    >>> from featurehost import FeatureRegistry, FeatureRequest
    >>>
    >>> registry = FeatureRegistry()
    >>> registry.register(
    ...     {"id": "echo", "version": "1.0.0", "api": {"endpoint": "/api/echo"}},
    ...     handler=lambda params: {"data": params},
    ... )
    >>> pipeline, test_mode = registry.resolve("GET", "/api/echo")
    >>> envelope = await pipeline.handle(FeatureRequest(method="GET", path="/api/echo"))
"""

__version__ = "0.1.0"

# Core exports for convenient imports
from featurehost.handlers import Handler, HandlerResult
from featurehost.manifest import Manifest, Permission, parse_manifest
from featurehost.pipeline import FeaturePipeline, FeatureRequest, PipelineServices, ResponseEnvelope
from featurehost.registry import FeatureRegistry

__all__ = [
    # Version info
    "__version__",
    # Manifests
    "Manifest",
    "Permission",
    "parse_manifest",
    # Handlers
    "Handler",
    "HandlerResult",
    # Pipeline
    "FeaturePipeline",
    "FeatureRequest",
    "PipelineServices",
    "ResponseEnvelope",
    # Registry
    "FeatureRegistry",
]

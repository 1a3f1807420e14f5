"""
Dependency Injection for featurehost.

Provides singleton instances of the shared services and the feature registry.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from featurehost.config import build_services, get_settings
from featurehost.manifest import FileManifestLoader
from featurehost.pipeline import PipelineServices
from featurehost.registry import FeatureRegistry

logger = logging.getLogger(__name__)


# Global instances (initialized on first access)
_services: Optional[PipelineServices] = None
_registry: Optional[FeatureRegistry] = None


def get_services() -> PipelineServices:
    """
    Get the shared pipeline services.

    Built from settings on first call.
    """
    global _services
    if _services is None:
        _services = build_services(get_settings())
    return _services


def get_registry() -> FeatureRegistry:
    """
    Get the feature registry.

    Creates an empty registry on first call; manifests are loaded at startup.
    """
    global _registry
    if _registry is None:
        _registry = FeatureRegistry(get_services())
    return _registry


async def initialize_services() -> None:
    """
    Initialize all services on application startup.

    Called from FastAPI lifespan. Loads every manifest in the configured
    directory; broken manifests are reported and skipped.
    """
    settings = get_settings()
    registry = get_registry()

    manifest_dir = Path(settings.manifest_dir)
    if not manifest_dir.is_dir():
        logger.warning(f"[registry] Manifest directory not found: {manifest_dir}")
        return

    report = registry.load(FileManifestLoader(manifest_dir))
    for source, reason in report.errors.items():
        logger.error(f"[registry] Failed to load {source}: {reason}")


async def shutdown_services() -> None:
    """
    Cleanup all services on application shutdown.

    Called from FastAPI lifespan.
    """
    global _services, _registry
    if _services is not None:
        await _services.aclose()
    _services = None
    _registry = None

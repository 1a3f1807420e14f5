"""
featurehost Feature Registry

Onboards manifests and resolves routes to feature pipelines.
"""

from .registry import FeatureRegistry, LoadReport, RegistryEntry

__all__ = [
    "FeatureRegistry",
    "RegistryEntry",
    "LoadReport",
]

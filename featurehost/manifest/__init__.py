"""
featurehost Manifests

Typed feature descriptors and the sources they are loaded from.
"""

from .loaders import FileManifestLoader, ManifestLoader, ManifestLoadResult, MemoryManifestLoader
from .schema import (
    ApiContract,
    Category,
    HttpMethod,
    Manifest,
    OutputFormat,
    ParameterSpec,
    ParameterType,
    Permission,
    Permissions,
    PromptMetadata,
    ResponseContract,
    ResponseType,
    TestingMetadata,
    parse_manifest,
)

__all__ = [
    # Schema
    "Manifest",
    "ApiContract",
    "ResponseContract",
    "Permissions",
    "PromptMetadata",
    "ParameterSpec",
    "TestingMetadata",
    "Category",
    "HttpMethod",
    "ResponseType",
    "OutputFormat",
    "ParameterType",
    "Permission",
    "parse_manifest",
    # Loaders
    "ManifestLoader",
    "ManifestLoadResult",
    "FileManifestLoader",
    "MemoryManifestLoader",
]

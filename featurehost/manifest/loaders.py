"""
Manifest Loaders.

Sources of raw manifest documents for the registry.

Design Principle:
    Loaders abstract away WHERE manifests come from.
    - Development/Production: FileManifestLoader (JSON/YAML files)
    - Testing: MemoryManifestLoader (in-memory)

A broken manifest never aborts loading the rest; each failure is logged and
reported in the ManifestLoadResult.

Directory Layout:
    manifests/
    ├── gas-tracker.json
    ├── dca-bot.yaml
    └── portfolio-summary.yml

Usage:
    loader = FileManifestLoader("manifests/")
    result = loader.load()
    for manifest in result.manifests:
        registry.register(manifest)
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import yaml

from featurehost.errors import SchemaError

from .schema import Manifest, parse_manifest

logger = logging.getLogger(__name__)

MANIFEST_SUFFIXES = (".json", ".yaml", ".yml")


@dataclass
class ManifestLoadResult:
    """Outcome of a load pass: parsed manifests plus per-source failures."""

    manifests: list[Manifest] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)  # source -> reason

    @property
    def ok(self) -> bool:
        return not self.errors


class ManifestLoader(Protocol):
    """Protocol for manifest sources."""

    def load(self) -> ManifestLoadResult: ...


class FileManifestLoader:
    """
    Loads one manifest per file from a directory.

    Files are read in sorted order so registration order (and therefore
    collision reporting) is deterministic.
    """

    def __init__(self, base_dir: str | Path):
        self._base_dir = Path(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def load(self) -> ManifestLoadResult:
        result = ManifestLoadResult()

        if not self._base_dir.is_dir():
            logger.warning(f"[manifest_loader] Manifest directory not found: {self._base_dir}")
            return result

        for path in sorted(self._base_dir.iterdir()):
            if path.suffix.lower() not in MANIFEST_SUFFIXES or not path.is_file():
                continue
            try:
                raw = self._read(path)
                result.manifests.append(parse_manifest(raw))
            except SchemaError as e:
                logger.error(f"[manifest_loader] Rejected {path.name}: {e}")
                result.errors[str(path)] = str(e)

        logger.info(
            f"[manifest_loader] Loaded {len(result.manifests)} manifests "
            f"from {self._base_dir} ({len(result.errors)} rejected)"
        )
        return result

    def _read(self, path: Path) -> Any:
        """Read a JSON or YAML document."""
        try:
            with path.open(encoding="utf-8") as f:
                if path.suffix.lower() == ".json":
                    return json.load(f)
                return yaml.safe_load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
            raise SchemaError(f"Could not read manifest file {path.name}: {e}") from e


class MemoryManifestLoader:
    """
    In-memory manifest source for testing.

    Usage:
        loader = MemoryManifestLoader()
        loader.add({"id": "gas-tracker", ...})
        registry.load(loader)
    """

    def __init__(self, documents: list[Mapping[str, Any] | Manifest] | None = None):
        self._documents: list[Mapping[str, Any] | Manifest] = list(documents or [])

    def add(self, document: Mapping[str, Any] | Manifest) -> None:
        self._documents.append(document)

    def load(self) -> ManifestLoadResult:
        result = ManifestLoadResult()
        for index, document in enumerate(self._documents):
            try:
                result.manifests.append(parse_manifest(document))
            except SchemaError as e:
                source = f"memory[{index}]"
                logger.error(f"[manifest_loader] Rejected {source}: {e}")
                result.errors[source] = str(e)
        return result

    def clear(self) -> None:
        self._documents.clear()

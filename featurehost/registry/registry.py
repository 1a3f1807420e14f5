"""
Feature Registry for featurehost.

Onboards manifests and resolves routes to the pipeline that serves them.

Design Principle:
    Registration is all-or-nothing. A manifest is parsed, checked for id and
    route collisions, and its handler resolved before anything is stored; any
    failure raises RegistrationError and the registry is left exactly as it
    was.

Concurrency:
    Writers build new maps and swap them in under a lock (copy-on-write).
    Readers take no lock and always see one consistent generation. A request
    that already resolved a pipeline keeps it even if the feature is
    deregistered mid-flight.

Usage:
    registry = FeatureRegistry(services)
    registry.register(manifest_dict, handler=GasTracker())
    registry.load(FileManifestLoader("./features"))

    pipeline, test_mode = registry.resolve("GET", "/api/gas-tracker")
    envelope = await pipeline.handle(request, test_mode=test_mode)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from featurehost.errors import FeatureNotFound, RegistrationError, SchemaError
from featurehost.handlers import Handler, as_handler, resolve_handler
from featurehost.manifest import Manifest, ManifestLoader, parse_manifest
from featurehost.pipeline import FeaturePipeline, PipelineServices

logger = logging.getLogger(__name__)

RouteKey = tuple[str, str]


@dataclass(frozen=True)
class RegistryEntry:
    """One registered feature: its manifest, the routes it serves, and its pipeline."""

    manifest: Manifest
    routes: tuple[RouteKey, ...]
    pipeline: FeaturePipeline

    @property
    def feature_id(self) -> str:
        return self.manifest.id

    @property
    def test_route(self) -> RouteKey | None:
        return self.routes[1] if len(self.routes) > 1 else None


@dataclass(frozen=True)
class LoadReport:
    """Outcome of a bulk load: registered ids and per-source failures."""

    registered: tuple[str, ...]
    errors: Mapping[str, str]

    @property
    def ok(self) -> bool:
        return not self.errors


class FeatureRegistry:
    """
    Registry of active features keyed by id and by route.

    Features:
    - Schema validation and handler resolution on registration
    - Id uniqueness and route collision checks (primary and test routes)
    - Lock-free reads over immutable snapshots
    """

    def __init__(self, services: PipelineServices | None = None):
        self._services = services or PipelineServices()
        self._lock = threading.Lock()
        self._entries: Mapping[str, RegistryEntry] = MappingProxyType({})
        self._routes: Mapping[RouteKey, str] = MappingProxyType({})

    @property
    def services(self) -> PipelineServices:
        return self._services

    # ==================== Registration ====================

    def register(
        self,
        manifest: Manifest | Mapping[str, Any] | str | bytes,
        handler: Handler | Any | None = None,
    ) -> RegistryEntry:
        """
        Register a feature.

        Args:
            manifest: Manifest, raw mapping, or JSON/YAML text
            handler: Handler, Handler subclass or callable; defaults to the
                manifest's `response.handler` reference

        Returns:
            The stored RegistryEntry

        Raises:
            RegistrationError: Malformed manifest, duplicate id, route
                collision, or unresolvable handler
        """
        try:
            parsed = parse_manifest(manifest)
        except SchemaError as e:
            raise RegistrationError(e.message, feature_id=_raw_id(manifest)) from e

        resolved = self._resolve_handler(parsed, handler)
        pipeline = FeaturePipeline(parsed, resolved, self._services)
        routes = tuple(parsed.routes())
        entry = RegistryEntry(manifest=parsed, routes=routes, pipeline=pipeline)

        with self._lock:
            if parsed.id in self._entries:
                existing = self._entries[parsed.id].manifest
                raise RegistrationError(
                    f"Feature '{parsed.id}' is already registered (version {existing.version})",
                    feature_id=parsed.id,
                )
            for route in routes:
                owner = self._routes.get(route)
                if owner is not None:
                    raise RegistrationError(
                        f"Route {route[0]} {route[1]} of '{parsed.id}' is already served by '{owner}'",
                        feature_id=parsed.id,
                    )

            entries = dict(self._entries)
            entries[parsed.id] = entry
            route_map = dict(self._routes)
            for route in routes:
                route_map[route] = parsed.id

            self._entries = MappingProxyType(entries)
            self._routes = MappingProxyType(route_map)

        logger.info(
            f"[registry] Registered {parsed.id}@{parsed.version}: "
            f"routes={[f'{m} {p}' for m, p in routes]}, handler={resolved.name}"
        )
        return entry

    def _resolve_handler(self, manifest: Manifest, handler: Any) -> Handler:
        if handler is not None:
            return as_handler(handler)
        reference = manifest.response.handler
        if not reference:
            raise RegistrationError(
                f"Feature '{manifest.id}' has no handler: pass one or set response.handler",
                feature_id=manifest.id,
            )
        try:
            return resolve_handler(reference)
        except RegistrationError as e:
            raise RegistrationError(e.message, feature_id=manifest.id) from e

    def deregister(self, feature_id: str) -> bool:
        """
        Remove a feature and its routes.

        Returns:
            True if the feature was registered
        """
        with self._lock:
            entry = self._entries.get(feature_id)
            if entry is None:
                return False

            entries = dict(self._entries)
            del entries[feature_id]
            route_map = {
                route: owner for route, owner in self._routes.items() if owner != feature_id
            }

            self._entries = MappingProxyType(entries)
            self._routes = MappingProxyType(route_map)

        logger.info(f"[registry] Deregistered {feature_id}@{entry.manifest.version}")
        return True

    def load(self, loader: ManifestLoader) -> LoadReport:
        """
        Register every manifest a loader yields.

        Each manifest is registered on its own; one failure does not stop the
        rest. Handlers come from each manifest's `response.handler`.
        """
        result = loader.load()
        errors: dict[str, str] = dict(result.errors)
        registered: list[str] = []

        for manifest in result.manifests:
            try:
                self.register(manifest)
            except RegistrationError as e:
                logger.warning(f"[registry] Skipped {manifest.id}: {e.message}")
                errors[manifest.id] = e.message
            else:
                registered.append(manifest.id)

        logger.info(f"[registry] Loaded {len(registered)} features, {len(errors)} failed")
        return LoadReport(registered=tuple(registered), errors=MappingProxyType(errors))

    # ==================== Lookup ====================

    def resolve(self, method: str, path: str) -> tuple[FeaturePipeline, bool]:
        """
        Find the pipeline serving a route.

        Returns:
            (pipeline, test_mode) where test_mode is True on the test route

        Raises:
            FeatureNotFound: No feature serves this route
        """
        route = (method.upper(), _normalize_path(path))
        entries = self._entries
        feature_id = self._routes.get(route)
        entry = entries.get(feature_id) if feature_id is not None else None
        if entry is None:
            raise FeatureNotFound(route[0], route[1])
        return entry.pipeline, route == entry.test_route

    def get(self, feature_id: str) -> RegistryEntry | None:
        return self._entries.get(feature_id)

    def snapshot(self) -> Mapping[str, RegistryEntry]:
        """Read-only view of the current registrations."""
        return self._entries

    def manifests(self) -> list[Manifest]:
        return [entry.manifest for entry in self._entries.values()]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, feature_id: object) -> bool:
        return feature_id in self._entries

    def __repr__(self) -> str:
        return f"FeatureRegistry(features={sorted(self._entries)})"


def _normalize_path(path: str) -> str:
    path = "/" + path.lstrip("/")
    return path.rstrip("/") or "/"


def _raw_id(raw: Any) -> str | None:
    if isinstance(raw, Manifest):
        return raw.id
    if isinstance(raw, Mapping):
        value = raw.get("id")
        return value if isinstance(value, str) else None
    return None

"""
Tests for featurehost feature registry.
"""
import textwrap
from copy import deepcopy

import pytest

from featurehost.errors import FeatureNotFound, RegistrationError
from featurehost.handlers import FunctionHandler
from featurehost.manifest import MemoryManifestLoader, parse_manifest
from featurehost.pipeline import FeatureRequest
from featurehost.registry import FeatureRegistry, LoadReport


def _handler():
    return FunctionHandler(lambda params: {"data": dict(params)})


@pytest.fixture
def registry(services):
    return FeatureRegistry(services)


@pytest.fixture
def feature_module(tmp_path, monkeypatch):
    (tmp_path / "registry_features.py").write_text(textwrap.dedent("""
        from featurehost.handlers import Handler

        class GasTracker(Handler):
            async def execute(self, params, ctx):
                return {"data": {"network": params["network"], "fee": 5000}}

            async def mock(self, params, ctx):
                return {"data": {"network": params["network"], "fee": 0}}
    """))
    monkeypatch.syspath_prepend(str(tmp_path))
    return "registry_features"


class TestRegister:
    """Tests for FeatureRegistry.register."""

    def test_register_with_explicit_handler(self, registry, gas_tracker_manifest):
        entry = registry.register(gas_tracker_manifest, handler=_handler())

        assert entry.feature_id == "gas-tracker"
        assert entry.routes == (("GET", "/api/gas-tracker"), ("GET", "/api/gas-tracker/test"))
        assert entry.test_route == ("GET", "/api/gas-tracker/test")
        assert "gas-tracker" in registry
        assert len(registry) == 1

    def test_register_from_handler_reference(self, registry, gas_tracker_manifest, feature_module):
        raw = deepcopy(gas_tracker_manifest)
        raw["response"] = {"type": "data", "handler": f"{feature_module}:GasTracker"}

        entry = registry.register(raw)

        assert entry.pipeline.handler.name == "GasTracker"

    def test_register_parsed_manifest(self, registry, dca_bot_manifest):
        manifest = parse_manifest(dca_bot_manifest)

        entry = registry.register(manifest, handler=_handler())

        assert entry.manifest is manifest
        assert entry.test_route is None

    def test_register_json_text(self, registry):
        text = '{"id": "ping", "version": "1.0.0", "api": {"endpoint": "/ping"}}'

        registry.register(text, handler=_handler())

        assert registry.get("ping").manifest.version == "1.0.0"

    def test_no_handler_anywhere(self, registry, gas_tracker_manifest):
        with pytest.raises(RegistrationError, match="no handler"):
            registry.register(gas_tracker_manifest)

        assert len(registry) == 0

    def test_unresolvable_reference(self, registry, gas_tracker_manifest):
        raw = deepcopy(gas_tracker_manifest)
        raw["response"] = {"handler": "no_such_module_abc:handler"}

        with pytest.raises(RegistrationError) as exc_info:
            registry.register(raw)

        assert exc_info.value.feature_id == "gas-tracker"
        assert len(registry) == 0

    def test_schema_error_is_wrapped(self, registry):
        with pytest.raises(RegistrationError) as exc_info:
            registry.register({"id": "broken", "version": "1.0.0"}, handler=_handler())

        assert exc_info.value.feature_id == "broken"
        assert exc_info.value.status_code == 400

    def test_bad_version_is_rejected(self, registry, gas_tracker_manifest):
        raw = deepcopy(gas_tracker_manifest)
        raw["version"] = "1.0"

        with pytest.raises(RegistrationError):
            registry.register(raw, handler=_handler())


class TestCollisions:
    """Failed registrations leave the registry unchanged."""

    def test_duplicate_id(self, registry, gas_tracker_manifest):
        registry.register(gas_tracker_manifest, handler=_handler())
        before = registry.snapshot()

        again = deepcopy(gas_tracker_manifest)
        again["version"] = "2.0.0"
        again["api"]["endpoint"] = "/api/gas-tracker-v2"
        again["testing"] = {}

        with pytest.raises(RegistrationError, match="already registered"):
            registry.register(again, handler=_handler())

        assert registry.snapshot() is before
        assert registry.get("gas-tracker").manifest.version == "1.0.0"

    def test_route_collision(self, registry, gas_tracker_manifest):
        registry.register(gas_tracker_manifest, handler=_handler())

        rival = {"id": "gas-v2", "version": "1.0.0", "api": {"endpoint": "/api/gas-tracker"}}

        with pytest.raises(RegistrationError, match="already served by 'gas-tracker'"):
            registry.register(rival, handler=_handler())

        assert "gas-v2" not in registry
        pipeline, _ = registry.resolve("GET", "/api/gas-tracker")
        assert pipeline.feature_id == "gas-tracker"

    def test_test_route_collides_with_primary(self, registry, gas_tracker_manifest):
        registry.register(gas_tracker_manifest, handler=_handler())

        rival = {
            "id": "rival",
            "version": "1.0.0",
            "api": {"endpoint": "/api/rival"},
            "testing": {"testEndpoint": "/api/gas-tracker"},
        }

        with pytest.raises(RegistrationError):
            registry.register(rival, handler=_handler())

        with pytest.raises(FeatureNotFound):
            registry.resolve("GET", "/api/rival")

    def test_same_path_different_method(self, registry):
        registry.register(
            {"id": "read", "version": "1.0.0", "api": {"endpoint": "/api/x", "method": "GET"}},
            handler=_handler(),
        )
        registry.register(
            {"id": "write", "version": "1.0.0", "api": {"endpoint": "/api/x", "method": "POST"}},
            handler=_handler(),
        )

        assert registry.resolve("GET", "/api/x")[0].feature_id == "read"
        assert registry.resolve("POST", "/api/x")[0].feature_id == "write"


class TestDeregister:
    def test_frees_routes(self, registry, gas_tracker_manifest):
        registry.register(gas_tracker_manifest, handler=_handler())

        assert registry.deregister("gas-tracker") is True

        assert "gas-tracker" not in registry
        with pytest.raises(FeatureNotFound):
            registry.resolve("GET", "/api/gas-tracker/test")

        # Id and routes are free again
        registry.register(gas_tracker_manifest, handler=_handler())
        assert len(registry) == 1

    def test_unknown(self, registry):
        assert registry.deregister("nope") is False

    @pytest.mark.asyncio
    async def test_in_flight_pipeline_survives(self, registry, gas_tracker_manifest):
        registry.register(gas_tracker_manifest, handler=_handler())
        pipeline, _ = registry.resolve("GET", "/api/gas-tracker")

        registry.deregister("gas-tracker")
        envelope = await pipeline.handle(
            FeatureRequest(method="GET", path="/api/gas-tracker", query={"network": "solana"})
        )

        assert envelope.success is True


class TestResolve:
    """Tests for FeatureRegistry.resolve."""

    def test_primary_and_test_route(self, registry, gas_tracker_manifest):
        registry.register(gas_tracker_manifest, handler=_handler())

        pipeline, test_mode = registry.resolve("GET", "/api/gas-tracker")
        test_pipeline, test_route_mode = registry.resolve("GET", "/api/gas-tracker/test")

        assert test_mode is False
        assert test_route_mode is True
        assert pipeline is test_pipeline

    @pytest.mark.parametrize("path", ["/api/gas-tracker/", "api/gas-tracker", "/api/gas-tracker///"])
    def test_path_normalization(self, registry, gas_tracker_manifest, path):
        registry.register(gas_tracker_manifest, handler=_handler())

        pipeline, _ = registry.resolve("get", path)

        assert pipeline.feature_id == "gas-tracker"

    def test_wrong_method(self, registry, gas_tracker_manifest):
        registry.register(gas_tracker_manifest, handler=_handler())

        with pytest.raises(FeatureNotFound) as exc_info:
            registry.resolve("POST", "/api/gas-tracker")

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_end_to_end_mock_route(self, registry, gas_tracker_manifest, feature_module):
        raw = deepcopy(gas_tracker_manifest)
        raw["response"] = {"handler": f"{feature_module}:GasTracker"}
        registry.register(raw)

        pipeline, test_mode = registry.resolve("GET", "/api/gas-tracker/test")
        envelope = await pipeline.handle(
            FeatureRequest(method="GET", path="/api/gas-tracker/test", query={"network": "solana"}),
            test_mode=test_mode,
        )

        assert envelope.data == {"network": "solana", "fee": 0}


class TestLoad:
    """Tests for FeatureRegistry.load."""

    def test_reports_each_failure(self, registry, gas_tracker_manifest, feature_module):
        good = deepcopy(gas_tracker_manifest)
        good["response"] = {"handler": f"{feature_module}:GasTracker"}
        no_handler = {"id": "orphan", "version": "1.0.0", "api": {"endpoint": "/orphan"}}
        invalid = {"id": "Bad Id", "version": "1.0.0", "api": {"endpoint": "/bad"}}

        report = registry.load(MemoryManifestLoader([good, no_handler, invalid]))

        assert isinstance(report, LoadReport)
        assert report.registered == ("gas-tracker",)
        assert not report.ok
        assert "orphan" in report.errors
        assert "memory[2]" in report.errors
        assert len(registry) == 1

    def test_empty_loader(self, registry):
        report = registry.load(MemoryManifestLoader())

        assert report.ok
        assert report.registered == ()


class TestSnapshot:
    def test_snapshot_is_read_only(self, registry, gas_tracker_manifest):
        registry.register(gas_tracker_manifest, handler=_handler())
        snapshot = registry.snapshot()

        with pytest.raises(TypeError):
            snapshot["other"] = snapshot["gas-tracker"]

    def test_snapshot_is_stable_across_writes(self, registry, gas_tracker_manifest, dca_bot_manifest):
        registry.register(gas_tracker_manifest, handler=_handler())
        snapshot = registry.snapshot()

        registry.register(dca_bot_manifest, handler=_handler())

        assert list(snapshot) == ["gas-tracker"]
        assert sorted(m.id for m in registry.manifests()) == ["dca-bot", "gas-tracker"]

    def test_repr(self, registry, gas_tracker_manifest):
        registry.register(gas_tracker_manifest, handler=_handler())

        assert "gas-tracker" in repr(registry)

"""
Tests for featurehost manifest parsing.

Tests Manifest, parse_manifest, and the schema/enum error split.
"""
import json

import pytest

from featurehost.errors import EnumError, SchemaError
from featurehost.manifest import (
    Category,
    HttpMethod,
    Manifest,
    OutputFormat,
    ParameterType,
    Permission,
    ResponseType,
    parse_manifest,
)


class TestParseManifest:
    """Tests for parse_manifest."""

    def test_parses_full_manifest(self, gas_tracker_manifest):
        manifest = parse_manifest(gas_tracker_manifest)

        assert manifest.id == "gas-tracker"
        assert manifest.version == "1.0.0"
        assert manifest.category is Category.UTILITY
        assert manifest.api.method is HttpMethod.GET
        assert manifest.api.endpoint == "/api/gas-tracker"
        assert manifest.response.type is ResponseType.DATA
        assert manifest.response.format is OutputFormat.JSON
        assert manifest.testing.mock_data is True
        assert manifest.testing.test_endpoint == "/api/gas-tracker/test"
        assert manifest.prompt.examples == ("gas on solana",)

    def test_camel_case_aliases(self, dca_bot_manifest):
        manifest = parse_manifest(dca_bot_manifest)

        assert manifest.api.requires_wallet is True
        assert manifest.api.requires_auth is False
        assert manifest.permissions.execute_trade is True
        assert manifest.permissions.read_balance is True
        assert manifest.permissions.access_portfolio is False

    def test_snake_case_names_accepted(self):
        manifest = parse_manifest({
            "id": "echo",
            "version": "0.1.0",
            "api": {"endpoint": "/echo", "requires_auth": True},
        })

        assert manifest.api.requires_auth is True

    def test_defaults(self):
        manifest = parse_manifest({"id": "echo", "version": "0.1.0", "api": {"endpoint": "/echo"}})

        assert manifest.category is Category.UTILITY
        assert manifest.api.method is HttpMethod.GET
        assert manifest.api.parameters == ()
        assert manifest.response.handler is None
        assert manifest.permissions.granted() == frozenset()
        assert manifest.testing.test_endpoint is None
        assert manifest.display_name == "echo"

    def test_prompt_string_shorthand(self, dca_bot_manifest):
        manifest = parse_manifest(dca_bot_manifest)

        assert manifest.prompt.text == "Set up a dollar cost averaging plan"
        assert manifest.prompt.examples == ()

    def test_bare_parameter_names_are_required_strings(self, dca_bot_manifest):
        manifest = parse_manifest(dca_bot_manifest)

        token = manifest.api.parameters[0]
        assert token.name == "token"
        assert token.required is True
        assert token.type is ParameterType.STRING
        assert [p.name for p in manifest.required_parameters()] == ["token", "amount"]

    def test_parses_json_text(self, gas_tracker_manifest):
        manifest = parse_manifest(json.dumps(gas_tracker_manifest))
        assert manifest.id == "gas-tracker"

    def test_parses_yaml_text(self):
        text = """
id: portfolio-summary
version: 1.2.3-beta.1
category: portfolio
api:
  endpoint: /api/portfolio
  method: GET
  requiresWallet: true
permissions:
  accessPortfolio: true
"""
        manifest = parse_manifest(text)

        assert manifest.version == "1.2.3-beta.1"
        assert manifest.category is Category.PORTFOLIO
        assert manifest.permissions.allows(Permission.ACCESS_PORTFOLIO)

    def test_manifest_instance_passes_through(self, gas_tracker_manifest):
        manifest = parse_manifest(gas_tracker_manifest)
        assert parse_manifest(manifest) is manifest

    def test_trailing_slash_stripped_from_endpoint(self):
        manifest = parse_manifest({"id": "x", "version": "1.0.0", "api": {"endpoint": "/api/x/"}})
        assert manifest.api.endpoint == "/api/x"


class TestSchemaErrors:
    """Missing or malformed fields raise SchemaError."""

    def test_missing_api(self):
        with pytest.raises(SchemaError) as exc_info:
            parse_manifest({"id": "x", "version": "1.0.0"})

        assert not isinstance(exc_info.value, EnumError)
        assert "api" in exc_info.value.message
        assert exc_info.value.status_code == 400

    def test_missing_id(self):
        with pytest.raises(SchemaError):
            parse_manifest({"version": "1.0.0", "api": {"endpoint": "/x"}})

    def test_bad_version(self):
        with pytest.raises(SchemaError) as exc_info:
            parse_manifest({"id": "x", "version": "one", "api": {"endpoint": "/x"}})

        assert "version" in exc_info.value.message

    def test_bad_id(self):
        with pytest.raises(SchemaError):
            parse_manifest({"id": "Gas Tracker", "version": "1.0.0", "api": {"endpoint": "/x"}})

    def test_endpoint_must_be_path(self):
        with pytest.raises(SchemaError):
            parse_manifest({"id": "x", "version": "1.0.0", "api": {"endpoint": "api/x"}})

    def test_duplicate_parameter_names(self):
        with pytest.raises(SchemaError):
            parse_manifest({
                "id": "x",
                "version": "1.0.0",
                "api": {"endpoint": "/x", "parameters": ["a", {"name": "a"}]},
            })

    def test_test_endpoint_must_differ(self):
        with pytest.raises(SchemaError):
            parse_manifest({
                "id": "x",
                "version": "1.0.0",
                "api": {"endpoint": "/x"},
                "testing": {"testEndpoint": "/x"},
            })

    def test_trade_response_requires_grant(self, dca_bot_manifest):
        raw = {**dca_bot_manifest, "permissions": {"readBalance": True, "executeTrade": False}}

        with pytest.raises(SchemaError) as exc_info:
            parse_manifest(raw)

        assert not isinstance(exc_info.value, EnumError)
        assert "executeTrade" in str(exc_info.value)

    def test_bad_handler_reference(self):
        with pytest.raises(SchemaError):
            parse_manifest({
                "id": "x",
                "version": "1.0.0",
                "api": {"endpoint": "/x"},
                "response": {"handler": "not a reference"},
            })

    def test_non_mapping(self):
        with pytest.raises(SchemaError):
            parse_manifest("- just\n- a list\n")

    def test_invalid_yaml(self):
        with pytest.raises(SchemaError):
            parse_manifest("id: [unclosed")

    def test_errors_carry_details(self):
        with pytest.raises(SchemaError) as exc_info:
            parse_manifest({"id": "x", "version": "1.0.0"})

        assert exc_info.value.errors
        assert exc_info.value.code == "schema_error"


class TestEnumErrors:
    """Values outside a closed set raise EnumError."""

    @pytest.mark.parametrize(
        "patch",
        [
            {"category": "gaming"},
            {"api": {"endpoint": "/x", "method": "DELETE"}},
            {"response": {"type": "stream"}},
            {"response": {"format": "xml"}},
            {"api": {"endpoint": "/x", "parameters": [{"name": "a", "type": "date"}]}},
        ],
    )
    def test_out_of_set_values(self, patch):
        raw = {"id": "x", "version": "1.0.0", "api": {"endpoint": "/x"}}
        raw.update(patch)

        with pytest.raises(EnumError) as exc_info:
            parse_manifest(raw)

        assert exc_info.value.code == "enum_error"
        assert isinstance(exc_info.value, SchemaError)


class TestManifestModel:
    """Tests for Manifest behavior."""

    def test_frozen(self, gas_tracker_manifest):
        manifest = parse_manifest(gas_tracker_manifest)

        with pytest.raises(Exception):
            manifest.version = "2.0.0"

    def test_equality_by_id(self, gas_tracker_manifest):
        first = parse_manifest(gas_tracker_manifest)
        second = parse_manifest({**gas_tracker_manifest, "version": "2.0.0"})

        assert first == second
        assert hash(first) == hash(second)
        assert first.key != second.key
        assert len({first, second}) == 1

    def test_routes(self, gas_tracker_manifest, dca_bot_manifest):
        assert parse_manifest(gas_tracker_manifest).routes() == [
            ("GET", "/api/gas-tracker"),
            ("GET", "/api/gas-tracker/test"),
        ]
        assert parse_manifest(dca_bot_manifest).routes() == [("POST", "/api/dca-bot")]

    def test_catalog_entry(self, gas_tracker_manifest):
        entry = parse_manifest(gas_tracker_manifest).to_catalog_entry()

        assert entry["id"] == "gas-tracker"
        assert entry["name"] == "Gas Tracker"
        assert entry["endpoint"] == "/api/gas-tracker"
        assert entry["method"] == "GET"
        assert entry["category"] == "utility"
        assert entry["permissions"] == {
            "readBalance": False,
            "executeTrade": False,
            "accessPortfolio": False,
        }

    def test_model_is_manifest(self, gas_tracker_manifest):
        assert isinstance(parse_manifest(gas_tracker_manifest), Manifest)

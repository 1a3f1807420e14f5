"""
Manifest Schema.

A manifest is the declarative descriptor of a feature: identity, prompt
metadata, API contract, permission grants, and response contract. It is the
only per-feature artifact the registry consumes.

Design Principle:
    Manifests are parsed once, up front, into a typed, frozen model.
    Every downstream component consumes the typed form, never raw dicts.

Raw documents use camelCase keys (as authored in JSON/YAML); the model
exposes snake_case attributes and accepts either spelling.

Usage:
    manifest = parse_manifest({
        "id": "gas-tracker",
        "version": "1.0.0",
        "category": "utility",
        "api": {"endpoint": "/api/gas-tracker", "method": "GET"},
        "response": {"type": "data", "handler": "features.gas:handler"},
    })

    manifest.api.requires_auth          # False
    manifest.permissions.execute_trade  # False (grants default to off)
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from enum import Enum
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from featurehost.errors import EnumError, SchemaError

_ID_PATTERN = r"^[a-z0-9][a-z0-9_-]*$"
_SEMVER_PATTERN = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)


# =============================================================================
# Closed Sets
# =============================================================================


class Category(str, Enum):
    """Catalog category a feature is listed under."""

    TRADING = "trading"
    ANALYSIS = "analysis"
    PORTFOLIO = "portfolio"
    UTILITY = "utility"


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"


class ResponseType(str, Enum):
    """Kind of result a feature produces."""

    DATA = "data"
    TRADE = "trade"
    BATCH = "batch"
    ANALYSIS = "analysis"


class OutputFormat(str, Enum):
    JSON = "json"
    MARKDOWN = "markdown"
    HTML = "html"


class ParameterType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"


class Permission(str, Enum):
    """
    Capability flags a manifest may grant.

    These three flags are the entire trust boundary between the host and
    feature code. No other implicit capability exists.
    """

    READ_BALANCE = "readBalance"
    EXECUTE_TRADE = "executeTrade"
    ACCESS_PORTFOLIO = "accessPortfolio"


# =============================================================================
# Sections
# =============================================================================


class ParameterSpec(BaseModel):
    """A single declared request parameter."""

    name: str = Field(..., min_length=1, description="Parameter name")
    type: ParameterType = Field(default=ParameterType.STRING, description="Declared type")
    required: bool = Field(default=False, description="Whether the parameter must be present")
    description: str = Field(default="", description="Human-readable description")

    class Config:
        frozen = True


class PromptMetadata(BaseModel):
    """Text shown to the user (or model) to describe when to use the feature."""

    text: str = Field(default="", description="Prompt text")
    examples: tuple[str, ...] = Field(default=(), description="Example user requests")

    class Config:
        frozen = True


class ApiContract(BaseModel):
    """How the feature is reached and what a request must carry."""

    endpoint: str = Field(..., description="Route path, e.g. /api/gas-tracker")
    method: HttpMethod = Field(default=HttpMethod.GET)
    requires_auth: bool = Field(default=False, alias="requiresAuth")
    requires_wallet: bool = Field(default=False, alias="requiresWallet")
    parameters: tuple[ParameterSpec, ...] = Field(default=())

    class Config:
        frozen = True
        populate_by_name = True

    @field_validator("endpoint")
    @classmethod
    def _endpoint_is_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("endpoint must start with '/'")
        return value.rstrip("/") or "/"

    @field_validator("parameters", mode="before")
    @classmethod
    def _normalize_parameters(cls, value: Any) -> Any:
        # Bare names declare required string parameters.
        if isinstance(value, list | tuple):
            return [{"name": item, "required": True} if isinstance(item, str) else item for item in value]
        return value

    @field_validator("parameters")
    @classmethod
    def _unique_parameter_names(cls, value: tuple[ParameterSpec, ...]) -> tuple[ParameterSpec, ...]:
        names = [p.name for p in value]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate parameter names: {duplicates}")
        return value


class ResponseContract(BaseModel):
    """What the feature returns and which code produces it."""

    type: ResponseType = Field(default=ResponseType.DATA)
    handler: str | None = Field(
        default=None,
        description="Handler reference, 'package.module:attribute'",
    )
    format: OutputFormat = Field(default=OutputFormat.JSON)

    class Config:
        frozen = True

    @field_validator("handler")
    @classmethod
    def _handler_reference(cls, value: str | None) -> str | None:
        if value is not None and not re.match(r"^[\w.]+:[\w.]+$", value):
            raise ValueError("handler must look like 'package.module:attribute'")
        return value


class Permissions(BaseModel):
    """Capability grants. Everything is denied unless declared."""

    read_balance: bool = Field(default=False, alias="readBalance")
    execute_trade: bool = Field(default=False, alias="executeTrade")
    access_portfolio: bool = Field(default=False, alias="accessPortfolio")

    class Config:
        frozen = True
        populate_by_name = True

    def allows(self, permission: Permission) -> bool:
        return {
            Permission.READ_BALANCE: self.read_balance,
            Permission.EXECUTE_TRADE: self.execute_trade,
            Permission.ACCESS_PORTFOLIO: self.access_portfolio,
        }[permission]

    def granted(self) -> frozenset[Permission]:
        return frozenset(p for p in Permission if self.allows(p))


class TestingMetadata(BaseModel):
    """Hooks for exercising a feature without live providers."""

    mock_data: bool = Field(default=False, alias="mockData")
    test_endpoint: str | None = Field(default=None, alias="testEndpoint")

    class Config:
        frozen = True
        populate_by_name = True

    @field_validator("test_endpoint")
    @classmethod
    def _test_endpoint_is_path(cls, value: str | None) -> str | None:
        if value is not None and not value.startswith("/"):
            raise ValueError("testEndpoint must start with '/'")
        return (value.rstrip("/") or "/") if value else value


# =============================================================================
# Manifest
# =============================================================================


class Manifest(BaseModel):
    """
    Typed, immutable feature descriptor.

    Identity is the `id`: two manifests compare equal when their ids match.
    A manifest with the same id and a different version is a distinct
    registrable unit (see `key`), but only one may be active at a time.
    """

    id: str = Field(..., pattern=_ID_PATTERN, description="Globally unique feature id")
    version: str = Field(..., description="Semantic version")
    name: str = Field(default="", description="Display name")
    description: str = Field(default="")
    author: str = Field(default="")
    icon: str = Field(default="")
    prompt: PromptMetadata = Field(default_factory=PromptMetadata)
    category: Category = Field(default=Category.UTILITY)
    api: ApiContract
    response: ResponseContract = Field(default_factory=ResponseContract)
    permissions: Permissions = Field(default_factory=Permissions)
    testing: TestingMetadata = Field(default_factory=TestingMetadata)

    class Config:
        frozen = True
        populate_by_name = True

    @field_validator("version")
    @classmethod
    def _semver(cls, value: str) -> str:
        if not _SEMVER_PATTERN.match(value):
            raise ValueError(f"version '{value}' is not a semantic version")
        return value

    @field_validator("prompt", mode="before")
    @classmethod
    def _prompt_shorthand(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"text": value}
        return value

    @model_validator(mode="after")
    def _distinct_test_route(self) -> Manifest:
        if self.testing.test_endpoint and self.testing.test_endpoint == self.api.endpoint:
            raise ValueError("testEndpoint must differ from api.endpoint")
        return self

    @model_validator(mode="after")
    def _trade_response_is_granted(self) -> Manifest:
        if self.response.type is ResponseType.TRADE and not self.permissions.execute_trade:
            raise ValueError("response.type 'trade' requires permissions.executeTrade")
        return self

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Manifest):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def key(self) -> tuple[str, str]:
        """(id, version) pair identifying this exact registrable unit."""
        return (self.id, self.version)

    @property
    def display_name(self) -> str:
        return self.name or self.id

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def required_parameters(self) -> list[ParameterSpec]:
        """Declared parameters that must be present, in declaration order."""
        return [p for p in self.api.parameters if p.required]

    def routes(self) -> list[tuple[str, str]]:
        """Route keys `(METHOD, path)` this manifest serves, primary first."""
        routes = [(self.api.method.value, self.api.endpoint)]
        if self.testing.test_endpoint:
            routes.append((self.api.method.value, self.testing.test_endpoint))
        return routes

    def to_catalog_entry(self) -> dict[str, Any]:
        """Public listing for UI/prompt discovery."""
        return {
            "id": self.id,
            "version": self.version,
            "name": self.display_name,
            "description": self.description,
            "icon": self.icon,
            "prompt": self.prompt.text,
            "examples": list(self.prompt.examples),
            "category": self.category.value,
            "endpoint": self.api.endpoint,
            "method": self.api.method.value,
            "requiresAuth": self.api.requires_auth,
            "requiresWallet": self.api.requires_wallet,
            "parameters": [p.model_dump(mode="json") for p in self.api.parameters],
            "responseType": self.response.type.value,
            "format": self.response.format.value,
            "permissions": self.permissions.model_dump(by_alias=True),
        }


# =============================================================================
# Parsing
# =============================================================================

_ENUM_ERROR_TYPES = {"enum", "literal_error"}


def parse_manifest(raw: Manifest | Mapping[str, Any] | str | bytes) -> Manifest:
    """
    Parse a raw manifest document into a typed Manifest.

    Args:
        raw: Mapping, JSON/YAML text, or an already-parsed Manifest

    Returns:
        Manifest

    Raises:
        EnumError: category/method/response type/format outside its closed set
        SchemaError: a required field is missing or has the wrong shape
    """
    if isinstance(raw, Manifest):
        return raw

    if isinstance(raw, str | bytes):
        try:
            raw = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise SchemaError(f"Manifest is not valid JSON/YAML: {e}") from e

    if not isinstance(raw, Mapping):
        raise SchemaError(f"Manifest must be a mapping, got {type(raw).__name__}")

    try:
        return Manifest.model_validate(dict(raw))
    except ValidationError as e:
        raise _to_schema_error(raw, e) from e


def _to_schema_error(raw: Mapping[str, Any], exc: ValidationError) -> SchemaError:
    errors = exc.errors(include_url=False, include_context=False)
    feature_id = raw.get("id", "?")

    enum_errors = [err for err in errors if err["type"] in _ENUM_ERROR_TYPES]
    first = enum_errors[0] if enum_errors else errors[0]
    location = ".".join(str(part) for part in first["loc"]) or "<root>"
    message = f"Invalid manifest '{feature_id}': {location}: {first['msg']}"

    if enum_errors:
        return EnumError(message, errors=errors)
    return SchemaError(message, errors=errors)

"""
Structural view of tool input schemas.

A tool's JSON Schema is parsed once, when the tool list is fetched, into a
tagged union of parameter kinds. Arguments are validated against the raw
schema with jsonschema; the parsed view is what gets shown to a model.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Annotated, Any, Literal

from jsonschema import SchemaError, validators
from jsonschema.protocols import Validator
from pydantic import BaseModel, ConfigDict, Field

from toolbridge.shared.exceptions import SchemaViolationDetail

logger = logging.getLogger(__name__)


class ParameterBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str | None = None
    enum: tuple[Any, ...] | None = None
    default: Any = None
    nullable: bool = False
    """True when the schema also admits null (``"type": ["string", "null"]``)."""


class StringParameter(ParameterBase):
    kind: Literal["string"] = "string"
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None
    format: str | None = None


class NumberParameter(ParameterBase):
    kind: Literal["number"] = "number"
    minimum: float | None = None
    maximum: float | None = None


class IntegerParameter(ParameterBase):
    kind: Literal["integer"] = "integer"
    minimum: float | None = None
    maximum: float | None = None


class BooleanParameter(ParameterBase):
    kind: Literal["boolean"] = "boolean"


class NullParameter(ParameterBase):
    kind: Literal["null"] = "null"


class ArrayParameter(ParameterBase):
    kind: Literal["array"] = "array"
    items: ParameterSpec | None = None
    min_items: int | None = None
    max_items: int | None = None


class ObjectParameter(ParameterBase):
    kind: Literal["object"] = "object"
    properties: dict[str, ParameterSpec] = Field(default_factory=dict)
    required: tuple[str, ...] = ()
    additional_properties: bool = True


class AnyParameter(ParameterBase):
    """Anything the other kinds cannot express (unions, refs, empty schemas)."""

    kind: Literal["any"] = "any"
    raw: dict[str, Any] = Field(default_factory=dict)


ParameterSpec = Annotated[
    StringParameter
    | NumberParameter
    | IntegerParameter
    | BooleanParameter
    | NullParameter
    | ArrayParameter
    | ObjectParameter
    | AnyParameter,
    Field(discriminator="kind"),
]

ArrayParameter.model_rebuild()
ObjectParameter.model_rebuild()


def _common(schema: Mapping[str, Any], nullable: bool) -> dict[str, Any]:
    common: dict[str, Any] = {"description": schema.get("description"), "nullable": nullable}
    if "enum" in schema and isinstance(schema["enum"], list):
        common["enum"] = tuple(schema["enum"])
    elif "const" in schema:
        common["enum"] = (schema["const"],)
    if "default" in schema:
        common["default"] = schema["default"]
    return common


def _resolve_type(schema: Mapping[str, Any]) -> tuple[str | None, bool]:
    declared = schema.get("type")
    if isinstance(declared, str):
        return declared, False
    if isinstance(declared, list):
        types = [t for t in declared if t != "null"]
        nullable = len(types) != len(declared)
        if len(types) == 1:
            return types[0], nullable
        if not types and nullable:
            return "null", False
        return None, nullable
    if "properties" in schema:
        return "object", False
    if "items" in schema:
        return "array", False
    return None, False


def parse_parameter(schema: Mapping[str, Any] | bool) -> ParameterSpec:
    """Parse one JSON Schema node into its parameter kind."""
    if not isinstance(schema, Mapping):
        return AnyParameter()

    kind, nullable = _resolve_type(schema)
    common = _common(schema, nullable)

    if kind == "string":
        return StringParameter(
            min_length=schema.get("minLength"),
            max_length=schema.get("maxLength"),
            pattern=schema.get("pattern"),
            format=schema.get("format"),
            **common,
        )
    if kind == "number":
        return NumberParameter(minimum=schema.get("minimum"), maximum=schema.get("maximum"), **common)
    if kind == "integer":
        return IntegerParameter(minimum=schema.get("minimum"), maximum=schema.get("maximum"), **common)
    if kind == "boolean":
        return BooleanParameter(**common)
    if kind == "null":
        return NullParameter(**common)
    if kind == "array":
        items = schema.get("items")
        return ArrayParameter(
            items=parse_parameter(items) if isinstance(items, Mapping | bool) else None,
            min_items=schema.get("minItems"),
            max_items=schema.get("maxItems"),
            **common,
        )
    if kind == "object":
        return parse_parameters(schema, nullable=nullable)
    return AnyParameter(raw=dict(schema), **common)


def parse_parameters(schema: Mapping[str, Any], nullable: bool = False) -> ObjectParameter:
    """Parse an object schema, typically a tool's inputSchema."""
    properties = schema.get("properties") or {}
    required = schema.get("required") or []
    additional = schema.get("additionalProperties", True)
    return ObjectParameter(
        properties={name: parse_parameter(sub) for name, sub in properties.items()},
        required=tuple(r for r in required if isinstance(r, str)),
        additional_properties=additional is not False,
        **_common(schema, nullable),
    )


def describe(parameter: ParameterBase) -> str:
    """Short type label, e.g. ``array[integer]`` or ``string | null``."""
    if isinstance(parameter, ArrayParameter):
        label = f"array[{describe(parameter.items)}]" if parameter.items is not None else "array"
    elif isinstance(parameter, ObjectParameter) and parameter.properties:
        label = "object{" + ", ".join(parameter.properties) + "}"
    elif parameter.enum is not None:
        label = " | ".join(repr(value) for value in parameter.enum)
    else:
        label = getattr(parameter, "kind", "any")
    if parameter.nullable:
        label = f"{label} | null"
    return label


def compile_validator(schema: Mapping[str, Any], tool_name: str = "") -> Validator | None:
    """Build a validator for `schema`, using the draft the schema declares.

    Returns None, after a warning, when the schema is itself invalid; the
    caller then accepts any instance.
    """
    cls = validators.validator_for(schema)
    try:
        cls.check_schema(schema)
    except SchemaError as e:
        logger.warning(f"Invalid schema for tool {tool_name}, skipping validation: {e.message}")
        return None
    return cls(schema)


def collect_violations(validator: Validator, instance: Any) -> list[SchemaViolationDetail]:
    """Every way `instance` fails `validator`, each with its JSON path."""
    errors = sorted(validator.iter_errors(instance), key=lambda e: (e.json_path, e.message))
    return [SchemaViolationDetail(path=e.json_path, message=e.message) for e in errors]

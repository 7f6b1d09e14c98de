"""
promptstore/models/validators.py -- Schema validation for prompt entities.

The store treats validation as a gate behind one method,
``validate(schema, value) -> list[FieldError]``; an empty list means valid.
``JsonSchemaValidator`` implements it with ``jsonschema`` (Draft 2020-12) and
rewrites the library's messages into plain English.

``ENTITY_SCHEMA`` is the contract every persisted entity document must meet.
``validate_entity_document`` applies it and additionally checks that the
entity's own ``inputSchema`` and ``outputSchema`` are valid JSON Schemas.

Usage::

    errors = validate_entity_document(document)
    if errors:
        raise ValidationError("demo/greet", errors)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import jsonschema
from jsonschema.exceptions import SchemaError

from promptstore.models.entity import NAME_PATTERN, VERSION_PATTERN

logger = logging.getLogger(__name__)


ENTITY_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "Prompt entity",
    "type": "object",
    "required": [
        "name", "category", "description", "version", "template",
        "parameters", "metadata", "outputType", "inputSchema",
        "outputSchema", "configuration",
    ],
    "additionalProperties": False,
    "properties": {
        "name": {"type": "string", "pattern": NAME_PATTERN},
        "category": {"type": "string", "pattern": NAME_PATTERN},
        "description": {"type": "string"},
        "version": {"type": "string", "pattern": VERSION_PATTERN},
        "template": {"type": "string", "minLength": 1},
        "parameters": {
            "type": "array",
            "items": {"type": "string", "minLength": 1},
            "uniqueItems": True,
        },
        "metadata": {
            "type": "object",
            "required": ["created", "lastModified"],
            "properties": {
                "created": {"type": "string"},
                "lastModified": {"type": "string"},
                "author": {"type": "string"},
                "source": {"type": "string"},
            },
        },
        "outputType": {"enum": ["structured", "plain"]},
        "inputSchema": {"type": "object"},
        "outputSchema": {"type": "object"},
        "configuration": {
            "type": "object",
            "required": ["modelName"],
            "properties": {
                "modelName": {"type": "string"},
                "temperature": {"type": "number"},
                "maxTokens": {"type": "integer"},
                "topP": {"type": "number"},
                "frequencyPenalty": {"type": "number"},
                "presencePenalty": {"type": "number"},
                "stopSequences": {"type": "array", "items": {"type": "string"}},
            },
        },
        "defaultModelName": {"type": "string"},
        "compatibleModels": {"type": "array", "items": {"type": "string"}},
        "tags": {"type": "array", "items": {"type": "string"}},
    },
}


@dataclass(frozen=True)
class FieldError:
    """One violated field."""
    field: str
    message: str
    validator: str = ""

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class SchemaValidator(Protocol):
    """Anything that can check a value against a schema."""

    def validate(self, schema: dict[str, Any], value: Any) -> list[FieldError]:
        ...


class JsonSchemaValidator:
    """``SchemaValidator`` backed by ``jsonschema``'s Draft 2020-12 validator."""

    def __init__(self):
        self._entity_validator = jsonschema.Draft202012Validator(ENTITY_SCHEMA)

    def validate(self, schema: dict[str, Any], value: Any) -> list[FieldError]:
        validator = self._validator_for(schema)
        errors = sorted(validator.iter_errors(value), key=lambda e: [str(p) for p in e.absolute_path])
        return [_humanize_error(err) for err in errors]

    def check_schema(self, field: str, schema: Any) -> list[FieldError]:
        """Return a ``FieldError`` if *schema* is not itself a valid JSON Schema."""
        try:
            jsonschema.Draft202012Validator.check_schema(schema)
        except SchemaError as exc:
            where = _path_label(exc.absolute_path)
            suffix = f" (at {where})" if where != "(root)" else ""
            return [FieldError(field, f"Not a valid JSON Schema{suffix}: {exc.message}", "schema")]
        return []

    def _validator_for(self, schema: dict[str, Any]):
        if schema is ENTITY_SCHEMA:
            return self._entity_validator
        return jsonschema.Draft202012Validator(schema)


def validate_entity_document(
    document: Any,
    validator: SchemaValidator | None = None,
) -> list[FieldError]:
    """Check a persisted entity document against ``ENTITY_SCHEMA``.

    When the structural check passes, the embedded ``inputSchema`` and
    ``outputSchema`` are checked to be valid JSON Schemas as well (only
    possible with a ``JsonSchemaValidator``).
    """
    validator = validator or JsonSchemaValidator()
    errors = validator.validate(ENTITY_SCHEMA, document)
    if errors or not isinstance(validator, JsonSchemaValidator):
        return errors
    for field in ("inputSchema", "outputSchema"):
        errors.extend(validator.check_schema(field, document[field]))
    return errors


# ------------------------------------------------------------------
# Message rewriting
# ------------------------------------------------------------------

def _path_label(path) -> str:
    return ".".join(str(p) for p in path) if path else "(root)"


def _humanize_error(error) -> FieldError:
    """Convert a ``jsonschema.ValidationError`` into plain English."""
    path = _path_label(error.absolute_path)
    kind = error.validator
    msg = error.message
    if kind == "required":
        # Report the missing field itself rather than its parent object.
        missing = msg.split("'")[1] if msg.count("'") >= 2 else ""
        field = f"{path}.{missing}" if path != "(root)" and missing else (missing or path)
        return FieldError(field, "This field is required.", kind)
    if kind == "type":
        return FieldError(path, f"Wrong data type: {msg}", kind)
    if kind == "enum":
        return FieldError(path, f"Invalid value: {msg}", kind)
    if kind == "pattern":
        return FieldError(path, f"Invalid format: {error.instance!r} does not match {error.validator_value}", kind)
    if kind == "additionalProperties":
        return FieldError(path, f"Unknown field: {msg}", kind)
    if kind == "minLength":
        return FieldError(path, "Cannot be empty.", kind)
    return FieldError(path, msg, kind)

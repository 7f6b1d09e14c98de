"""
promptstore/models/ -- Pydantic v2 models and schema validation for prompts.

Submodules:
    entity      PromptEntity and its parts (metadata, execution config, key).
    validators  The entity JSON Schema contract and the jsonschema-backed
                SchemaValidator.
"""

from promptstore.models.entity import (
    EntityKey,
    EntityMetadata,
    ExecutionConfig,
    OutputType,
    PromptEntity,
)
from promptstore.models.validators import (
    ENTITY_SCHEMA,
    FieldError,
    JsonSchemaValidator,
    SchemaValidator,
    validate_entity_document,
)

__all__ = [
    "ENTITY_SCHEMA",
    "EntityKey",
    "EntityMetadata",
    "ExecutionConfig",
    "FieldError",
    "JsonSchemaValidator",
    "OutputType",
    "PromptEntity",
    "SchemaValidator",
    "validate_entity_document",
]

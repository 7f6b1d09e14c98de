"""
promptstore/models/entity.py -- Pydantic v2 models for prompt entities.

A prompt entity is a named, versioned template identified by the compound
key ``(category, name)``.  On disk it is stored as camelCase JSON; in Python
the fields use snake_case with camelCase aliases so that documents round-trip
unchanged::

    entity = PromptEntity.from_document(json.loads(text))
    text = json.dumps(entity.to_document(), indent=2)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from promptstore.utils import now_iso

DEFAULT_VERSION = "1.0.0"

# Category and entity names double as directory names.
NAME_PATTERN = r"^[A-Za-z0-9_][A-Za-z0-9_-]*$"
VERSION_PATTERN = r"^[0-9]+(\.[0-9]+)*$"

_NAME_RE = re.compile(NAME_PATTERN)
_PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def is_valid_name(name: str) -> bool:
    """Return True if *name* can be used as a category or entity name."""
    return isinstance(name, str) and bool(_NAME_RE.match(name))


def template_parameters(template: str) -> list[str]:
    """Return the ``{{placeholder}}`` names in *template*, first-seen order."""
    seen: list[str] = []
    for match in _PLACEHOLDER_RE.finditer(template):
        if match.group(1) not in seen:
            seen.append(match.group(1))
    return seen


@dataclass(frozen=True, order=True)
class EntityKey:
    """Compound identity of an entity."""

    category: str
    name: str

    def __str__(self) -> str:
        return f"{self.category}/{self.name}"


class OutputType(str, Enum):
    STRUCTURED = "structured"
    PLAIN = "plain"


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class EntityMetadata(_CamelModel):
    """Timestamps and provenance.  Unknown keys are kept as-is."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    created: str = Field(default_factory=now_iso)
    last_modified: str = Field(default_factory=now_iso)
    author: str | None = None
    source: str | None = None


class ExecutionConfig(_CamelModel):
    """Model name and generation parameters.  Opaque to the store."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        protected_namespaces=(),
    )

    model_name: str = "default-model"
    temperature: float = 0.7
    max_tokens: int = 100
    top_p: float = 1.0
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    stop_sequences: list[str] = Field(default_factory=list)


_OPTIONAL_FIELDS = ("default_model_name", "compatible_models", "tags")


class PromptEntity(_CamelModel):
    """Full state of one prompt template at one version."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    name: str
    category: str
    description: str = ""
    version: str = DEFAULT_VERSION
    template: str
    parameters: list[str] = Field(default_factory=list)
    metadata: EntityMetadata = Field(default_factory=EntityMetadata)
    output_type: OutputType = OutputType.PLAIN
    input_schema: dict[str, Any] = Field(default_factory=dict)
    output_schema: dict[str, Any] = Field(default_factory=dict)
    configuration: ExecutionConfig = Field(default_factory=ExecutionConfig)
    default_model_name: str | None = None
    compatible_models: list[str] | None = None
    tags: list[str] | None = None

    @property
    def key(self) -> EntityKey:
        return EntityKey(self.category, self.name)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "PromptEntity":
        """Build an entity from its persisted JSON document."""
        return cls.model_validate(document)

    def to_document(self) -> dict[str, Any]:
        """Return the JSON-serialisable document written to disk."""
        document = self.model_dump(
            by_alias=True,
            mode="json",
            exclude={f for f in _OPTIONAL_FIELDS if getattr(self, f) is None},
        )
        # Only metadata is pruned; schema values keep their nulls.
        document["metadata"] = {k: v for k, v in document["metadata"].items() if v is not None}
        return document

    def format(self, inputs: dict[str, Any]) -> str:
        """Substitute ``{{name}}`` placeholders with values from *inputs*.

        Placeholders without a matching input are left untouched.
        """
        def _replace(match: re.Match) -> str:
            key = match.group(1)
            if key in inputs:
                return str(inputs[key])
            return match.group(0)

        return _PLACEHOLDER_RE.sub(_replace, self.template)

    def summary(self) -> str:
        return f"{self.name} ({self.category}) v{self.version}: {self.description}"

"""
promptstore/codegen.py -- Type stubs and sample inputs for saved prompts.

Every time an entity is persisted the store asks a ``CodeGenerator`` for a
set of companion files and commits them in the same transaction as the
entity itself.  The store never looks inside them; it only checks that the
file names do not clash with its own files.

The default ``StubGenerator`` writes two files:

    prompt.pyi      ``TypedDict`` classes for the prompt's input and output,
                    derived from ``inputSchema`` / ``outputSchema``, plus a
                    ``Protocol`` describing the prompt object itself.
    samples.json    A few deterministic example inputs built from
                    ``inputSchema`` (defaults, examples and enums first,
                    then simple type-based values).

JSON Schema types map to Python annotations the same way throughout:
enum -> ``Literal``, array -> ``list[...]``, object -> ``dict[str, Any]``
(nested objects are not expanded into their own classes).
"""

from __future__ import annotations

import keyword
import logging
import re
from typing import Any, Iterable, Protocol

from promptstore.models.entity import OutputType, PromptEntity
from promptstore.utils import dump_json

logger = logging.getLogger(__name__)

STUB_FILENAME = "prompt.pyi"
SAMPLES_FILENAME = "samples.json"

_STUB_IMPORTS = "from typing import Any, Literal, NotRequired, Protocol, TypedDict\n"

_SCALAR_ANNOTATIONS = {
    "string": "str",
    "integer": "int",
    "number": "float",
    "boolean": "bool",
    "null": "None",
}


class CodeGenerator(Protocol):
    """Produces companion files for an entity: ``{filename: content}``."""

    def generate(self, entity: PromptEntity) -> dict[str, str]:
        ...


def class_name_for(category: str, name: str) -> str:
    """Return the PascalCase prefix used for an entity's generated types.

    ``("customer-support", "reply_draft")`` -> ``"CustomerSupportReplyDraft"``.
    """
    words = re.split(r"[^A-Za-z0-9]+", f"{category} {name}")
    joined = "".join(w[:1].upper() + w[1:] for w in words if w)
    if not joined or joined[0].isdigit():
        joined = "P" + joined
    return joined


# ------------------------------------------------------------------
# Type mapping: JSON Schema -> annotation text
# ------------------------------------------------------------------

def _literal(values: list) -> str | None:
    if not values or not all(v is None or isinstance(v, (str, int, bool)) for v in values):
        return None
    return f"Literal[{', '.join(repr(v) for v in values)}]"


def _annotation(prop: Any) -> str:
    """Convert a JSON Schema property definition to annotation source text."""
    if not isinstance(prop, dict):
        return "Any"
    if "const" in prop:
        return _literal([prop["const"]]) or "Any"
    if "enum" in prop:
        return _literal(list(prop["enum"])) or "Any"

    json_type = prop.get("type")
    if isinstance(json_type, list):
        parts = [_annotation({**prop, "type": t}) for t in json_type]
        return " | ".join(dict.fromkeys(parts)) if parts else "Any"
    if json_type is None:
        json_type = "object" if "properties" in prop else None

    if json_type in _SCALAR_ANNOTATIONS:
        return _SCALAR_ANNOTATIONS[json_type]
    if json_type == "array":
        return f"list[{_annotation(prop.get('items', {}))}]"
    if json_type == "object":
        return "dict[str, Any]"
    return "Any"


def _typed_dict(class_name: str, schema: dict[str, Any]) -> str:
    properties = schema.get("properties") or {}
    if not properties:
        return f"{class_name} = dict[str, Any]\n"

    required = set(schema.get("required", []))
    fields = []
    for prop_name, prop in properties.items():
        annotation = _annotation(prop)
        if prop_name not in required:
            annotation = f"NotRequired[{annotation}]"
        fields.append((prop_name, annotation))

    if all(n.isidentifier() and not keyword.iskeyword(n) for n, _ in fields):
        lines = [f"class {class_name}(TypedDict):"]
        for prop_name, annotation in fields:
            description = properties[prop_name].get("description") if isinstance(properties[prop_name], dict) else None
            if description:
                lines.append(f"    # {' '.join(str(description).split())}")
            lines.append(f"    {prop_name}: {annotation}")
        return "\n".join(lines) + "\n"

    # Keys that are not identifiers need the functional syntax.
    body = ", ".join(f"{n!r}: {a}" for n, a in fields)
    return f"{class_name} = TypedDict({class_name!r}, {{{body}}})\n"


def _render_body(entity: PromptEntity) -> str:
    prefix = class_name_for(entity.category, entity.name)
    input_name = f"{prefix}Input"
    output_name = f"{prefix}Output"

    if entity.output_type is OutputType.PLAIN:
        output_block = f"{output_name} = str\n"
    else:
        output_block = _typed_dict(output_name, entity.output_schema)

    description = " ".join(entity.description.split())
    parts = [
        f"# {entity.key} v{entity.version}" + (f": {description}" if description else ""),
        _typed_dict(input_name, _effective_input_schema(entity)),
        output_block,
        f"class {prefix}Prompt(Protocol):\n"
        f"    category: Literal[{entity.category!r}]\n"
        f"    name: Literal[{entity.name!r}]\n"
        f"    description: str\n"
        f"    version: str\n"
        f"    def format(self, inputs: {input_name}) -> str: ...\n",
    ]
    return "\n".join(parts)


def _effective_input_schema(entity: PromptEntity) -> dict[str, Any]:
    """``inputSchema``, or one string property per template parameter when
    the schema declares no properties."""
    schema = entity.input_schema
    if schema.get("properties") or not entity.parameters:
        return schema
    return {
        "type": "object",
        "properties": {p: {"type": "string"} for p in entity.parameters},
        "required": list(entity.parameters),
    }


# ------------------------------------------------------------------
# Sample values
# ------------------------------------------------------------------

def sample_value(prop: Any, index: int = 0, hint: str = "value") -> Any:
    """Return a deterministic example value for a JSON Schema property.

    Parameters
    ----------
    prop : dict
        The property's schema.
    index : int
        Which sample is being built; varies the value between samples.
    hint : str
        Property name, used to make string samples readable.
    """
    if not isinstance(prop, dict):
        return f"{hint}-{index + 1}"
    if "const" in prop:
        return prop["const"]
    if index == 0 and "default" in prop:
        return prop["default"]
    examples = prop.get("examples")
    if isinstance(examples, list) and examples:
        return examples[index % len(examples)]
    enum = prop.get("enum")
    if isinstance(enum, list) and enum:
        return enum[index % len(enum)]

    json_type = prop.get("type")
    if isinstance(json_type, list):
        non_null = [t for t in json_type if t != "null"]
        json_type = non_null[0] if non_null else "null"
    if json_type is None:
        json_type = "object" if "properties" in prop else "string"

    if json_type == "string":
        text = f"{hint}-{index + 1}"
        min_length = prop.get("minLength", 0)
        if len(text) < min_length:
            text = text.ljust(min_length, "x")
        max_length = prop.get("maxLength")
        if isinstance(max_length, int):
            text = text[:max_length]
        return text
    if json_type in ("integer", "number"):
        low = prop.get("minimum", prop.get("exclusiveMinimum", -1) + 1)
        value = low + index
        high = prop.get("maximum")
        if high is not None:
            value = min(value, high)
        return int(value) if json_type == "integer" else float(value)
    if json_type == "boolean":
        return index % 2 == 0
    if json_type == "null":
        return None
    if json_type == "array":
        count = max(prop.get("minItems", 1), 1)
        return [sample_value(prop.get("items", {}), index + i, hint) for i in range(count)]
    if json_type == "object":
        return {
            name: sample_value(sub, index, name)
            for name, sub in (prop.get("properties") or {}).items()
        }
    return None


# ------------------------------------------------------------------
# StubGenerator
# ------------------------------------------------------------------

class StubGenerator:
    """Default ``CodeGenerator``: a ``.pyi`` stub plus sample inputs.

    Parameters
    ----------
    sample_count : int
        Number of sample inputs written to ``samples.json``.
    """

    def __init__(self, sample_count: int = 3):
        if sample_count < 1:
            raise ValueError(f"sample_count must be at least 1, got {sample_count}")
        self.sample_count = sample_count

    def generate(self, entity: PromptEntity) -> dict[str, str]:
        logger.debug("Generating stubs for %s v%s", entity.key, entity.version)
        return {
            STUB_FILENAME: self.render_stub(entity),
            SAMPLES_FILENAME: dump_json({
                "category": entity.category,
                "name": entity.name,
                "version": entity.version,
                "samples": self.samples(entity),
            }),
        }

    def render_stub(self, entity: PromptEntity) -> str:
        return _header(f"{entity.key} v{entity.version}") + "\n" + _render_body(entity)

    def samples(self, entity: PromptEntity) -> list[dict[str, Any]]:
        schema = _effective_input_schema(entity)
        return [sample_value({**schema, "type": "object"}, i) for i in range(self.sample_count)]


def render_combined_stub(entities: Iterable[PromptEntity]) -> str:
    """Render one stub module covering every entity, sorted by key."""
    ordered = sorted(entities, key=lambda e: e.key)
    bodies = [_render_body(e) for e in ordered]
    return _header(f"{len(ordered)} prompts") + "\n\n".join([""] + bodies)


def _header(subject: str) -> str:
    return (
        f"# Generated by promptstore for {subject}.  Do not edit by hand.\n"
        f"{_STUB_IMPORTS}"
    )

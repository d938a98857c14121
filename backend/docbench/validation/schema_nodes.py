"""Tagged JSON Schema tree and the structural rewrites applied to it.

Extraction outputs may use ``null`` for any field, whether or not the schema
author declared the field nullable. Rather than mutating ``type`` arrays in
place, the schema is parsed into a small tree of object/array/leaf nodes,
rewritten as a pure function, and serialized back to a plain JSON Schema
document for the validator.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Literal

NodeKind = Literal["object", "array", "leaf"]

_COMBINATORS = ("oneOf", "anyOf", "allOf")
_DEFINITION_KEYS = ("definitions", "$defs")
_STRUCTURAL_KEYS = frozenset(
    ("type", "properties", "items", "additionalProperties", *_COMBINATORS, *_DEFINITION_KEYS)
)


@dataclass(frozen=True, slots=True)
class SchemaNode:
    """One schema position. ``keywords`` carries every non-structural keyword verbatim."""

    kind: NodeKind
    types: tuple[str, ...] = ()
    keywords: dict[str, Any] = field(default_factory=dict)
    properties: dict[str, SchemaNode] = field(default_factory=dict)
    items: SchemaNode | tuple[SchemaNode, ...] | None = None
    additional_properties: SchemaNode | bool | None = None
    combinators: dict[str, tuple[SchemaNode, ...]] = field(default_factory=dict)
    definitions: dict[str, dict[str, SchemaNode]] = field(default_factory=dict)


def parse_schema(schema: Any) -> SchemaNode:
    """Build a node tree from a JSON Schema mapping. Non-mappings become empty leaves."""

    if not isinstance(schema, dict):
        return SchemaNode(kind="leaf")

    raw_type = schema.get("type")
    if isinstance(raw_type, list):
        types = tuple(str(value) for value in raw_type)
    elif isinstance(raw_type, str):
        types = (raw_type,)
    else:
        types = ()

    raw_properties = schema.get("properties")
    properties: dict[str, SchemaNode] = {}
    if isinstance(raw_properties, dict):
        properties = {str(name): parse_schema(sub_schema) for name, sub_schema in raw_properties.items()}

    raw_items = schema.get("items")
    items: SchemaNode | tuple[SchemaNode, ...] | None
    if isinstance(raw_items, list):
        items = tuple(parse_schema(item) for item in raw_items)
    elif isinstance(raw_items, dict):
        items = parse_schema(raw_items)
    else:
        items = None

    raw_additional = schema.get("additionalProperties")
    additional: SchemaNode | bool | None
    if isinstance(raw_additional, dict):
        additional = parse_schema(raw_additional)
    elif isinstance(raw_additional, bool):
        additional = raw_additional
    else:
        additional = None

    combinators = {
        keyword: tuple(parse_schema(option) for option in schema[keyword])
        for keyword in _COMBINATORS
        if isinstance(schema.get(keyword), list)
    }
    definitions = {
        key: {str(name): parse_schema(sub) for name, sub in schema[key].items()}
        for key in _DEFINITION_KEYS
        if isinstance(schema.get(key), dict)
    }

    if "object" in types or properties:
        kind: NodeKind = "object"
    elif "array" in types or items is not None:
        kind = "array"
    else:
        kind = "leaf"

    return SchemaNode(
        kind=kind,
        types=types,
        keywords={key: value for key, value in schema.items() if key not in _STRUCTURAL_KEYS},
        properties=properties,
        items=items,
        additional_properties=additional,
        combinators=combinators,
        definitions=definitions,
    )


def make_nullable(node: SchemaNode) -> SchemaNode:
    """Return a copy of ``node`` where every typed position also accepts ``null``.

    ``oneOf`` branches keep their own types and a single ``{"type": "null"}``
    branch is appended instead, because a null accepted by every branch would
    match more than one of them and fail the ``oneOf``.
    """

    types = node.types
    if types and "null" not in types:
        types = (*types, "null")

    keywords = node.keywords
    enum_values = keywords.get("enum")
    if isinstance(enum_values, list) and None not in enum_values:
        keywords = {**keywords, "enum": [*enum_values, None]}

    return replace(_nullable_children(node), types=types, keywords=keywords)


def _nullable_children(node: SchemaNode) -> SchemaNode:
    items = node.items
    if isinstance(items, tuple):
        items = tuple(make_nullable(item) for item in items)
    elif items is not None:
        items = make_nullable(items)

    additional = node.additional_properties
    if isinstance(additional, SchemaNode):
        additional = make_nullable(additional)

    combinators: dict[str, tuple[SchemaNode, ...]] = {}
    for keyword, options in node.combinators.items():
        if keyword == "oneOf":
            rewritten = tuple(_nullable_children(option) for option in options)
            if not any("null" in option.types for option in options):
                rewritten = (*rewritten, SchemaNode(kind="leaf", types=("null",)))
            combinators[keyword] = rewritten
        else:
            combinators[keyword] = tuple(make_nullable(option) for option in options)

    return replace(
        node,
        properties={name: make_nullable(child) for name, child in node.properties.items()},
        items=items,
        additional_properties=additional,
        combinators=combinators,
        definitions={
            key: {name: make_nullable(child) for name, child in group.items()}
            for key, group in node.definitions.items()
        },
    )


def to_json_schema(node: SchemaNode) -> dict[str, Any]:
    """Serialize a node tree back into a JSON Schema mapping."""

    result: dict[str, Any] = dict(node.keywords)
    if node.types:
        result["type"] = node.types[0] if len(node.types) == 1 else list(node.types)
    if node.properties:
        result["properties"] = {name: to_json_schema(child) for name, child in node.properties.items()}
    if isinstance(node.items, tuple):
        result["items"] = [to_json_schema(item) for item in node.items]
    elif node.items is not None:
        result["items"] = to_json_schema(node.items)
    if isinstance(node.additional_properties, SchemaNode):
        result["additionalProperties"] = to_json_schema(node.additional_properties)
    elif isinstance(node.additional_properties, bool):
        result["additionalProperties"] = node.additional_properties
    for keyword, options in node.combinators.items():
        result[keyword] = [to_json_schema(option) for option in options]
    for key, group in node.definitions.items():
        result[key] = {name: to_json_schema(child) for name, child in group.items()}
    return result


def nullable_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Convenience wrapper: parse, rewrite, serialize."""

    return to_json_schema(make_nullable(parse_schema(schema)))

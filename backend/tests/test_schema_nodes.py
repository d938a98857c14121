"""Unit tests for the null-tolerant schema rewrite."""

import unittest

from docbench.validation.schema_nodes import make_nullable, nullable_schema, parse_schema, to_json_schema


class SchemaNodeParsingTests(unittest.TestCase):
    def test_kinds_follow_type_or_structure(self) -> None:
        self.assertEqual(parse_schema({"type": "object"}).kind, "object")
        self.assertEqual(parse_schema({"properties": {"a": {}}}).kind, "object")
        self.assertEqual(parse_schema({"items": {"type": "string"}}).kind, "array")
        self.assertEqual(parse_schema({"type": "string"}).kind, "leaf")
        self.assertEqual(parse_schema("not a schema").kind, "leaf")

    def test_round_trip_keeps_non_structural_keywords(self) -> None:
        schema = {
            "type": "object",
            "title": "Invoice",
            "required": ["total"],
            "properties": {"total": {"type": "number", "minimum": 0}},
            "additionalProperties": False,
        }

        self.assertEqual(to_json_schema(parse_schema(schema)), schema)


class MakeNullableTests(unittest.TestCase):
    def test_every_typed_position_accepts_null(self) -> None:
        schema = {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "tags": {"type": "array", "items": {"type": "string"}},
                "address": {"type": "object", "properties": {"city": {"type": "string"}}},
            },
        }

        result = nullable_schema(schema)

        self.assertEqual(result["type"], ["object", "null"])
        self.assertEqual(result["properties"]["name"]["type"], ["string", "null"])
        self.assertEqual(result["properties"]["tags"]["type"], ["array", "null"])
        self.assertEqual(result["properties"]["tags"]["items"]["type"], ["string", "null"])
        self.assertEqual(result["properties"]["address"]["properties"]["city"]["type"], ["string", "null"])

    def test_already_nullable_type_is_not_duplicated(self) -> None:
        result = nullable_schema({"type": ["integer", "null"]})

        self.assertEqual(result["type"], ["integer", "null"])

    def test_enum_gains_null_member(self) -> None:
        result = nullable_schema({"type": "string", "enum": ["open", "closed"]})

        self.assertEqual(result["enum"], ["open", "closed", None])

    def test_untyped_schema_gets_no_type(self) -> None:
        result = nullable_schema({"description": "anything goes"})

        self.assertNotIn("type", result)

    def test_combinators_and_definitions_are_rewritten(self) -> None:
        schema = {
            "definitions": {"money": {"type": "number"}},
            "anyOf": [{"type": "string"}, {"type": "integer"}],
        }

        result = nullable_schema(schema)

        self.assertEqual(result["definitions"]["money"]["type"], ["number", "null"])
        self.assertEqual([option["type"] for option in result["anyOf"]], [["string", "null"], ["integer", "null"]])

    def test_one_of_gains_a_single_null_branch(self) -> None:
        schema = {
            "oneOf": [
                {"type": "string"},
                {"type": "object", "properties": {"value": {"type": "number"}}},
            ]
        }

        result = nullable_schema(schema)

        self.assertEqual(
            result["oneOf"],
            [
                {"type": "string"},
                {"type": "object", "properties": {"value": {"type": ["number", "null"]}}},
                {"type": "null"},
            ],
        )

    def test_one_of_with_a_null_branch_is_left_alone(self) -> None:
        schema = {"oneOf": [{"type": "string"}, {"type": "null"}]}

        self.assertEqual(nullable_schema(schema), schema)

    def test_input_schema_is_not_mutated(self) -> None:
        schema = {"type": "object", "properties": {"a": {"type": "string", "enum": ["x"]}}}

        make_nullable(parse_schema(schema))
        nullable_schema(schema)

        self.assertEqual(schema, {"type": "object", "properties": {"a": {"type": "string", "enum": ["x"]}}})


if __name__ == "__main__":
    unittest.main()

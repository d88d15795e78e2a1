"""
Tests for property level checks: types, ranges, selections, patterns,
constraints and arrays.
"""

import pytest

from modelguard.config import get_config
from modelguard.errors import ForbiddenError
from modelguard.validation.property import is_array_type, matches_primitive


class TestPrimitiveMatching:
    """Tests for matches_primitive / is_array_type."""

    @pytest.mark.parametrize("type_name,value,expected", [
        ("string", "a", True),
        ("string", 1, False),
        ("number", 1.5, True),
        ("number", True, False),
        ("number", float("nan"), False),
        ("integer", 2, True),
        ("integer", 2.0, True),
        ("integer", 2.5, False),
        ("boolean", False, True),
        ("boolean", 0, False),
    ])
    def test_matches_primitive(self, type_name, value, expected):
        assert matches_primitive(type_name, value) is expected

    @pytest.mark.parametrize("declaration,expected", [
        ("string[]", True),
        ("Address[]", True),
        ("string", False),
        ([["string", "integer"]], True),
        (["string", "integer"], False),
        (None, False),
    ])
    def test_is_array_type(self, declaration, expected):
        assert is_array_type(declaration) is expected


class TestTypes:
    """Type checks."""

    def test_string_is_trimmed(self, validate):
        result = validate({"A": {"name": {}}}, {"_type": "A", "name": "  x  "})
        assert result == {"_type": "A", "name": "x"}

    def test_wrong_primitive_type(self, validate):
        with pytest.raises(ForbiddenError) as info:
            validate({"A": {"count": {"type": "number"}}}, {"_type": "A", "count": "1"})
        assert info.value.kind == "PropertyType"
        assert 'isn\'t of (valid) type "number"' in str(info.value)

    def test_boolean_is_not_an_integer(self, validate):
        with pytest.raises(ForbiddenError, match="^PropertyType:"):
            validate({"A": {"count": {"type": "integer"}}}, {"_type": "A", "count": True})

    def test_fraction_is_not_an_integer(self, validate):
        with pytest.raises(ForbiddenError, match="^PropertyType:"):
            validate({"A": {"count": {"type": "integer"}}}, {"_type": "A", "count": 1.5})

    def test_date_time_requires_number(self, validate):
        entities = {"A": {"at": {"type": "DateTime"}}}
        assert validate(entities, {"_type": "A", "at": 1700000000.5})["at"] == 1700000000.5
        with pytest.raises(ForbiddenError, match='type "DateTime"'):
            validate(entities, {"_type": "A", "at": "2023-11-14"})

    def test_union_type(self, validate):
        entities = {"A": {"value": {"type": ["string", "integer"]}}}
        assert validate(entities, {"_type": "A", "value": 3})["value"] == 3
        assert validate(entities, {"_type": "A", "value": "x"})["value"] == "x"
        with pytest.raises(ForbiddenError, match="None of the specified types"):
            validate(entities, {"_type": "A", "value": True})

    def test_literal_type(self, validate):
        entities = {"A": {"kind": {"type": "fixed"}}}
        assert validate(entities, {"_type": "A", "kind": "fixed"})["kind"] == "fixed"
        with pytest.raises(ForbiddenError, match='isn\'t value "fixed"'):
            validate(entities, {"_type": "A", "kind": "other"})

    def test_any_type(self, validate):
        entities = {"A": {"payload": {"type": "any"}}}
        result = validate(entities, {"_type": "A", "payload": {"nested": [1, 2]}})
        assert result["payload"] == {"nested": [1, 2]}

    def test_foreign_key(self, validate):
        entities = {"Author": {}, "Article": {"author": {"type": "foreignKey:Author"}}}
        assert validate(entities, {"_type": "Article", "author": "a-1"})["author"] == "a-1"
        with pytest.raises(ForbiddenError, match="Foreign key"):
            validate(entities, {"_type": "Article", "author": 1})

    def test_foreign_key_uses_referenced_id_type(self, validate):
        entities = {
            "Author": {"_id": {"type": "integer"}},
            "Article": {"author": {"type": "foreignKey:Author"}},
        }
        assert validate(entities, {"_type": "Article", "author": 7})["author"] == 7


class TestNestedModels:
    """Properties typed by another model."""

    @pytest.fixture
    def entities(self):
        return {
            "Address": {"street": {"nullable": False}, "city": {}},
            "Person": {"address": {"type": "Address"}},
        }

    def test_nested_document_is_typed_and_checked(self, validate, entities):
        result = validate(entities, {
            "_type": "Person",
            "address": {"street": " Main St ", "city": "Springfield"},
        })
        assert result["address"] == {
            "_type": "Address", "street": "Main St", "city": "Springfield",
        }

    def test_nested_violation_names_the_path(self, validate, entities):
        with pytest.raises(ForbiddenError) as info:
            validate(entities, {"_type": "Person", "address": {"city": "Springfield"}})
        assert info.value.kind == "MissingProperty"
        assert str(info.value) == 'MissingProperty: Missing property "street" in address.'

    def test_nested_value_has_to_be_an_object(self, validate, entities):
        with pytest.raises(ForbiddenError, match="^NestedType:"):
            validate(entities, {"_type": "Person", "address": "Main St"})

    def test_nested_document_of_other_model(self, validate, entities):
        entities["Other"] = {}
        with pytest.raises(ForbiddenError, match="^NestedType:"):
            validate(entities, {"_type": "Person", "address": {"_type": "Other"}})

    def test_nested_undeclared_property(self, validate, entities):
        with pytest.raises(ForbiddenError, match='"zip" isn\'t specified in model "Address" in address'):
            validate(entities, {
                "_type": "Person",
                "address": {"street": "Main St", "zip": "12345"},
            })

    def test_nested_update_compares_with_old_nested_document(self, validate, entities):
        entities["Address"]["street"]["mutable"] = False
        old = {"_type": "Person", "address": {"_type": "Address", "street": "Main St"}}
        with pytest.raises(ForbiddenError, match="^Immutable:"):
            validate(entities, {
                "_type": "Person",
                "address": {"_type": "Address", "street": "Elm St"},
            }, old)


class TestRanges:
    """Length and numeric bounds."""

    def test_minimal_length(self, validate):
        with pytest.raises(ForbiddenError) as info:
            validate({"A": {"name": {"type": "string", "minimum": 2}}}, {"_type": "A", "name": "x"})
        assert info.value.kind == "MinimalLength"

    def test_maximal_length(self, validate):
        with pytest.raises(ForbiddenError, match="^MaximalLength:"):
            validate({"A": {"name": {"maximumLength": 3}}}, {"_type": "A", "name": "abcd"})

    def test_length_is_checked_after_trimming(self, validate):
        result = validate({"A": {"name": {"maximumLength": 3}}}, {"_type": "A", "name": " abc "})
        assert result["name"] == "abc"

    def test_numeric_minimum(self, validate):
        with pytest.raises(ForbiddenError, match="^Minimum:.*too low"):
            validate({"A": {"count": {"type": "integer", "minimum": 0}}}, {"_type": "A", "count": -1})

    def test_numeric_maximum(self, validate):
        with pytest.raises(ForbiddenError, match="^Maximum:.*too high"):
            validate({"A": {"count": {"type": "number", "maximum": 1}}}, {"_type": "A", "count": 1.5})

    def test_date_time_range(self, validate):
        with pytest.raises(ForbiddenError, match="^Minimum:"):
            validate({"A": {"at": {"type": "DateTime", "minimum": 10}}}, {"_type": "A", "at": 5})


class TestSelectionAndPatterns:
    """Enumerations and regular expressions."""

    def test_selection_list(self, validate):
        entities = {"A": {"status": {"selection": ["draft", "published"]}}}
        assert validate(entities, {"_type": "A", "status": "draft"})["status"] == "draft"
        with pytest.raises(ForbiddenError, match='^Selection:.*"draft", "published"'):
            validate(entities, {"_type": "A", "status": "archived"})

    def test_selection_mapping_uses_values(self, validate):
        entities = {"A": {"status": {"selection": {"d": "draft"}}}}
        assert validate(entities, {"_type": "A", "status": "draft"})["status"] == "draft"
        with pytest.raises(ForbiddenError, match="^Selection:"):
            validate(entities, {"_type": "A", "status": "d"})

    def test_selection_does_not_confuse_booleans_and_numbers(self, validate):
        entities = {"A": {"level": {"type": "any", "selection": [1, 2]}}}
        assert validate(entities, {"_type": "A", "level": 1})["level"] == 1
        with pytest.raises(ForbiddenError, match="^Selection:"):
            validate(entities, {"_type": "A", "level": True})

    def test_boolean_selection(self, validate):
        entities = {"A": {"flag": {"type": "any", "selection": [True]}}}
        assert validate(entities, {"_type": "A", "flag": True})["flag"] is True
        with pytest.raises(ForbiddenError, match="^Selection:"):
            validate(entities, {"_type": "A", "flag": 1})

    def test_pattern_match(self, validate):
        entities = {"A": {"email": {"regularExpressionPattern": "^[^@]+@[^@]+$"}}}
        with pytest.raises(ForbiddenError, match="^PatternMatch:"):
            validate(entities, {"_type": "A", "email": "nobody"})

    def test_inverted_pattern_match(self, validate):
        entities = {"A": {"name": {"invertedRegularExpressionPattern": "admin"}}}
        with pytest.raises(ForbiddenError, match="^InvertedPatternMatch:"):
            validate(entities, {"_type": "A", "name": "the admin"})


class TestConstraints:
    """Property constraints."""

    def test_constraint_expression(self, validate):
        entities = {"A": {"name": {"constraintExpression": "newValue != 'bad'"}}}
        assert validate(entities, {"_type": "A", "name": "good"})["name"] == "good"
        with pytest.raises(ForbiddenError) as info:
            validate(entities, {"_type": "A", "name": "bad"})
        assert info.value.kind == "ConstraintExpression"
        assert "should satisfy constraint \"newValue != 'bad'\"" in str(info.value)

    def test_constraint_execution(self, validate):
        entities = {"A": {"count": {
            "type": "integer",
            "constraintExecution": "if newValue % 2:\n    return False\nreturn True",
        }}}
        assert validate(entities, {"_type": "A", "count": 2})["count"] == 2
        with pytest.raises(ForbiddenError, match="^ConstraintExecution:"):
            validate(entities, {"_type": "A", "count": 3})

    def test_constraint_description(self, validate):
        entities = {"A": {"name": {"constraintExpression": {
            "evaluation": "newValue != 'bad'",
            "description": "'Value ' + newValue + ' of ' + name + ' is bad'",
        }}}}
        with pytest.raises(ForbiddenError) as info:
            validate(entities, {"_type": "A", "name": "bad"})
        assert str(info.value) == "ConstraintExpression: Value bad of name is bad"

    def test_constraint_scope(self, validate):
        entities = {"A": {"name": {"constraintExpression": (
            "modelName == 'A' and propertySpecification['type'] == 'string'"
            " and userContext['name'] == 'admin' and oldValue is None"
            " and newDocument[typeName] == 'A' and idName == '_id'"
        )}}}
        assert validate(entities, {"_type": "A", "name": "x"})["name"] == "x"

    def test_conflicting_constraint_only_on_change(self, validate):
        entities = {"A": {"count": {
            "type": "integer",
            "conflictingConstraintExpression": "newValue > oldValue",
        }}}
        old = {"_type": "A", "count": 5}
        assert validate(entities, {"_type": "A", "count": 1})["count"] == 1
        assert validate(entities, {"_type": "A", "count": 5}, old)["count"] == 5
        assert validate(entities, {"_type": "A", "count": 6}, old)["count"] == 6
        with pytest.raises(ForbiddenError, match="^ConflictingConstraintExpression:"):
            validate(entities, {"_type": "A", "count": 3}, old)

    def test_runtime_error_is_a_rejection(self, validate):
        entities = {"A": {"name": {"constraintExpression": "newValue.missing()"}}}
        with pytest.raises(ForbiddenError) as info:
            validate(entities, {"_type": "A", "name": "x"})
        assert info.value.kind == "Runtime"
        assert 'Hook "constraintExpression" has thrown an error' in str(info.value)
        assert "AttributeError" in str(info.value)

    def test_compilation_error_is_a_rejection(self, validate):
        get_config(validate_expressions=False)
        entities = {"A": {"name": {"constraintExpression": "newValue >"}}}
        with pytest.raises(ForbiddenError) as info:
            validate(entities, {"_type": "A", "name": "x"})
        assert info.value.kind == "Compilation"
        assert 'Hook "constraintExpression" has invalid code "newValue >"' in str(info.value)


class TestArrays:
    """Array typed properties."""

    def test_elements_are_checked(self, validate):
        entities = {"A": {"tags": {"type": "string[]"}}}
        assert validate(entities, {"_type": "A", "tags": ["a", "b"]})["tags"] == ["a", "b"]
        with pytest.raises(ForbiddenError, match='"2. value in tags"'):
            validate(entities, {"_type": "A", "tags": ["a", 1]})

    def test_null_elements_are_removed(self, validate):
        entities = {"A": {"tags": {"type": "string[]"}}}
        assert validate(entities, {"_type": "A", "tags": ["a", None, "b"]})["tags"] == ["a", "b"]

    def test_non_list_is_rejected(self, validate):
        with pytest.raises(ForbiddenError, match="^PropertyType:.*array"):
            validate({"A": {"tags": {"type": "string[]"}}}, {"_type": "A", "tags": "a"})

    def test_array_length(self, validate):
        entities = {"A": {"tags": {"type": "string[]", "minimumNumber": 2, "maximumNumber": 3}}}
        with pytest.raises(ForbiddenError, match="^MaximumArrayLength:"):
            validate(entities, {"_type": "A", "tags": ["a", "b", "c", "d"]})
        with pytest.raises(ForbiddenError, match="^MinimumArrayLength:"):
            validate(entities, {"_type": "A", "tags": ["a"]})

    def test_element_bounds(self, validate):
        entities = {"A": {"tags": {"type": "string[]", "maximumLength": 3}}}
        with pytest.raises(ForbiddenError, match="^MaximalLength:"):
            validate(entities, {"_type": "A", "tags": ["abcd"]})

    def test_array_constraint(self, validate):
        entities = {"A": {"tags": {
            "type": "string[]",
            "arrayConstraintExpression": "len(set(newValue)) == len(newValue)",
        }}}
        with pytest.raises(ForbiddenError, match="^ArrayConstraintExpression:"):
            validate(entities, {"_type": "A", "tags": ["a", "a"]})

    def test_array_of_union(self, validate):
        entities = {"A": {"values": {"type": [["string", "integer"]]}}}
        assert validate(entities, {"_type": "A", "values": ["a", 1]})["values"] == ["a", 1]

    def test_array_of_models(self, validate):
        entities = {
            "Item": {"name": {"nullable": False}},
            "Order": {"items": {"type": "Item[]"}},
        }
        result = validate(entities, {"_type": "Order", "items": [{"name": "x"}, None]})
        assert result["items"] == [{"name": "x", "_type": "Item"}]
        with pytest.raises(ForbiddenError, match='^MissingProperty:.*"name" in 1. value in items'):
            validate(entities, {"_type": "Order", "items": [{}]})

"""
Property Checker.

Validates and normalizes one value against its property specification. The
checks run in a fixed order: type, range, selection, pattern, constraints.
Values typed by another model are checked recursively as nested documents.
"""

from __future__ import annotations

import math
import re
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from modelguard.errors import ForbiddenError
from modelguard.models import UpdateStrategy
from modelguard.resolver import as_list, split_constraint
from modelguard.validation.context import (
    DocumentFrame,
    ValidationContext,
    deep_equal,
    fingerprint,
    has_source,
)

if TYPE_CHECKING:
    from modelguard.validation.document import DocumentChecker

PRIMITIVE_TYPES = ("boolean", "integer", "number", "string")
FOREIGN_KEY_PREFIX = "foreignKey:"

CONSTRAINT_TYPES = ("constraintExecution", "constraintExpression")
CONFLICTING_CONSTRAINT_TYPES = (
    "conflictingConstraintExecution",
    "conflictingConstraintExpression",
)
ARRAY_CONSTRAINT_TYPES = ("arrayConstraintExecution", "arrayConstraintExpression")


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and not (isinstance(value, float) and math.isnan(value))
    )


def matches_primitive(type_name: str, value: Any) -> bool:
    if type_name == "boolean":
        return isinstance(value, bool)
    if type_name == "string":
        return isinstance(value, str)
    if type_name == "number":
        return _is_number(value)
    if type_name == "integer":
        return _is_number(value) and float(value).is_integer()
    return False


def is_same_option(value: Any, option: Any) -> bool:
    """Selection membership; booleans never match numbers."""
    if isinstance(value, bool) or isinstance(option, bool):
        return isinstance(value, bool) and isinstance(option, bool) and value == option
    if isinstance(value, (dict, list)) or isinstance(option, (dict, list)):
        return deep_equal(value, option)
    return value == option


def _type_label(value: Any) -> str:
    return "null" if value is None else type(value).__name__


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else fingerprint(value)


class PropertyChecker:
    """
    Checks single property values.

    Example:
        checker = PropertyChecker(context, document_checker)
        value, changed_path = checker.check("x", "name", {"type": "string"}, None, frame)
    """

    def __init__(self, context: ValidationContext, document_checker: "DocumentChecker"):
        self.context = context
        self.document_checker = document_checker

    def check_constraints(
        self,
        new_value: Any,
        name: str,
        specification: Dict[str, Any],
        old_value: Any,
        frame: DocumentFrame,
        types: Sequence[str] = CONSTRAINT_TYPES,
    ) -> None:
        """Evaluate given constraint kinds of a property specification."""
        for constraint_type in types:
            if constraint_type not in specification:
                continue
            evaluation, description = split_constraint(specification[constraint_type])
            if not has_source(evaluation):
                continue
            scope = self.context.scope(
                frame,
                name=name,
                newValue=new_value,
                oldValue=old_value,
                propertySpecification=specification,
            )
            result = self.context.run_hook(evaluation, constraint_type, scope, frame)
            if result.result:
                continue
            if has_source(description):
                message = self.context.render_description(description, result, frame)
            else:
                message = (
                    f'Property "{name}" should satisfy constraint "{result.code}" '
                    f'(given "{_as_text(new_value)}"){frame.path_description}.'
                )
            raise ForbiddenError(constraint_type[0].upper() + constraint_type[1:], message)

    def _check_type(
        self,
        value: Any,
        name: str,
        specification: Dict[str, Any],
        old_value: Any,
        frame: DocumentFrame,
    ) -> Tuple[Any, List[str], bool]:
        """Returns the (possibly normalized) value, changed path and whether it vanished."""
        context = self.context
        models = context.models
        type_name = context.special.type
        types = as_list(specification.get("type"))
        changed_path: List[str] = []
        single = len(types) == 1
        path = frame.path_description

        # Objects typed by exactly one model may omit their type.
        if (
            isinstance(value, dict)
            and type_name not in value
            and single
            and isinstance(types[0], str)
            and types[0] in models
        ):
            value[type_name] = types[0]

        for type_declaration in types:
            if isinstance(type_declaration, str) and type_declaration in models:
                if (
                    isinstance(value, dict)
                    and type_name in value
                    and value[type_name] != type_declaration
                    and context.strategy == UpdateStrategy.MIGRATE.value
                    and single
                ):
                    value[type_name] = type_declaration
                    changed_path = frame.path(name, "migrate nested object type")
                if isinstance(value, dict) and value.get(type_name) == type_declaration:
                    checked = self.document_checker.check(
                        value,
                        old_value if isinstance(old_value, dict) else None,
                        frame.path(name),
                    )
                    if checked.changed_path:
                        changed_path = checked.changed_path
                    if not checked.new_document:
                        return None, changed_path, True
                    return checked.new_document, changed_path, False
                if single:
                    raise ForbiddenError(
                        "NestedType",
                        f'Under key "{name}" isn\'t of type "{type_declaration}" '
                        f'(given "{_as_text(value)}" of type {_type_label(value)}){path}.',
                    )
            elif type_declaration == "DateTime":
                if _is_number(value):
                    return value, changed_path, False
                if single:
                    raise ForbiddenError(
                        "PropertyType",
                        f'Property "{name}" isn\'t of (valid) type "DateTime" (given '
                        f'"{_as_text(value)}" of type "{_type_label(value)}"){path}.',
                    )
            elif type_declaration in PRIMITIVE_TYPES:
                if matches_primitive(type_declaration, value):
                    return value, changed_path, False
                if single:
                    raise ForbiddenError(
                        "PropertyType",
                        f'Property "{name}" isn\'t of (valid) type "{type_declaration}" '
                        f'(given "{_as_text(value)}" of type "{_type_label(value)}"){path}.',
                    )
            elif isinstance(type_declaration, str) and type_declaration.startswith(FOREIGN_KEY_PREFIX):
                referenced = models.get(type_declaration[len(FOREIGN_KEY_PREFIX):], {})
                foreign_key_type = referenced.get(context.special.id, {}).get("type", "string")
                if matches_primitive(foreign_key_type, value):
                    return value, changed_path, False
                if single:
                    raise ForbiddenError(
                        "PropertyType",
                        f'Foreign key property "{name}" isn\'t of type "{foreign_key_type}" '
                        f'(given "{_as_text(value)}" of type "{_type_label(value)}"){path}.',
                    )
            elif type_declaration == "any" or deep_equal(value, type_declaration):
                return value, changed_path, False
            elif single:
                raise ForbiddenError(
                    "PropertyType",
                    f'Property "{name}" isn\'t value "{type_declaration}" (given '
                    f'"{_as_text(value)}" of type "{_type_label(value)}"){path}.',
                )

        raise ForbiddenError(
            "PropertyType",
            'None of the specified types "'
            + '", "'.join(str(type_declaration) for type_declaration in types)
            + f'" for property "{name}" matches value "{_as_text(value)}" of type '
            f'"{_type_label(value)}"{path}.',
        )

    def check(
        self,
        value: Any,
        name: str,
        specification: Dict[str, Any],
        old_value: Any,
        frame: DocumentFrame,
    ) -> Tuple[Any, List[str]]:
        """
        Check one value.

        Returns:
            Tuple of (normalized_value, changed_path); a normalized value of
            None means the property has to be removed.

        Raises:
            ForbiddenError: The value violates its specification
        """
        path = frame.path_description
        value, changed_path, vanished = self._check_type(
            value, name, specification, old_value, frame
        )
        if vanished:
            return None, changed_path

        # region range
        if isinstance(value, str):
            minimum = specification.get("minimumLength")
            if minimum is None:
                minimum = specification.get("minimum")
            maximum = specification.get("maximumLength")
            if maximum is None:
                maximum = specification.get("maximum")
            if minimum is not None and len(value) < minimum:
                raise ForbiddenError(
                    "MinimalLength",
                    f'Property "{name}" must have minimal length {minimum} (given '
                    f"{value} with length {len(value)}){path}.",
                )
            if maximum is not None and len(value) > maximum:
                raise ForbiddenError(
                    "MaximalLength",
                    f'Property "{name}" must have maximal length {maximum} (given '
                    f"{value} with length {len(value)}){path}.",
                )
        elif _is_number(value):
            minimum = specification.get("minimum")
            maximum = specification.get("maximum")
            if minimum is not None and value < minimum:
                raise ForbiddenError(
                    "Minimum",
                    f'Property "{name}" (type {specification.get("type")}) must satisfy '
                    f"a minimum of {minimum} (given {value} is too low){path}.",
                )
            if maximum is not None and value > maximum:
                raise ForbiddenError(
                    "Maximum",
                    f'Property "{name}" (type {specification.get("type")}) must satisfy '
                    f"a maximum of {maximum} (given {value} is too high){path}.",
                )
        # endregion

        selection = specification.get("selection")
        if selection:
            options = list(selection.values()) if isinstance(selection, dict) else list(selection)
            if not any(is_same_option(value, option) for option in options):
                raise ForbiddenError(
                    "Selection",
                    f'Property "{name}" (type {specification.get("type")}) should be one '
                    'of "' + '", "'.join(str(option) for option in options)
                    + f'". But is "{value}"{path}.',
                )

        pattern = specification.get("regularExpressionPattern")
        inverted_pattern = specification.get("invertedRegularExpressionPattern")
        if pattern is not None and not re.search(pattern, _as_text(value)):
            raise ForbiddenError(
                "PatternMatch",
                f'Property "{name}" should match regular expression pattern '
                f'{pattern} (given "{value}"){path}.',
            )
        if inverted_pattern is not None and re.search(inverted_pattern, _as_text(value)):
            raise ForbiddenError(
                "InvertedPatternMatch",
                f'Property "{name}" should not match regular expression pattern '
                f'{inverted_pattern} (given "{value}"){path}.',
            )

        self.check_constraints(value, name, specification, old_value, frame)
        if old_value is not None and not deep_equal(value, old_value):
            self.check_constraints(
                value, name, specification, old_value, frame, CONFLICTING_CONSTRAINT_TYPES
            )

        if not deep_equal(value, old_value):
            changed_path = frame.path(name, "value updated")
        return value, changed_path

    def check_array(
        self,
        values: Any,
        name: str,
        specification: Dict[str, Any],
        old_values: Any,
        frame: DocumentFrame,
    ) -> Tuple[List[Any], List[str]]:
        """Check an array typed property element wise."""
        path = frame.path_description
        if not isinstance(values, list):
            raise ForbiddenError(
                "PropertyType",
                f'Property "{name}" isn\'t of type "array -> {specification.get("type")}" '
                f'(given "{_as_text(values)}"){path}.',
            )
        minimum = specification.get("minimumNumber")
        maximum = specification.get("maximumNumber")
        if minimum is not None and len(values) < minimum:
            raise ForbiddenError(
                "MinimumArrayLength",
                f'Property "{name}" (array of length {len(values)}) doesn\'t fullfill '
                f"minimum array length of {minimum}{path}.",
            )
        if maximum is not None and len(values) > maximum:
            raise ForbiddenError(
                "MaximumArrayLength",
                f'Property "{name}" (array of length {len(values)}) doesn\'t fullfill '
                f"maximum array length of {maximum}{path}.",
            )
        self.check_constraints(
            values, name, specification, old_values, frame, ARRAY_CONSTRAINT_TYPES
        )

        item_specification = dict(specification)
        item_type = specification.get("type")
        if isinstance(item_type, list):
            item_specification["type"] = item_type[0]
        else:
            item_specification["type"] = [item_type[:-len("[]")]]

        models = self.context.models
        type_name = self.context.special.type
        item_types = as_list(item_specification["type"])
        if len(item_types) == 1 and isinstance(item_types[0], str) and item_types[0] in models:
            for value in values:
                if isinstance(value, dict) and type_name not in value:
                    value[type_name] = item_types[0]

        checked: List[Any] = []
        for index, value in enumerate(values):
            if value is None:
                continue
            value, _ = self.check(
                value, f"{index + 1}. value in {name}", item_specification, None, frame
            )
            if value is not None:
                checked.append(value)

        changed_path: List[str] = []
        if not (isinstance(old_values, list) and deep_equal(old_values, checked)):
            changed_path = frame.path(name, "array updated")
        return checked, changed_path


def is_array_type(type_declaration: Any) -> bool:
    if isinstance(type_declaration, str):
        return type_declaration.endswith("[]")
    return (
        isinstance(type_declaration, list)
        and bool(type_declaration)
        and isinstance(type_declaration[0], list)
    )

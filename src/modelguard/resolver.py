"""
Model catalog resolution.

Flattens raw model declarations with (multi-parent) inheritance into
self-contained models. Every model name is a node of an explicit graph whose
edges point from a model to its parents; models are merged in topological
order so parents are always resolved before their children.

Example:
    from modelguard.models import ModelConfiguration
    from modelguard.resolver import resolve_models

    configuration = ModelConfiguration(entities={
        "_base": {"createdAt": {"type": "DateTime"}},
        "Entity": {"name": {"type": "string"}},
    })
    models = resolve_models(configuration)
    assert set(models["Entity"]) == {"createdAt", "name"}

Rules:
- `_base` (if declared) is implicitly the first parent of every other model
- parents merge left to right, the child overrides all of them
- mappings merge recursively, any other value (lists included) is replaced
- an inheritance cycle or an unknown parent raises ModelGraphError
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from graphlib import CycleError, TopologicalSorter
from typing import Any, Dict, Iterable, List, Optional, Tuple

from modelguard.errors import (
    CompilationError,
    ExpressionSyntaxError,
    ModelGraphError,
    NamingError,
    SpecificationError,
)
from modelguard.config import get_config
from modelguard.expression import ExpressionEvaluator
from modelguard.logger import ValidationLogger
from modelguard.models import ModelConfiguration

logger = logging.getLogger(__name__)

Model = Dict[str, Any]
Models = Dict[str, Model]

BASE_MODEL_NAME = "_base"

PROPERTY_HOOK_NAMES = (
    "onCreateExecution",
    "onCreateExpression",
    "onUpdateExecution",
    "onUpdateExpression",
)
PROPERTY_CONSTRAINT_NAMES = (
    "constraintExecution",
    "constraintExpression",
    "conflictingConstraintExecution",
    "conflictingConstraintExpression",
    "arrayConstraintExecution",
    "arrayConstraintExpression",
)


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return a new mapping with ``override`` merged recursively into ``base``."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def split_constraint(declaration: Any) -> Tuple[Optional[str], Optional[str]]:
    """Normalize a constraint declaration into ``(evaluation, description)``."""
    if isinstance(declaration, dict):
        return declaration.get("evaluation"), declaration.get("description")
    return declaration, None


def as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


@dataclass
class ModelNode:
    """One declared model and the indices of its parents."""
    name: str
    declaration: Model
    parents: List[int] = field(default_factory=list)


class ModelGraph:
    """
    Arena of declared models with index based parent references.

    Example:
        graph = ModelGraph.build(configuration.entities, "_extends")
        for index in graph.resolution_order():
            print(graph.nodes[index].name)
    """

    def __init__(self, nodes: List[ModelNode]):
        self.nodes = nodes
        self.index = {node.name: position for position, node in enumerate(nodes)}

    @classmethod
    def build(cls, entities: Dict[str, Model], extend_name: str = "_extends") -> "ModelGraph":
        names = list(entities)
        positions = {name: position for position, name in enumerate(names)}
        nodes = []
        for name in names:
            declaration = entities[name]
            parent_names = as_list(
                declaration.get(extend_name) if isinstance(declaration, dict) else None
            )
            if BASE_MODEL_NAME in positions and name != BASE_MODEL_NAME:
                parent_names = [BASE_MODEL_NAME] + [
                    parent for parent in parent_names if parent != BASE_MODEL_NAME
                ]
            parents = []
            for parent_name in parent_names:
                if parent_name == name:
                    raise ModelGraphError(f'Model "{name}" extends itself.')
                if parent_name not in positions:
                    raise ModelGraphError(
                        f'Model "{name}" extends unknown model "{parent_name}".'
                    )
                parents.append(positions[parent_name])
            nodes.append(ModelNode(name=name, declaration=declaration, parents=parents))
        return cls(nodes)

    def resolution_order(self) -> List[int]:
        """Node indices ordered so every parent precedes its children."""
        graph = {position: set(node.parents) for position, node in enumerate(self.nodes)}
        try:
            return list(TopologicalSorter(graph).static_order())
        except CycleError as error:
            cycle = " -> ".join(self.nodes[position].name for position in error.args[1])
            raise ModelGraphError(f"Cyclic model inheritance: {cycle}.") from error


def _check_model_names(configuration: ModelConfiguration) -> None:
    patterns = configuration.properties.name.type_regular_expression_pattern
    for model_name in configuration.entities:
        if not (
            re.search(patterns.public, model_name)
            or re.search(patterns.private, model_name)
        ):
            raise NamingError(model_name, patterns.public, patterns.private)


def _check_expressions(
    model_name: str,
    model: Model,
    configuration: ModelConfiguration,
    evaluator: ExpressionEvaluator,
) -> None:
    special = configuration.special_names

    def check(location: str, source: Any) -> None:
        if not isinstance(source, str) or not source.strip():
            return
        try:
            evaluator.check(source, location.endswith("Expression") or location.endswith("Expressions"))
        except CompilationError as error:
            raise ExpressionSyntaxError(model_name, location, error.message) from error

    def check_specification(prefix: str, specification: Dict[str, Any]) -> None:
        for hook_name in PROPERTY_HOOK_NAMES:
            check(f"{prefix}.{hook_name}", specification.get(hook_name))
        for constraint_name in PROPERTY_CONSTRAINT_NAMES:
            if constraint_name in specification:
                evaluation, description = split_constraint(specification[constraint_name])
                check(f"{prefix}.{constraint_name}", evaluation)
                check(f"{prefix}.{constraint_name}.descriptionExpression", description)

    for hook_name in (
        special.create.execution,
        special.create.expression,
        special.update.execution,
        special.update.expression,
    ):
        check(hook_name, model.get(hook_name))
    for constraint_name in (special.constraint.execution, special.constraint.expression):
        for declaration in as_list(model.get(constraint_name)):
            evaluation, description = split_constraint(declaration)
            check(constraint_name, evaluation)
            check(f"{constraint_name}.descriptionExpression", description)

    model_level_names = set(special.model_level_names())
    for name, specification in model.items():
        if name in model_level_names or not isinstance(specification, dict):
            continue
        if name == special.attachment:
            for type_name, file_specification in specification.items():
                check_specification(f"{name}.{type_name}", file_specification)
        else:
            check_specification(name, specification)


def _apply_default_specifications(
    model_name: str, model: Model, configuration: ModelConfiguration
) -> Model:
    special = configuration.special_names
    defaults = configuration.properties
    model_level_names = set(special.model_level_names())
    for name, specification in list(model.items()):
        if name in model_level_names:
            continue
        if name == special.additional and specification is None:
            continue
        if not isinstance(specification, dict):
            raise SpecificationError(
                f'Specification of "{name}" in model "{model_name}" has to be '
                f"a mapping (given {specification!r})."
            )
        if name == special.attachment:
            for type_name, file_specification in specification.items():
                if not isinstance(file_specification, dict):
                    raise SpecificationError(
                        f'Attachment type "{type_name}" in model "{model_name}"'
                        f" has to be a mapping (given {file_specification!r})."
                    )
                specification[type_name] = deep_merge(
                    defaults.default_attachment_specification, file_specification
                )
        else:
            model[name] = deep_merge(defaults.default_specification, specification)
    return model


def resolve_models(
    configuration: ModelConfiguration,
    validate_expressions: Optional[bool] = None,
) -> Models:
    """
    Flatten all models of given configuration.

    Args:
        configuration: Model configuration holding the raw entities
        validate_expressions: Compile every hook/constraint (defaults to config)

    Returns:
        Mapping of model name to resolved model

    Raises:
        NamingError: A model name matches neither naming pattern
        ModelGraphError: Cyclic inheritance or an unknown parent
        SpecificationError: A property specification is not a mapping
        ExpressionSyntaxError: A hook or constraint does not compile
    """
    if validate_expressions is None:
        validate_expressions = get_config().validate_expressions

    _check_model_names(configuration)
    for model_name, declaration in configuration.entities.items():
        if not isinstance(declaration, dict):
            raise SpecificationError(
                f'Model "{model_name}" has to be a mapping (given {declaration!r}).'
            )

    extend_name = configuration.special_names.extend
    graph = ModelGraph.build(configuration.entities, extend_name)

    flattened: Dict[int, Model] = {}
    for position in graph.resolution_order():
        node = graph.nodes[position]
        merged: Model = {}
        for parent in node.parents:
            merged = deep_merge(merged, flattened[parent])
        own = {key: value for key, value in node.declaration.items() if key != extend_name}
        flattened[position] = deep_merge(merged, own)

    models: Models = {}
    evaluator = ExpressionEvaluator()
    for position, node in enumerate(graph.nodes):
        model = _apply_default_specifications(node.name, flattened[position], configuration)
        if validate_expressions:
            _check_expressions(node.name, model, configuration, evaluator)
        models[node.name] = model

    logger.debug("Resolved %d models", len(models))
    ValidationLogger().log_catalog_resolved(len(models), sorted(models))
    return models


def determine_generic_indexable_property_names(
    configuration: ModelConfiguration, model: Model
) -> List[str]:
    """
    Determine all property names of given model which are indexable generically.

    Explicitly indexed properties are always included. Others are included
    unless they opt out via ``index: false``, are reserved or system names,
    or hold arrays or nested models. The id and revision names are always
    part of the (sorted) result.
    """
    special = configuration.special_names
    excluded = set(configuration.reserved_names) | {
        special.additional,
        special.allowed_role,
        special.attachment,
        special.conflict,
        special.constraint.execution,
        special.constraint.expression,
        special.deleted,
        special.deleted_conflict,
        special.extend,
        special.id,
        special.maximum_aggregated_size,
        special.minimum_aggregated_size,
        special.old_type,
        special.revision,
        special.revisions,
        special.revisions_information,
        special.type,
    }

    def is_complex(type_declaration: Any) -> bool:
        if isinstance(type_declaration, str):
            return type_declaration.endswith("[]") or type_declaration in configuration.entities
        if isinstance(type_declaration, list):
            return bool(type_declaration) and isinstance(type_declaration[0], list)
        return False

    names = set()
    for name, specification in model.items():
        if not isinstance(specification, dict):
            continue
        if specification.get("index"):
            names.add(name)
        elif not (
            ("index" in specification and not specification["index"])
            or name in excluded
            or is_complex(specification.get("type"))
        ):
            names.add(name)
    names.update((special.id, special.revision))
    return sorted(names)


def iter_property_names(configuration: ModelConfiguration, model: Model) -> Iterable[str]:
    """Yield names of a resolved model which declare properties."""
    model_level_names = set(configuration.special_names.model_level_names())
    for name in model:
        if name not in model_level_names and name != configuration.special_names.additional:
            yield name

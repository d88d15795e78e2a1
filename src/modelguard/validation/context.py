"""
Per-call validation state shared by the document and property checkers.

A ValidationContext is created once per validated mutation. It owns the
evaluation scope handed to hooks and constraints, the active update strategy
and the helpers bound into every scope. A DocumentFrame describes one
(possibly nested) document currently being checked.
"""

from __future__ import annotations

import copy
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from modelguard.errors import CompilationError, ForbiddenError, RuntimeEvaluationError
from modelguard.expression import EvaluationResult, ExpressionEvaluator
from modelguard.models import ModelConfiguration, SpecialPropertyNames, UpdateStrategy
from modelguard.resolver import Model, Models, as_list


def serialize(value: Any) -> str:
    """Human readable JSON, exposed to hooks as ``serialize``."""
    return json.dumps(value, indent=4, default=str)


def fingerprint(value: Any) -> str:
    """Canonical form used for deep structural equality."""
    return json.dumps(value, sort_keys=True, default=str)


def deep_equal(first: Any, second: Any) -> bool:
    return first is second or fingerprint(first) == fingerprint(second)


def has_source(source: Any) -> bool:
    return isinstance(source, str) and bool(source.strip())


def get_filename_by_prefix(attachments: Dict[str, Any], prefix: Optional[str] = None) -> Optional[str]:
    """First attachment name starting with given prefix (or the first at all)."""
    if prefix:
        for name in attachments:
            if name.startswith(prefix):
                return name
        return None
    for name in attachments:
        return name
    return None


@dataclass
class DocumentFrame:
    """One document (top level or nested) under validation."""
    new_document: Dict[str, Any]
    old_document: Optional[Dict[str, Any]]
    parent_names: List[str] = field(default_factory=list)
    model_name: str = ""
    model: Model = field(default_factory=dict)

    @property
    def path_description(self) -> str:
        if self.parent_names:
            return " in " + " -> ".join(self.parent_names)
        return ""

    def path(self, *names: str) -> List[str]:
        return self.parent_names + list(names)

    def scope(self) -> Dict[str, Any]:
        return {
            "newDocument": self.new_document,
            "oldDocument": self.old_document,
            "modelName": self.model_name,
            "model": self.model,
        }


class ValidationContext:
    """
    Everything a single validation call needs besides the documents.

    Example:
        context = ValidationContext(models, configuration, "incremental")
        checker = DocumentChecker(context)
        checked = checker.check(new_document, old_document)
    """

    def __init__(
        self,
        models: Models,
        configuration: ModelConfiguration,
        update_strategy: str = UpdateStrategy.STRICT.value,
        user_context: Optional[Dict[str, Any]] = None,
        security_settings: Optional[Dict[str, Any]] = None,
        evaluator: Optional[ExpressionEvaluator] = None,
    ):
        self.models = models
        self.configuration = configuration
        self.update_strategy = update_strategy
        self.user_context = user_context or {}
        self.security_settings = security_settings or {}
        self.evaluator = evaluator or ExpressionEvaluator()
        self.root_document: Dict[str, Any] = {}

        self.now = datetime.now(timezone.utc)
        self.now_utc_timestamp = self.now.timestamp()
        self._configuration_scope = configuration.model_dump(by_alias=True, mode="json")
        self._models_scope: Optional[Models] = None

        self.old_model_mapping: Dict[str, str] = {}
        if update_strategy == UpdateStrategy.MIGRATE.value:
            for model_name, model in models.items():
                for old_name in as_list(model.get(self.special.old_type)):
                    self.old_model_mapping[old_name] = model_name

    @property
    def special(self) -> SpecialPropertyNames:
        return self.configuration.special_names

    @property
    def strategy(self) -> str:
        return self.update_strategy

    def matches_public_type_pattern(self, value: Any) -> bool:
        pattern = self.configuration.properties.name.type_regular_expression_pattern.public
        return isinstance(value, str) and re.search(pattern, value) is not None

    def attachment_with_prefix_exists(self, name_prefix: str) -> bool:
        attachments = self.root_document.get(self.special.attachment)
        if not isinstance(attachments, dict):
            return False
        name = get_filename_by_prefix(attachments, name_prefix)
        if name is None or not isinstance(attachments[name], dict):
            return False
        entry = attachments[name]
        return bool(entry.get("stub")) or entry.get("data") is not None

    @property
    def models_scope(self) -> Models:
        """Copy of the catalog handed to hooks; the resolved one stays untouched."""
        if self._models_scope is None:
            self._models_scope = copy.deepcopy(self.models)
        return self._models_scope

    def scope(self, frame: DocumentFrame, **extra: Any) -> Dict[str, Any]:
        """Variables visible to a hook or constraint."""
        special = self.special
        scope: Dict[str, Any] = {
            "attachmentWithPrefixExists": self.attachment_with_prefix_exists,
            "getFilenameByPrefix": get_filename_by_prefix,
            "idName": special.id,
            "modelConfiguration": self._configuration_scope,
            "models": self.models_scope,
            "now": self.now,
            "nowUTCTimestamp": self.now_utc_timestamp,
            "revisionName": special.revision,
            "securitySettings": self.security_settings,
            "serialize": serialize,
            "specialNames": self._configuration_scope["property"]["name"]["special"],
            "typeName": special.type,
            "userContext": self.user_context,
        }
        scope.update(frame.scope())
        if frame.model_name in scope["models"]:
            scope["model"] = scope["models"][frame.model_name]
        scope.update(extra)
        return scope

    def run_hook(
        self,
        source: str,
        hook_type: str,
        scope: Dict[str, Any],
        frame: DocumentFrame,
        subject: str = "",
    ) -> EvaluationResult:
        """
        Evaluate a hook or constraint, turning evaluation errors into rejections.

        ``hook_type`` decides between expression and execution semantics.
        """
        is_expression = hook_type.endswith("Expression") or hook_type.endswith("Expressions")
        try:
            return self.evaluator.evaluate(source, scope, is_expression)
        except CompilationError as error:
            raise ForbiddenError(
                "Compilation",
                f'Hook "{hook_type}" has invalid code "{error.code}"{subject}: '
                f"{error.message}{frame.path_description}.",
            ) from error
        except RuntimeEvaluationError as error:
            raise ForbiddenError(
                "Runtime",
                f'Hook "{hook_type}" has thrown an error with code "{error.code}"'
                f"{subject}: {error.message}{frame.path_description}.",
            ) from error

    def render_description(
        self, description: str, result: EvaluationResult, frame: DocumentFrame
    ) -> str:
        """Evaluate a constraint description expression in the constraint's scope."""
        rendered = self.run_hook(
            description, "descriptionExpression", result.scope, frame
        ).result
        return str(rendered)

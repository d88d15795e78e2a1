"""
Document Checker.

Validates one document (and, recursively, every nested document) against its
resolved model and computes the normalized result. Phases, in order:

1. model type (optionally migrated from an old type name)
2. property renames (``oldName``, migrate only) and document hooks
3. per property hooks and default/presence reconciliation
4. dropping unchanged values (incremental only)
5. every given property: writable, mutable, nullable, content
6. whole model constraints
7. attachments

Example:
    context = ValidationContext(models, configuration, update_strategy="fillUp")
    checked = DocumentChecker(context).check(new_document, old_document)
    checked.new_document  # normalized document
    checked.changed_path  # last change the checker applied or detected
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set

from modelguard.errors import ForbiddenError
from modelguard.logger import determine_representation
from modelguard.models import UpdateStrategy
from modelguard.resolver import as_list, iter_property_names, split_constraint
from modelguard.validation.attachments import AttachmentChecker, is_removal, match_type
from modelguard.validation.context import (
    DocumentFrame,
    ValidationContext,
    deep_equal,
    has_source,
    serialize,
)
from modelguard.validation.property import PropertyChecker, is_array_type

logger = logging.getLogger(__name__)

CREATE_HOOK_TYPES = ("onCreateExecution", "onCreateExpression")
UPDATE_HOOK_TYPES = ("onUpdateExecution", "onUpdateExpression")


@dataclass
class CheckedDocument:
    """Normalized document plus the path of the last change applied to it."""
    new_document: Dict[str, Any]
    changed_path: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.changed_path)


class DocumentChecker:
    """
    Recursive document validation.

    One instance serves one validation call; nested documents reuse it.
    """

    def __init__(self, context: ValidationContext):
        self.context = context
        self.properties = PropertyChecker(context, self)
        self.attachments = AttachmentChecker(context, self.run_property_hooks)

    # =========================================================================
    # Hooks
    # =========================================================================

    def run_property_hooks(
        self,
        specification: Dict[str, Any],
        document: Dict[str, Any],
        old_document: Optional[Dict[str, Any]],
        name: str,
        frame: DocumentFrame,
        engine_populated: Set[str],
    ) -> None:
        """Run create hooks (creation only), normalization and update hooks."""
        context = self.context
        subject = f' for property "{name}"'
        if old_document is None:
            for hook_type in CREATE_HOOK_TYPES:
                if not has_source(specification.get(hook_type)):
                    continue
                scope = context.scope(
                    frame,
                    name=name,
                    newValue=document.get(name),
                    oldValue=None,
                    propertySpecification=specification,
                )
                result = context.run_hook(specification[hook_type], hook_type, scope, frame, subject)
                if result.result is not None:
                    document[name] = result.result
                    engine_populated.add(name)

        if name in document:
            value = document[name]
            if specification.get("trim") and isinstance(value, str):
                value = document[name] = value.strip()
            if specification.get("emptyEqualsToNull") and (
                value == "" or value == [] or value == {}
            ):
                document[name] = None

        for hook_type in UPDATE_HOOK_TYPES:
            if not has_source(specification.get(hook_type)):
                continue
            scope = context.scope(
                frame,
                name=name,
                newValue=document.get(name),
                oldValue=old_document.get(name) if old_document else None,
                propertySpecification=specification,
            )
            result = context.run_hook(specification[hook_type], hook_type, scope, frame, subject)
            if result.result is not None or name in document:
                document[name] = result.result
                if old_document is None:
                    engine_populated.add(name)

    def _run_document_hooks(self, frame: DocumentFrame, hook_types: Sequence[str]) -> None:
        context = self.context
        for hook_type in hook_types:
            if not has_source(frame.model.get(hook_type)):
                continue
            scope = context.scope(frame, id=frame.new_document.get(context.special.id))
            result = context.run_hook(
                frame.model[hook_type],
                hook_type,
                scope,
                frame,
                f' for document "{frame.model_name}"',
            ).result
            if result is not None:
                if not isinstance(result, dict):
                    raise ForbiddenError(
                        "Type",
                        f'Hook "{hook_type}" has to return a document (given '
                        f'"{serialize(result)}"){frame.path_description}.',
                    )
                frame.new_document = result
            self._check_model_type(frame)
            if not frame.parent_names:
                context.root_document = frame.new_document

    # =========================================================================
    # Phases
    # =========================================================================

    def _check_model_type(self, frame: DocumentFrame) -> List[str]:
        context = self.context
        type_name = context.special.type
        new_document, old_document = frame.new_document, frame.old_document
        path = frame.path_description

        if type_name not in new_document:
            if (
                old_document is not None
                and type_name in old_document
                and context.strategy in (UpdateStrategy.FILL_UP.value, UpdateStrategy.MIGRATE.value)
            ):
                new_document[type_name] = old_document[type_name]
            else:
                raise ForbiddenError(
                    "Type",
                    f'You have to specify a model type via property "{type_name}"{path}.',
                )
        if not (frame.parent_names or context.matches_public_type_pattern(new_document[type_name])):
            public = context.configuration.properties.name.type_regular_expression_pattern.public
            raise ForbiddenError(
                "TypeName",
                f'You have to specify a model type which matches "{public}" as public '
                f'type (given "{new_document[type_name]}"){path}.',
            )
        changed_path: List[str] = []
        model_name = new_document[type_name]
        if not isinstance(model_name, str) or model_name not in context.models:
            if isinstance(model_name, str) and model_name in context.old_model_mapping:
                new_document[type_name] = context.old_model_mapping[model_name]
                changed_path = frame.path(type_name, "migrate model type")
            else:
                raise ForbiddenError(
                    "Model", f'Given model "{model_name}" is not specified{path}.'
                )
        frame.model_name = new_document[type_name]
        frame.model = context.models[frame.model_name]
        return changed_path

    def _reconcile_presence(
        self,
        frame: DocumentFrame,
        name: str,
        specification: Dict[str, Any],
        engine_populated: Set[str],
    ) -> List[str]:
        strategy = self.context.strategy
        new_document, old_document = frame.new_document, frame.old_document
        in_old = old_document is not None and name in old_document
        changed_path: List[str] = []

        if specification.get("default") is None:
            if not (
                specification.get("nullable")
                or name in new_document
                or (in_old and strategy)
            ):
                raise ForbiddenError(
                    "MissingProperty",
                    f'Missing property "{name}"{frame.path_description}.',
                )
            if name not in new_document and in_old:
                if strategy == UpdateStrategy.FILL_UP.value:
                    new_document[name] = copy.deepcopy(old_document[name])
                elif not strategy:
                    changed_path = frame.path(name, "property removed")
        elif new_document.get(name) is None:
            if in_old:
                if strategy == UpdateStrategy.FILL_UP.value:
                    new_document[name] = copy.deepcopy(old_document[name])
                elif strategy == UpdateStrategy.MIGRATE.value:
                    new_document[name] = copy.deepcopy(specification["default"])
                    changed_path = frame.path(name, "migrate default value")
            else:
                new_document[name] = copy.deepcopy(specification["default"])
                changed_path = frame.path(name, "add default value")
                engine_populated.add(name)
        return changed_path

    def _system_names(self) -> Set[str]:
        special = self.context.special
        return set(self.context.configuration.reserved_names) | set(special.system_names())

    def _check_writable_mutable_nullable(
        self,
        specification: Dict[str, Any],
        new_document: Dict[str, Any],
        old_document: Optional[Dict[str, Any]],
        name: str,
        frame: DocumentFrame,
        engine_populated: Set[str],
    ) -> bool:
        """Returns True if given property needs no further checks."""
        context = self.context
        special = context.special
        incremental = context.strategy == UpdateStrategy.INCREMENTAL.value
        path = frame.path_description

        if not specification.get("writable", True):
            if old_document is not None:
                if name in old_document and deep_equal(new_document[name], old_document[name]):
                    if name != special.id and incremental:
                        del new_document[name]
                    return True
                raise ForbiddenError(
                    "Readonly",
                    f'Property "{name}" is not writable (old document '
                    f'"{determine_representation(old_document)}"){path}.',
                )
            if name not in engine_populated:
                raise ForbiddenError("Readonly", f'Property "{name}" is not writable{path}.')

        if (
            not specification.get("mutable", True)
            and old_document is not None
            and name in old_document
        ):
            if deep_equal(new_document[name], old_document[name]):
                if incremental and name not in (
                    set(context.configuration.reserved_names)
                    | {special.deleted, special.id, special.revision}
                ):
                    del new_document[name]
                return True
            if context.strategy != UpdateStrategy.MIGRATE.value:
                raise ForbiddenError(
                    "Immutable",
                    f'Property "{name}" is not writable (old document '
                    f'"{determine_representation(old_document)}"){path}.',
                )

        if new_document[name] is None:
            if specification.get("nullable"):
                del new_document[name]
                return True
            raise ForbiddenError("NotNull", f'Property "{name}" should not be "null"{path}.')
        return False

    def _check_given_data(
        self,
        frame: DocumentFrame,
        property_names: List[str],
        additional: Optional[Dict[str, Any]],
        engine_populated: Set[str],
    ) -> List[str]:
        context = self.context
        special = context.special
        new_document, old_document = frame.new_document, frame.old_document
        model = frame.model
        changed_path: List[str] = []

        if old_document is not None and context.strategy == UpdateStrategy.INCREMENTAL.value:
            system_names = self._system_names()
            for name in list(new_document):
                if (
                    name in old_document
                    and name not in system_names
                    and deep_equal(new_document[name], old_document[name])
                ):
                    del new_document[name]

        skipped = set(context.configuration.reserved_names) | {
            special.revision,
            special.conflict,
            special.deleted,
            special.deleted_conflict,
            special.local_sequence,
            special.revisions,
            special.revisions_information,
            special.strategy,
        }
        for name in list(new_document):
            if name in skipped:
                continue
            if name in property_names:
                specification = model[name]
            elif name in (special.id, special.type):
                continue
            elif additional:
                specification = additional
            elif context.strategy == UpdateStrategy.MIGRATE.value:
                del new_document[name]
                changed_path = frame.path(name, "migrate removed property")
                continue
            else:
                raise ForbiddenError(
                    "Property",
                    f'Given property "{name}" isn\'t specified in model '
                    f'"{frame.model_name}"{frame.path_description}.',
                )

            if name == special.attachment:
                attachments = new_document[name]
                if not isinstance(attachments, dict):
                    continue
                old_attachments = None
                if old_document is not None:
                    old_attachments = old_document.get(name)
                    if not isinstance(old_attachments, dict):
                        old_attachments = {}
                for file_name in list(attachments):
                    if is_removal(attachments[file_name]):
                        continue
                    type_pattern = match_type(file_name, specification)
                    if type_pattern is not None:
                        self._check_writable_mutable_nullable(
                            specification[type_pattern],
                            attachments,
                            old_attachments,
                            file_name,
                            frame,
                            engine_populated,
                        )
                continue

            nulled = new_document[name] is None
            if self._check_writable_mutable_nullable(
                specification, new_document, old_document, name, frame, engine_populated
            ):
                if nulled and old_document is not None and name in old_document:
                    changed_path = frame.path(name, "delete property")
                continue

            old_value = old_document.get(name) if old_document is not None else None
            if is_array_type(specification.get("type")):
                new_document[name], path = self.properties.check_array(
                    new_document[name], name, specification, old_value, frame
                )
                if path:
                    changed_path = path
                continue

            value, path = self.properties.check(
                new_document[name], name, specification, old_value, frame
            )
            if path:
                changed_path = path
            if value is None:
                if old_value is not None:
                    changed_path = frame.path(name, "property removed")
                del new_document[name]
            else:
                new_document[name] = value
        return changed_path

    def _check_model_constraints(self, frame: DocumentFrame) -> None:
        context = self.context
        for constraint_type in (
            context.special.constraint.execution,
            context.special.constraint.expression,
        ):
            for declaration in as_list(frame.model.get(constraint_type)):
                evaluation, description = split_constraint(declaration)
                if not has_source(evaluation):
                    continue
                result = context.run_hook(
                    evaluation, constraint_type, context.scope(frame), frame
                )
                if result.result:
                    continue
                kind = constraint_type.lstrip("_")
                if has_source(description):
                    message = context.render_description(description, result, frame)
                else:
                    message = (
                        f'Model "{frame.model_name}" should satisfy constraint '
                        f'"{result.code}" (given "{determine_representation(frame.new_document)}")'
                        f"{frame.path_description}."
                    )
                raise ForbiddenError(kind[0].upper() + kind[1:], message)

    # =========================================================================
    # Entry point
    # =========================================================================

    def check(
        self,
        new_document: Dict[str, Any],
        old_document: Optional[Dict[str, Any]] = None,
        parent_names: Sequence[str] = (),
    ) -> CheckedDocument:
        """
        Check given document against its model.

        Args:
            new_document: Proposed document (modified in place)
            old_document: Currently stored document, if any
            parent_names: Property path of a nested document

        Returns:
            CheckedDocument with the normalized document

        Raises:
            ForbiddenError: The document violates its model
        """
        context = self.context
        special = context.special
        frame = DocumentFrame(new_document, old_document, list(parent_names))
        if not frame.parent_names:
            context.root_document = new_document
        engine_populated: Set[str] = set()

        changed_path = self._check_model_type(frame)

        if context.strategy == UpdateStrategy.MIGRATE.value:
            for name in iter_property_names(context.configuration, frame.model):
                for old_name in as_list(frame.model[name].get("oldName")):
                    if old_name in frame.new_document:
                        frame.new_document[name] = frame.new_document.pop(old_name)
                        changed_path = frame.path(name, "migrate renamed property")

        if old_document is None:
            self._run_document_hooks(frame, (special.create.execution, special.create.expression))
        self._run_document_hooks(frame, (special.update.execution, special.update.expression))

        property_names = list(iter_property_names(context.configuration, frame.model))
        additional = frame.model.get(special.additional) or None
        hooked_names = list(property_names)
        if additional:
            hooked_names += [name for name in frame.new_document if name not in property_names]

        for name in hooked_names:
            if name == special.attachment:
                path = self.attachments.prepare(frame, engine_populated)
            else:
                specification = frame.model[name] if name in property_names else additional
                self.run_property_hooks(
                    specification,
                    frame.new_document,
                    frame.old_document,
                    name,
                    frame,
                    engine_populated,
                )
                path = self._reconcile_presence(frame, name, specification, engine_populated)
            if path:
                changed_path = path

        path = self._check_given_data(frame, property_names, additional, engine_populated)
        if path:
            changed_path = path

        self._check_model_constraints(frame)

        path = self.attachments.check(frame)
        if path:
            changed_path = path

        if (
            not changed_path
            and old_document is not None
            and context.strategy == UpdateStrategy.MIGRATE.value
        ):
            for name in old_document:
                if name not in frame.new_document:
                    changed_path = frame.path(name, "migrate removed property")

        logger.debug(
            "Checked %s document%s (changed: %s)",
            frame.model_name,
            frame.path_description,
            " -> ".join(changed_path) or "nothing",
        )
        return CheckedDocument(new_document=frame.new_document, changed_path=changed_path)

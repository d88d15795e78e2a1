"""
Attachment checks.

Attachments are a mapping of file name to descriptor
(``{"content_type": ..., "data": <base64>}`` or a stored stub
``{"content_type": ..., "stub": true, "length": ...}``). A model declares
attachment types as a mapping of file name pattern to file specification;
every attachment has to match exactly one type (the first matching wins).
"""

from __future__ import annotations

import copy
import logging
import re
from typing import Any, Dict, List, Optional, Set

from modelguard.errors import ForbiddenError
from modelguard.models import UpdateStrategy
from modelguard.validation.context import DocumentFrame, ValidationContext

logger = logging.getLogger(__name__)

CARRY_FORWARD_STRATEGIES = (UpdateStrategy.FILL_UP.value, UpdateStrategy.MIGRATE.value)


def is_removal(entry: Any) -> bool:
    """Whether given descriptor marks its attachment for removal."""
    return entry is None or (isinstance(entry, dict) and "data" in entry and entry["data"] is None)


def same_content(entry: Any, old_entry: Any) -> bool:
    return (
        isinstance(entry, dict)
        and isinstance(old_entry, dict)
        and entry.get("content_type") == old_entry.get("content_type")
        and entry.get("data") == old_entry.get("data")
    )


def attachment_size(entry: Dict[str, Any]) -> int:
    """Byte size of an attachment (stub length or decoded base64 data)."""
    if "length" in entry:
        return int(entry["length"] or 0)
    data = entry.get("data")
    if not isinstance(data, str):
        return 0
    data = re.sub(r"\s", "", data)
    padding = len(data) - len(data.rstrip("="))
    return len(data) * 3 // 4 - padding


def count_bound(specification: Dict[str, Any], name: str) -> Optional[int]:
    """Count bounds may be declared as ``minimumNumber`` or ``minimum``."""
    value = specification.get(f"{name}Number")
    if value is None:
        value = specification.get(name)
    return value


def match_type(file_name: str, types: Dict[str, Any]) -> Optional[str]:
    for type_pattern in types:
        if re.search(type_pattern, file_name):
            return type_pattern
    return None


class AttachmentChecker:
    """
    Reconciles and validates the attachments of one document.

    ``prepare`` runs with the other property hooks (hooks, defaults, carry
    forward); ``check`` runs after the whole model constraints.
    """

    def __init__(self, context: ValidationContext, hook_runner):
        self.context = context
        self.hook_runner = hook_runner

    @property
    def name(self) -> str:
        return self.context.special.attachment

    def prepare(self, frame: DocumentFrame, engine_populated: Set[str]) -> List[str]:
        """Run attachment hooks and apply defaults or carried forward files."""
        name = self.name
        new_document, old_document = frame.new_document, frame.old_document
        changed_path: List[str] = []
        if new_document.get(name) is None:
            new_document[name] = {}
        if not isinstance(new_document[name], dict):
            raise ForbiddenError(
                "AttachmentType",
                f"given attachment has invalid type{frame.path_description}.",
            )
        attachments = new_document[name]
        old_attachments = None
        if old_document is not None:
            old_attachments = old_document.get(name)
            if not isinstance(old_attachments, dict):
                old_attachments = {}

        for type_pattern, specification in frame.model[name].items():
            new_file_names = [
                file_name
                for file_name, entry in attachments.items()
                if not is_removal(entry) and re.search(type_pattern, file_name)
            ]
            old_file_names: List[str] = []
            if old_attachments is not None:
                old_file_names = [
                    file_name
                    for file_name, entry in old_attachments.items()
                    if not is_removal(entry)
                    and not is_removal(attachments.get(file_name, {}))
                    and re.search(type_pattern, file_name)
                ]

            for file_name in new_file_names:
                self.hook_runner(
                    specification, attachments, old_attachments, file_name, frame, engine_populated
                )

            carry_forward = (
                self.context.strategy in CARRY_FORWARD_STRATEGIES
                and not new_file_names
                and old_file_names
            )
            if specification.get("default") is None:
                if not (specification.get("nullable") or new_file_names or old_file_names):
                    raise ForbiddenError(
                        "AttachmentPresence",
                        f'Missing attachment for type "{type_pattern}"{frame.path_description}.',
                    )
            elif not new_file_names and not old_file_names:
                for file_name, entry in specification["default"].items():
                    attachments[file_name] = copy.deepcopy(entry)
                    changed_path = frame.path(name, type_pattern, "add default file")
                continue
            if carry_forward:
                for file_name in old_file_names:
                    attachments[file_name] = copy.deepcopy(old_attachments[file_name])
        return changed_path

    def check(self, frame: DocumentFrame) -> List[str]:
        """Validate the attachments of given document."""
        name = self.name
        new_document, old_document = frame.new_document, frame.old_document
        path = frame.path_description
        changed_path: List[str] = []
        if name not in new_document:
            return changed_path

        attachments = new_document[name]
        if not isinstance(attachments, dict):
            raise ForbiddenError("AttachmentType", f"given attachment has invalid type{path}.")

        strategy = self.context.strategy
        removed: Set[str] = set()
        old_attachments = old_document.get(name) if old_document is not None else None
        if not isinstance(old_attachments, dict):
            old_attachments = None

        # region migrate old attachments
        if old_attachments is not None:
            for file_name, old_entry in old_attachments.items():
                if file_name in attachments:
                    entry = attachments[file_name]
                    if is_removal(entry) or same_content(entry, old_entry):
                        if is_removal(entry):
                            removed.add(file_name)
                            changed_path = frame.path(name, file_name, "attachment removed")
                        if strategy == UpdateStrategy.INCREMENTAL.value:
                            del attachments[file_name]
                    else:
                        changed_path = frame.path(name, file_name, "attachment updated")
                elif strategy in CARRY_FORWARD_STRATEGIES:
                    attachments[file_name] = old_entry
                elif not strategy:
                    changed_path = frame.path(name, file_name, "attachment removed")
        for file_name in list(attachments):
            entry = attachments[file_name]
            if is_removal(entry):
                removed.add(file_name)
                del attachments[file_name]
            elif not (
                old_attachments is not None
                and same_content(entry, old_attachments.get(file_name))
            ):
                changed_path = frame.path(name, file_name, "attachment updated")
        # endregion

        if not attachments:
            del new_document[name]

        types: Dict[str, Any] = frame.model.get(name) or {}
        mapping: Dict[str, List[str]] = {type_pattern: [] for type_pattern in types}
        for file_name in attachments:
            type_pattern = match_type(file_name, types)
            if type_pattern is None:
                raise ForbiddenError(
                    "AttachmentTypeMatch",
                    'None of the specified attachment types ("'
                    + '", "'.join(types)
                    + f'") matches given one ("{file_name}"){path}.',
                )
            mapping[type_pattern].append(file_name)

        # Unchanged files dropped under "incremental" still count.
        retained: Dict[str, int] = {type_pattern: 0 for type_pattern in types}
        if strategy == UpdateStrategy.INCREMENTAL.value and old_attachments is not None:
            for file_name, old_entry in old_attachments.items():
                if file_name in attachments or file_name in removed or is_removal(old_entry):
                    continue
                type_pattern = match_type(file_name, types)
                if type_pattern is not None:
                    retained[type_pattern] += 1

        sum_of_aggregated_sizes = 0
        for type_pattern, file_names in mapping.items():
            specification = types[type_pattern]
            number = len(file_names) + retained[type_pattern]
            minimum = count_bound(specification, "minimum")
            maximum = count_bound(specification, "maximum")
            if maximum is not None and number > maximum:
                raise ForbiddenError(
                    "AttachmentMaximum",
                    f"given number of attachments ({number}) doesn't satisfy specified "
                    f'maximum of {maximum} from type "{type_pattern}"{path}.',
                )
            if number == 0 and ((minimum or 0) > 0 or specification.get("nullable") is False):
                raise ForbiddenError(
                    "AttachmentPresence",
                    f'Missing attachment for type "{type_pattern}"{path}.',
                )
            if minimum is not None and number < minimum:
                raise ForbiddenError(
                    "AttachmentMinimum",
                    f"given number of attachments ({number}) doesn't satisfy specified "
                    f'minimum of {minimum} from type "{type_pattern}"{path}.',
                )

            aggregated_size = 0
            for file_name in file_names:
                entry = attachments[file_name]
                self._check_file(file_name, entry, type_pattern, specification, path)
                size = attachment_size(entry)
                minimum_size = specification.get("minimumSize")
                maximum_size = specification.get("maximumSize")
                if minimum_size is not None and size < minimum_size:
                    raise ForbiddenError(
                        "AttachmentMinimumSize",
                        f"given attachment size {size} byte doesn't satisfy specified "
                        f"minimum of {minimum_size} byte{path}.",
                    )
                if maximum_size is not None and size > maximum_size:
                    raise ForbiddenError(
                        "AttachmentMaximumSize",
                        f"given attachment size {size} byte doesn't satisfy specified "
                        f"maximum of {maximum_size} byte{path}.",
                    )
                aggregated_size += size

            minimum_aggregated = specification.get("minimumAggregatedSize")
            maximum_aggregated = specification.get("maximumAggregatedSize")
            if minimum_aggregated is not None and aggregated_size < minimum_aggregated:
                raise ForbiddenError(
                    "AttachmentAggregatedMinimumSize",
                    f'given aggregated size of attachments from type "{type_pattern}" '
                    f"{aggregated_size} byte doesn't satisfy specified minimum of "
                    f"{minimum_aggregated} byte{path}.",
                )
            if maximum_aggregated is not None and aggregated_size > maximum_aggregated:
                raise ForbiddenError(
                    "AttachmentAggregatedMaximumSize",
                    f'given aggregated size of attachments from type "{type_pattern}" '
                    f"{aggregated_size} byte doesn't satisfy specified maximum of "
                    f"{maximum_aggregated} byte{path}.",
                )
            sum_of_aggregated_sizes += aggregated_size

        special = self.context.special
        model_minimum = frame.model.get(special.minimum_aggregated_size)
        model_maximum = frame.model.get(special.maximum_aggregated_size)
        if model_minimum is not None and sum_of_aggregated_sizes < model_minimum:
            raise ForbiddenError(
                "AggregatedMinimumSize",
                f"given aggregated size {sum_of_aggregated_sizes} byte doesn't satisfy "
                f"specified minimum of {model_minimum} byte{path}.",
            )
        if model_maximum is not None and sum_of_aggregated_sizes > model_maximum:
            raise ForbiddenError(
                "AggregatedMaximumSize",
                f"given aggregated size {sum_of_aggregated_sizes} byte doesn't satisfy "
                f"specified maximum of {model_maximum} byte{path}.",
            )
        return changed_path

    @staticmethod
    def _check_file(
        file_name: str,
        entry: Dict[str, Any],
        type_pattern: str,
        specification: Dict[str, Any],
        path: str,
    ) -> None:
        pattern = specification.get("regularExpressionPattern")
        if pattern is not None and not re.search(pattern, file_name):
            raise ForbiddenError(
                "AttachmentName",
                f'given attachment name "{file_name}" doesn\'t satisfy specified regular '
                f'expression pattern "{pattern}" from type "{type_pattern}"{path}.',
            )
        pattern = specification.get("invertedRegularExpressionPattern")
        if pattern is not None and re.search(pattern, file_name):
            raise ForbiddenError(
                "InvertedAttachmentName",
                f'given attachment name "{file_name}" doesn\'t satisfy specified regular '
                f'expression pattern "{pattern}" from type "{type_pattern}"{path}.',
            )
        content_type = entry.get("content_type")
        pattern = specification.get("contentTypeRegularExpressionPattern")
        if pattern is not None and not (content_type and re.search(pattern, content_type)):
            raise ForbiddenError(
                "AttachmentContentType",
                f'given attachment content type "{content_type}" doesn\'t satisfy '
                f'specified regular expression pattern "{pattern}" from type '
                f'"{type_pattern}"{path}.',
            )
        pattern = specification.get("invertedContentTypeRegularExpressionPattern")
        if pattern is not None and not (content_type and not re.search(pattern, content_type)):
            raise ForbiddenError(
                "InvertedAttachmentContentType",
                f'given attachment content type "{content_type}" doesn\'t satisfy '
                f'specified regular expression pattern "{pattern}" from type '
                f'"{type_pattern}"{path}.',
            )

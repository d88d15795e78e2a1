"""
Auto-migration of stored documents.

Re-validates stored documents under the ``migrate`` update strategy so they
follow the current models: unspecified properties are dropped, missing
defaults are added, strings are trimmed, renamed properties (``oldName``) and
old model types (``_oldType``) are moved to their new names. Optional custom
migrators run first, in the order of their names.

Example:
    migrator = AutoMigrator(models, configuration)
    result = migrator.migrate(stored_documents)
    for document in result.migrated:
        store.put(document)
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from modelguard.cache import ValidatedDocumentCache
from modelguard.config import get_config
from modelguard.errors import ModelGuardError, ValidationRejection
from modelguard.expression import ExpressionEvaluator
from modelguard.gate import check_document_update
from modelguard.logger import ValidationLogger
from modelguard.models import ModelConfiguration, SecuritySettings, UpdateStrategy, UserContext
from modelguard.resolver import Models

Document = Dict[str, Any]
Migrator = Callable[[Document, Dict[str, Any]], Optional[Document]]


class MigratorError(ModelGuardError):
    """A custom migrator raised."""


@dataclass
class MigrationResult:
    """Outcome of migrating a batch of documents."""
    migrated: List[Document] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.migrated) + len(self.unchanged) + len(self.failed) + len(self.skipped)


class AutoMigrator:
    """
    Brings stored documents in line with the current models.

    Documents are validated as the admin user, with the stored copy as old
    document and a private validated-document cache so migrations never
    consume tokens of regular writes.
    """

    def __init__(
        self,
        models: Models,
        configuration: ModelConfiguration,
        migrators: Optional[Mapping[str, Migrator]] = None,
        user_name: str = "modelguard-migrator",
        evaluator: Optional[ExpressionEvaluator] = None,
        validation_logger: Optional[ValidationLogger] = None,
    ):
        self.models = models
        self.configuration = configuration
        self.migrators = dict(migrators or {})
        self.user_context = UserContext(name=user_name, roles=[get_config().admin_role])
        self.evaluator = evaluator or ExpressionEvaluator()
        self.logger = validation_logger or ValidationLogger()

    def _run_migrators(self, document: Document) -> Document:
        special = self.configuration.special_names
        for name in sorted(self.migrators):
            try:
                result = self.migrators[name](
                    document,
                    {
                        "idName": special.id,
                        "typeName": special.type,
                        "models": self.models,
                        "modelConfiguration": self.configuration,
                    },
                )
            except Exception as error:
                raise MigratorError(
                    f'Running migrator "{name}" on document "{document.get(special.id)}" '
                    f"failed: {error}"
                ) from error
            if result is not None:
                document = result
        return document

    def migrate_document(self, document: Document) -> Tuple[Document, bool]:
        """
        Migrate one stored document.

        Returns:
            Tuple of (migrated_document, changed)

        Raises:
            ValidationRejection: The document can not be migrated automatically
            MigratorError: A custom migrator raised
        """
        special = self.configuration.special_names
        new_document = self._run_migrators(copy.deepcopy(document))
        new_document[special.strategy] = UpdateStrategy.MIGRATE.value

        checked = check_document_update(
            new_document,
            document,
            self.user_context,
            SecuritySettings(),
            self.models,
            self.configuration,
            cache=ValidatedDocumentCache(maxsize=1),
            evaluator=self.evaluator,
            validation_logger=self.logger,
        )
        return checked.new_document, checked.changed

    def migrate(self, documents: Iterable[Document]) -> MigrationResult:
        """Migrate given documents, collecting (not raising) rejections."""
        special = self.configuration.special_names
        result = MigrationResult()
        for document in documents:
            document_id = str(document.get(special.id, ""))
            if document_id.startswith(special.design_document_name_prefix) or (
                special.type not in document
            ):
                result.skipped.append(document_id)
                continue
            try:
                migrated, changed = self.migrate_document(document)
            except ValidationRejection as error:
                self.logger.log_migration_failed(
                    document_id, document.get(special.revision), str(error), document
                )
                result.failed.append((document_id, str(error)))
                continue
            if changed:
                self.logger.log_migrated(
                    document_id,
                    document.get(special.revision),
                    model_name=migrated.get(special.type),
                )
                result.migrated.append(migrated)
            else:
                result.unchanged.append(document_id)
        return result

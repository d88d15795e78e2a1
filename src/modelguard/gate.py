"""
Validation-Cache Gate.

Entry point for validating a document mutation. Wraps the document checker
with the validated-document cache: a mutation already accepted for the same
id and revision short-circuits to acceptance, every newly accepted mutation
leaves a single-use token behind.

Example:
    from modelguard.gate import validate_document_update

    document = validate_document_update(
        {"_type": "Article", "title": "Hello"},
        None,
        {"name": "alice", "roles": ["editor"]},
        {},
        models,
        configuration,
    )

Rejections raise ``ForbiddenError`` / ``UnauthorizedError``; their
``to_wire()`` form is what the document store expects.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, Mapping, Optional, Union

from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

from modelguard.cache import ValidatedDocumentCache, get_validated_document_cache
from modelguard.config import get_config
from modelguard.errors import ForbiddenError, ValidationRejection
from modelguard.expression import ExpressionEvaluator
from modelguard.logger import ValidationLogger
from modelguard.models import (
    UPDATE_STRATEGIES,
    ModelConfiguration,
    SecuritySettings,
    UserContext,
)
from modelguard.resolver import Models, resolve_models
from modelguard.validation import CheckedDocument, DocumentChecker, ValidationContext

tracer = trace.get_tracer("modelguard.gate")

REVISION_KEYWORDS = ("latest", "upsert")


def _as_plain(value: Union[UserContext, SecuritySettings, Mapping[str, Any], None]) -> Dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, (UserContext, SecuritySettings)):
        return value.model_dump()
    return dict(value)


def _determine_update_strategy(
    new_document: Dict[str, Any], configuration: ModelConfiguration
) -> str:
    if "update_strategy" in configuration.model_fields_set:
        strategy = configuration.update_strategy
    else:
        strategy = get_config().default_update_strategy
    strategy = getattr(strategy, "value", strategy)

    strategy_name = configuration.special_names.strategy
    if strategy_name in new_document:
        strategy = new_document.pop(strategy_name)
        if strategy is None:
            strategy = ""
        if strategy not in UPDATE_STRATEGIES:
            raise ForbiddenError(
                "UpdateStrategy",
                f'Given update strategy "{strategy}" is not one of "'
                + '", "'.join(sorted(UPDATE_STRATEGIES))
                + '".',
            )
    return strategy


def check_document_update(
    new_document: Dict[str, Any],
    old_document: Optional[Dict[str, Any]],
    user_context: Union[UserContext, Mapping[str, Any], None],
    security_settings: Union[SecuritySettings, Mapping[str, Any], None],
    models: Optional[Models],
    model_configuration: ModelConfiguration,
    *,
    cache: Optional[ValidatedDocumentCache] = None,
    evaluator: Optional[ExpressionEvaluator] = None,
    validation_logger: Optional[ValidationLogger] = None,
) -> CheckedDocument:
    """
    Validate a document mutation and report what changed.

    Same contract as ``validate_document_update`` but returns a
    CheckedDocument so callers can inspect the changed path.
    """
    if cache is None:
        cache = get_validated_document_cache()
    if models is None:
        models = resolve_models(model_configuration)
    validation_logger = validation_logger or ValidationLogger()

    special = model_configuration.special_names
    new_document = copy.deepcopy(new_document)
    old_document = copy.deepcopy(old_document) if old_document is not None else None

    document_id = new_document.get(special.id)
    revision = new_document.get(special.revision)

    with tracer.start_as_current_span(
        "modelguard.validate_document_update",
        kind=SpanKind.INTERNAL,
    ) as span:
        span.set_attribute("document.id", str(document_id or ""))
        span.set_attribute("document.revision", str(revision or ""))
        span.set_attribute("document.type", str(new_document.get(special.type, "")))

        token = ValidatedDocumentCache.token(document_id, revision)
        if token is not None and cache.consume(token):
            new_document.pop(special.strategy, None)
            span.set_attribute("validation.cache_hit", True)
            validation_logger.log_cache_hit(document_id, revision)
            span.set_status(Status(StatusCode.OK))
            return CheckedDocument(new_document=new_document)

        if new_document.get(special.deleted) is True:
            span.set_attribute("validation.deleted", True)
            validation_logger.log_deleted(document_id, revision)
            span.set_status(Status(StatusCode.OK))
            return CheckedDocument(new_document=new_document)

        update_strategy: Optional[str] = None
        try:
            if revision in REVISION_KEYWORDS:
                if old_document is not None and special.revision in old_document:
                    revision = new_document[special.revision] = old_document[special.revision]
                elif revision == "latest":
                    raise ForbiddenError("Revision", "No old document available to update.")
                else:
                    del new_document[special.revision]
                    revision = None

            update_strategy = _determine_update_strategy(new_document, model_configuration)
            span.set_attribute("validation.update_strategy", update_strategy)

            context = ValidationContext(
                models,
                model_configuration,
                update_strategy=update_strategy,
                user_context=_as_plain(user_context),
                security_settings=_as_plain(security_settings),
                evaluator=evaluator,
            )
            checked = DocumentChecker(context).check(new_document, old_document)
        except ValidationRejection as error:
            validation_logger.log_rejected(
                document_id,
                revision,
                reason=str(error),
                model_name=new_document.get(special.type),
                update_strategy=update_strategy,
                document=new_document,
            )
            span.set_status(Status(StatusCode.ERROR, str(error)))
            raise

        document_id = checked.new_document.get(special.id)
        revision = checked.new_document.get(special.revision)
        token = ValidatedDocumentCache.token(document_id, revision)
        if token is not None:
            cache.add(token)

        validation_logger.log_accepted(
            document_id,
            revision,
            model_name=checked.new_document.get(special.type),
            update_strategy=update_strategy,
            changed_path=checked.changed_path,
        )
        span.set_attribute("validation.changed", checked.changed)
        span.set_status(Status(StatusCode.OK))
        return checked


def validate_document_update(
    new_document: Dict[str, Any],
    old_document: Optional[Dict[str, Any]],
    user_context: Union[UserContext, Mapping[str, Any], None],
    security_settings: Union[SecuritySettings, Mapping[str, Any], None],
    models: Optional[Models],
    model_configuration: ModelConfiguration,
    *,
    cache: Optional[ValidatedDocumentCache] = None,
    evaluator: Optional[ExpressionEvaluator] = None,
) -> Dict[str, Any]:
    """
    Validate a document mutation.

    Args:
        new_document: Proposed document
        old_document: Currently stored document (None on creation)
        user_context: Acting user (name, roles, db)
        security_settings: Database admin/member lists
        models: Resolved models (resolved from the configuration if None)
        model_configuration: Model configuration
        cache: Validated-document cache (process default if None)
        evaluator: Expression evaluator for hooks and constraints

    Returns:
        The normalized document

    Raises:
        ForbiddenError: The mutation violates the model
    """
    return check_document_update(
        new_document,
        old_document,
        user_context,
        security_settings,
        models,
        model_configuration,
        cache=cache,
        evaluator=evaluator,
    ).new_document

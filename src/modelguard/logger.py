"""
Structured logging for validation events.

Outputs JSON-formatted lines, one per event, so decisions about document
mutations can be aggregated and queried. Document bodies are never logged
verbatim; they are reduced to a bounded representation first.

Logged events:
- document.accepted
- document.rejected
- document.cache_hit
- document.deleted
- document.migrated
- document.migration_failed
- catalog.resolved

Usage:
    from modelguard.logger import ValidationLogger

    logger = ValidationLogger()
    logger.log_accepted(document_id="article-1", revision="1-a", model_name="Article")
    logger.log_rejected(document_id="article-1", revision="2-b", reason="NotNull: ...")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from modelguard.config import get_config

# Configure structured logger for validation events
_validation_logger = logging.getLogger("modelguard.validation")
_validation_logger.setLevel(logging.INFO)

# Default handler outputs JSON to stdout
if not _validation_logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    _validation_logger.addHandler(handler)


def configure_validation_logging(stream: Any = None, level: Optional[str] = None) -> None:
    """
    Redirect and/or re-level validation event output.

    Args:
        stream: New stream for the default handler (e.g. sys.stderr)
        level: Level name, defaults to the configured ``log_level``
    """
    _validation_logger.setLevel((level or get_config().log_level).upper())
    if stream is not None:
        for existing in _validation_logger.handlers:
            if isinstance(existing, logging.StreamHandler):
                existing.setStream(stream)


TOO_BIG_REPRESENTATION = "DOCUMENT IS TOO BIG TO REPRESENT"


def determine_representation(
    data: Any,
    maximum_representation_try_length: Optional[int] = None,
    maximum_representation_length: Optional[int] = None,
) -> str:
    """
    Determine a bounded representation of given data.

    Representations longer than ``maximum_representation_try_length`` are not
    rendered at all; those longer than ``maximum_representation_length`` are
    cut and end with "...".
    """
    config = get_config()
    if maximum_representation_try_length is None:
        maximum_representation_try_length = config.maximum_representation_try_length
    if maximum_representation_length is None:
        maximum_representation_length = config.maximum_representation_length

    representation = json.dumps(data, sort_keys=True, default=str)
    if len(representation) > maximum_representation_try_length:
        return TOO_BIG_REPRESENTATION
    if len(representation) > maximum_representation_length:
        representation = (
            representation[:maximum_representation_length - len("...")] + "..."
        )
    return representation


class ValidationLogger:
    """
    Structured logger for validation events.

    Each log entry includes standard fields for filtering:
    - document_id, revision, model_name
    - update_strategy and the event type
    - event-specific attributes (reason, changed_path, ...)
    """

    def __init__(
        self,
        service_name: Optional[str] = None,
        extra_labels: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize validation logger.

        Args:
            service_name: Service name for log attribution (defaults to config)
            extra_labels: Additional labels attached to every entry
        """
        self.service_name = service_name or get_config().service_name
        self.extra_labels = extra_labels or {}
        self._logger = _validation_logger

    def _emit(
        self,
        event: str,
        level: str = "info",
        document_id: Optional[str] = None,
        revision: Optional[str] = None,
        model_name: Optional[str] = None,
        update_strategy: Optional[str] = None,
        **extra_fields: Any,
    ) -> None:
        """
        Emit a structured log entry.

        Args:
            event: Event type (e.g., "document.accepted")
            level: Log level (debug, info, warn, error)
            document_id: Document identifier
            revision: Document revision
            model_name: Name of the governing model
            update_strategy: Active update strategy
            **extra_fields: Event-specific fields
        """
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event": event,
            "service": self.service_name,
        }

        if document_id:
            entry["document_id"] = document_id
        if revision:
            entry["revision"] = revision
        if model_name:
            entry["model_name"] = model_name
        if update_strategy is not None:
            entry["update_strategy"] = update_strategy

        entry.update(extra_fields)

        if self.extra_labels:
            entry["labels"] = self.extra_labels

        if get_config().log_format == "text":
            log_line = " ".join(
                [entry.pop("timestamp"), entry.pop("event")]
                + [f"{key}={value}" for key, value in entry.items()]
            )
        else:
            log_line = json.dumps(entry, default=str)

        if level == "error":
            self._logger.error(log_line)
        elif level == "warn":
            self._logger.warning(log_line)
        elif level == "debug":
            self._logger.debug(log_line)
        else:
            self._logger.info(log_line)

    def log_accepted(
        self,
        document_id: Optional[str],
        revision: Optional[str],
        model_name: Optional[str] = None,
        update_strategy: Optional[str] = None,
        changed_path: Optional[list] = None,
    ) -> None:
        """Log an accepted document mutation."""
        self._emit(
            event="document.accepted",
            document_id=document_id,
            revision=revision,
            model_name=model_name,
            update_strategy=update_strategy,
            changed_path=changed_path or [],
        )

    def log_rejected(
        self,
        document_id: Optional[str],
        revision: Optional[str],
        reason: str,
        model_name: Optional[str] = None,
        update_strategy: Optional[str] = None,
        document: Any = None,
    ) -> None:
        """Log a rejected document mutation."""
        extra: Dict[str, Any] = {"reason": reason}
        if document is not None:
            extra["document"] = determine_representation(document)
        self._emit(
            event="document.rejected",
            level="warn",
            document_id=document_id,
            revision=revision,
            model_name=model_name,
            update_strategy=update_strategy,
            **extra,
        )

    def log_cache_hit(self, document_id: Optional[str], revision: Optional[str]) -> None:
        """Log a validation short-circuited by the validated-document cache."""
        self._emit(
            event="document.cache_hit",
            level="debug",
            document_id=document_id,
            revision=revision,
        )

    def log_deleted(self, document_id: Optional[str], revision: Optional[str]) -> None:
        """Log a deletion which bypassed validation."""
        self._emit(
            event="document.deleted",
            document_id=document_id,
            revision=revision,
        )

    def log_migrated(
        self,
        document_id: Optional[str],
        revision: Optional[str],
        model_name: Optional[str] = None,
        changed_path: Optional[list] = None,
    ) -> None:
        """Log a document rewritten by auto-migration."""
        self._emit(
            event="document.migrated",
            document_id=document_id,
            revision=revision,
            model_name=model_name,
            update_strategy="migrate",
            changed_path=changed_path or [],
        )

    def log_migration_failed(
        self,
        document_id: Optional[str],
        revision: Optional[str],
        reason: str,
        document: Any = None,
    ) -> None:
        """Log a document auto-migration could not fix."""
        self._emit(
            event="document.migration_failed",
            level="warn",
            document_id=document_id,
            revision=revision,
            update_strategy="migrate",
            reason=reason,
            document=determine_representation(document),
        )

    def log_catalog_resolved(self, model_count: int, model_names: list) -> None:
        """Log a resolved model catalog."""
        self._emit(
            event="catalog.resolved",
            model_count=model_count,
            model_names=model_names,
        )

"""
Document validation.

- PropertyChecker: one value against its property specification
- DocumentChecker: one document (recursively) against its model
- AttachmentChecker: attachment reconciliation and bounds
- ValidationContext: per-call scope, strategy and helpers
"""

from modelguard.validation.attachments import AttachmentChecker, attachment_size
from modelguard.validation.context import DocumentFrame, ValidationContext
from modelguard.validation.document import CheckedDocument, DocumentChecker
from modelguard.validation.property import PropertyChecker

__all__ = [
    "AttachmentChecker",
    "CheckedDocument",
    "DocumentChecker",
    "DocumentFrame",
    "PropertyChecker",
    "ValidationContext",
    "attachment_size",
]

"""
Exception taxonomy for ModelGuard.

Configuration errors surface while a model catalog is resolved and are fatal
to that configuration load. Validation rejections surface per document and
carry the wire shape the document store expects:

    try:
        validate_document_update(new_document, None, user, security, models,
                                 configuration)
    except ValidationRejection as error:
        response = error.to_wire()  # {"forbidden": "MinimalLength: ..."}

Evaluation errors are raised by the expression evaluator and wrapped by the
document checker into ``ForbiddenError`` instances of kind ``Compilation`` or
``Runtime``.
"""

from __future__ import annotations

from typing import Dict, Optional


class ModelGuardError(Exception):
    """Base class of all errors raised by ModelGuard."""


# =============================================================================
# Configuration
# =============================================================================

class ConfigurationError(ModelGuardError):
    """A model catalog can not be resolved."""


class NamingError(ConfigurationError):
    """A model name matches neither the public nor the private pattern."""

    def __init__(self, model_name: str, public_pattern: str, private_pattern: str):
        self.model_name = model_name
        super().__init__(
            f'Model names have to match "{public_pattern}" or '
            f'"{private_pattern}" for private one (given name: "{model_name}").'
        )


class ModelGraphError(ConfigurationError):
    """The inheritance graph contains a cycle or refers to an unknown model."""


class SpecificationError(ConfigurationError):
    """A property specification is not a mapping."""


class ExpressionSyntaxError(ConfigurationError):
    """A hook or constraint source does not compile."""

    def __init__(self, model_name: str, location: str, message: str):
        self.model_name = model_name
        self.location = location
        super().__init__(
            f'Invalid code in "{location}" of model "{model_name}": {message}'
        )


# =============================================================================
# Document rejections
# =============================================================================

class ValidationRejection(ModelGuardError):
    """A document mutation is not admissible."""

    wire_key = "forbidden"

    def to_wire(self) -> Dict[str, str]:
        """Error shape handed back to the document store."""
        return {self.wire_key: str(self)}


class ForbiddenError(ValidationRejection):
    """
    Structural or content violation.

    The message always starts with a machine parsable kind prefix:

        >>> str(ForbiddenError("NotNull", 'Property "name" should not be "null".'))
        'NotNull: Property "name" should not be "null".'
    """

    def __init__(self, kind: str, detail: str):
        self.kind = kind
        self.detail = detail
        super().__init__(f"{kind}: {detail}")


class UnauthorizedError(ValidationRejection):
    """The acting user owns none of the allowed roles."""

    wire_key = "unauthorized"

    def __init__(self, message: str, decision: Optional[object] = None):
        self.decision = decision
        super().__init__(message)


# =============================================================================
# Expression evaluation
# =============================================================================

class EvaluationError(ModelGuardError):
    """A hook or constraint could not be evaluated."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


class CompilationError(EvaluationError):
    """The source does not parse or uses a disallowed construct."""


class RuntimeEvaluationError(EvaluationError):
    """The source raised while being evaluated."""

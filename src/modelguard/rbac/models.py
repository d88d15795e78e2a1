"""
Pydantic models for model level access control.

Key concepts:
- Operation: what the acting user tries to do with a document (read, write)
- NormalizedAllowedRoles: roles allowed per operation (plus per property)
- AllowedModelRolesMapping: model name to its normalized allowed roles
- AccessDecision: audit ready outcome of an access check
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class Operation(str, Enum):
    """Operations which can be authorized on a document."""
    READ = "read"    # Fetch a document
    WRITE = "write"  # Create, update or delete a document


class PolicyDecision(str, Enum):
    """Result of policy evaluation."""
    ALLOW = "allow"
    DENY = "deny"
    NOT_APPLICABLE = "not_applicable"  # Untyped (special) documents


class NormalizedAllowedRoles(BaseModel):
    """
    Roles allowed to read and write instances of a model.

    Example:
        roles = NormalizedAllowedRoles(read=["user"], write=["editor"])
    """
    read: List[str] = Field(default_factory=list, description="Roles allowed to read")
    write: List[str] = Field(default_factory=list, description="Roles allowed to write")
    properties: Dict[str, "NormalizedAllowedRoles"] = Field(
        default_factory=dict,
        description="Property specific allowed roles",
    )

    def for_operation(self, operation: Operation) -> List[str]:
        return self.read if operation == Operation.READ else self.write


AllowedModelRolesMapping = Dict[str, NormalizedAllowedRoles]


class AccessDecision(BaseModel):
    """
    Result of an access check.

    Includes audit information for logging.

    Example:
        decision = AccessDecision(
            decision=PolicyDecision.ALLOW,
            user_name="alice",
            model_name="Article",
            operation=Operation.WRITE,
            allowed_roles=["_admin", "editor"],
            matched_role="editor",
        )
    """
    decision: PolicyDecision = Field(..., description="Allow/Deny/N/A")
    user_name: str = Field(..., description="Who requested access")
    model_name: Optional[str] = Field(None, description="Model of the document")
    operation: Operation = Field(..., description="What the user tried to do")
    allowed_roles: List[str] = Field(default_factory=list)

    # Decision details
    matched_role: Optional[str] = Field(None, description="Role that granted access")
    denial_reason: Optional[str] = Field(None, description="Why access was denied")

    evaluated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    class Config:
        use_enum_values = True

    @property
    def allowed(self) -> bool:
        return self.decision != PolicyDecision.DENY

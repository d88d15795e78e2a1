"""
ModelGuard access control.

Model level role checks which run independently of (and before) structural
document validation.

Example usage:
    from modelguard.rbac import (
        authorize,
        determine_allowed_model_roles_mapping,
    )
    from modelguard.errors import UnauthorizedError

    mapping = determine_allowed_model_roles_mapping(configuration)

    try:
        authorize(document, user_context={"name": "alice", "roles": ["user"]},
                  allowed_model_roles_mapping=mapping)
    except UnauthorizedError as e:
        print(f"Access denied: {e.decision.denial_reason}")

CLI usage:
    # Print the allowed roles of every model
    modelguard roles models.yaml

    # Check a write
    modelguard authorize models.yaml document.json --role user
"""

from modelguard.rbac.models import (
    AccessDecision,
    AllowedModelRolesMapping,
    NormalizedAllowedRoles,
    Operation,
    PolicyDecision,
)
from modelguard.rbac.enforcer import (
    READONLY_ADMIN_ROLE,
    READONLY_MEMBER_ROLE,
    authorize,
    check_access,
    determine_allowed_model_roles_mapping,
    normalize_allowed_roles,
)

__all__ = [
    # Models
    "AccessDecision",
    "AllowedModelRolesMapping",
    "NormalizedAllowedRoles",
    "Operation",
    "PolicyDecision",
    # Enforcement
    "READONLY_ADMIN_ROLE",
    "READONLY_MEMBER_ROLE",
    "authorize",
    "check_access",
    "determine_allowed_model_roles_mapping",
    "normalize_allowed_roles",
]

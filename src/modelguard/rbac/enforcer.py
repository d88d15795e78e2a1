"""
Access Authorizer.

Decides whether the acting user may read or write a document, based on the
allowed roles declared by the document's model. Independent of structural
validation so it can run earlier and cheaper.

Example:
    mapping = determine_allowed_model_roles_mapping(configuration)

    # Check access (returns decision)
    decision = check_access(document, user_context=user, allowed_model_roles_mapping=mapping)

    # Require access (raises on denial)
    authorize(document, user_context=user, allowed_model_roles_mapping=mapping)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from modelguard.config import get_config
from modelguard.errors import UnauthorizedError
from modelguard.models import ModelConfiguration, UserContext
from modelguard.rbac.models import (
    AccessDecision,
    AllowedModelRolesMapping,
    NormalizedAllowedRoles,
    Operation,
    PolicyDecision,
)
from modelguard.resolver import Models, resolve_models

logger = logging.getLogger(__name__)

READONLY_ADMIN_ROLE = "readonlyadmin"
READONLY_MEMBER_ROLE = "readonlymember"


def normalize_allowed_roles(roles: Any) -> NormalizedAllowedRoles:
    """
    Convert an allowed roles declaration to its normalized form.

    A single role or a list of roles applies to reading and writing; a
    mapping may declare ``read`` and ``write`` separately.
    """
    if isinstance(roles, NormalizedAllowedRoles):
        return roles
    if isinstance(roles, (list, tuple)):
        return NormalizedAllowedRoles(read=list(roles), write=list(roles))
    if isinstance(roles, dict):
        result = NormalizedAllowedRoles()
        for operation in (Operation.READ, Operation.WRITE):
            if operation.value in roles:
                value = roles[operation.value]
                setattr(
                    result,
                    operation.value,
                    list(value) if isinstance(value, (list, tuple)) else [value],
                )
        return result
    return NormalizedAllowedRoles(read=[roles], write=[roles])


def determine_allowed_model_roles_mapping(
    configuration: ModelConfiguration,
    models: Optional[Models] = None,
) -> AllowedModelRolesMapping:
    """Determine per model (and per property) allowed roles."""
    if models is None:
        models = resolve_models(configuration)
    allowed_role_name = configuration.special_names.allowed_role

    mapping: AllowedModelRolesMapping = {}
    for model_name, model in models.items():
        if model.get(allowed_role_name) is None:
            mapping[model_name] = NormalizedAllowedRoles()
            continue
        roles = normalize_allowed_roles(model[allowed_role_name])
        for name, specification in model.items():
            if isinstance(specification, dict) and specification.get("allowedRoles"):
                roles.properties[name] = normalize_allowed_roles(
                    specification["allowedRoles"]
                )
        mapping[model_name] = roles
    return mapping


def _user_context(user_context: Union[UserContext, Mapping[str, Any], None]) -> Optional[UserContext]:
    if user_context is None or isinstance(user_context, UserContext):
        return user_context
    return UserContext.model_validate(dict(user_context))


def check_access(
    new_document: Dict[str, Any],
    old_document: Optional[Dict[str, Any]] = None,
    user_context: Union[UserContext, Mapping[str, Any], None] = None,
    allowed_model_roles_mapping: Optional[AllowedModelRolesMapping] = None,
    id_name: str = "_id",
    type_name: str = "_type",
    design_document_name_prefix: str = "_design/",
    read: bool = False,
    admin_role: Optional[str] = None,
) -> AccessDecision:
    """
    Check if the acting user may perform the operation on given document.

    Returns AccessDecision with full audit trail.
    Does NOT raise exceptions - use authorize for enforcement.
    """
    operation = Operation.READ if read else Operation.WRITE
    user = _user_context(user_context) or UserContext()

    # Special documents (e.g. change sequences) carry no type.
    if type_name not in new_document:
        return AccessDecision(
            decision=PolicyDecision.NOT_APPLICABLE,
            user_name=user.name,
            operation=operation,
        )

    admin_role = admin_role or get_config().admin_role
    allowed = NormalizedAllowedRoles(read=[admin_role, READONLY_ADMIN_ROLE], write=[admin_role])
    document_id = new_document.get(id_name)
    if isinstance(document_id, str) and document_id.startswith(design_document_name_prefix):
        allowed.read.append(READONLY_MEMBER_ROLE)

    model_name = new_document[type_name]
    if allowed_model_roles_mapping and model_name in allowed_model_roles_mapping:
        model_roles = normalize_allowed_roles(allowed_model_roles_mapping[model_name])
        allowed.read.extend(model_roles.read)
        allowed.write.extend(model_roles.write)
        allowed.properties = model_roles.properties

    relevant_roles: List[str] = allowed.for_operation(operation)
    for role in user.roles:
        if role in relevant_roles:
            return AccessDecision(
                decision=PolicyDecision.ALLOW,
                user_name=user.name,
                model_name=model_name,
                operation=operation,
                allowed_roles=relevant_roles,
                matched_role=role,
            )

    if user.roles:
        roles_description = (
            f'Current user "{user.name}" owns the following roles: "'
            + '", "'.join(user.roles)
            + '"'
        )
    else:
        roles_description = f'Current user "{user.name}" doesn\'t own any role'

    return AccessDecision(
        decision=PolicyDecision.DENY,
        user_name=user.name,
        model_name=model_name,
        operation=operation,
        allowed_roles=relevant_roles,
        denial_reason=(
            "Only users with at least one of these roles are allowed to perform "
            f'requested {operation.value} action: "'
            + '", "'.join(relevant_roles)
            + f'". {roles_description}.'
        ),
    )


def authorize(
    new_document: Dict[str, Any],
    old_document: Optional[Dict[str, Any]] = None,
    user_context: Union[UserContext, Mapping[str, Any], None] = None,
    allowed_model_roles_mapping: Optional[AllowedModelRolesMapping] = None,
    id_name: str = "_id",
    type_name: str = "_type",
    design_document_name_prefix: str = "_design/",
    read: bool = False,
    admin_role: Optional[str] = None,
) -> bool:
    """
    Hard enforcement: raises UnauthorizedError if denied.

    Returns True otherwise so it can serve as a store authorization hook.
    """
    decision = check_access(
        new_document,
        old_document,
        user_context,
        allowed_model_roles_mapping,
        id_name=id_name,
        type_name=type_name,
        design_document_name_prefix=design_document_name_prefix,
        read=read,
        admin_role=admin_role,
    )

    if not decision.allowed:
        logger.warning(
            f"Access denied: user={decision.user_name}, "
            f"model={decision.model_name}, operation={decision.operation}, "
            f"reason={decision.denial_reason}"
        )
        raise UnauthorizedError(decision.denial_reason, decision)

    logger.debug(
        f"Access allowed: user={decision.user_name}, "
        f"model={decision.model_name}, operation={decision.operation}, "
        f"role={decision.matched_role}"
    )
    return True

"""
Pydantic models for model configurations and validation inputs.

The model configuration mirrors the JSON/YAML shape consumed by the
document store integration (camelCase keys), so a configuration file can be
validated verbatim:

    configuration = ModelConfiguration.model_validate({
        "entities": {"Article": {"title": {"minimumLength": 3}}},
        "updateStrategy": "fillUp",
    })

Key concepts:
- SpecialPropertyNames: names of system fields and reserved model keys
- PropertyConfiguration: default specifications and naming rules
- ModelConfiguration: raw models plus the configuration above
- UserContext / SecuritySettings: acting user and database security data
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field


class UpdateStrategy(str, Enum):
    """How a mutation is reconciled against an existing document."""
    STRICT = ""                 # New document replaces the old one
    FILL_UP = "fillUp"          # Missing values are copied from the old document
    INCREMENTAL = "incremental"  # Unchanged values are dropped from the result
    MIGRATE = "migrate"         # Unknown values are dropped, defaults re-applied


UPDATE_STRATEGIES = frozenset(strategy.value for strategy in UpdateStrategy)


DEFAULT_PROPERTY_SPECIFICATION: Dict[str, Any] = {
    "type": "string",
    "nullable": True,
    "mutable": True,
    "writable": True,
    "trim": True,
    "emptyEqualsToNull": True,
}

DEFAULT_ATTACHMENT_SPECIFICATION: Dict[str, Any] = {
    "nullable": True,
    "mutable": True,
    "writable": True,
}


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class HookNames(_CamelModel):
    """Pair of reserved keys for an expression and an execution hook."""
    execution: str
    expression: str


class SpecialPropertyNames(_CamelModel):
    """Names of system document fields and reserved model keys."""
    additional: str = "_additional"
    allowed_role: str = Field(default="_allowedRoles", alias="allowedRole")
    attachment: str = "_attachments"
    conflict: str = "_conflicts"
    constraint: HookNames = Field(
        default_factory=lambda: HookNames(
            execution="_constraintExecutions",
            expression="_constraintExpressions",
        )
    )
    create: HookNames = Field(
        default_factory=lambda: HookNames(
            execution="_createExecution",
            expression="_createExpression",
        )
    )
    deleted: str = "_deleted"
    deleted_conflict: str = Field(default="_deleted_conflicts", alias="deletedConflict")
    design_document_name_prefix: str = Field(
        default="_design/", alias="designDocumentNamePrefix"
    )
    extend: str = "_extends"
    id: str = "_id"
    local_sequence: str = Field(default="_local_seq", alias="localSequence")
    maximum_aggregated_size: str = Field(
        default="_maximumAggregatedSize", alias="maximumAggregatedSize"
    )
    minimum_aggregated_size: str = Field(
        default="_minimumAggregatedSize", alias="minimumAggregatedSize"
    )
    old_type: str = Field(default="_oldType", alias="oldType")
    revision: str = "_rev"
    revisions: str = "_revisions"
    revisions_information: str = Field(default="_revs_info", alias="revisionsInformation")
    strategy: str = "_updateStrategy"
    type: str = "_type"
    update: HookNames = Field(
        default_factory=lambda: HookNames(
            execution="_onUpdateExecution",
            expression="_onUpdateExpression",
        )
    )

    def model_level_names(self) -> List[str]:
        """Reserved model keys which are not property specifications."""
        return [
            self.allowed_role,
            self.constraint.execution,
            self.constraint.expression,
            self.create.execution,
            self.create.expression,
            self.extend,
            self.maximum_aggregated_size,
            self.minimum_aggregated_size,
            self.old_type,
            self.update.execution,
            self.update.expression,
        ]

    def system_names(self) -> List[str]:
        """Document fields managed by the store rather than by a model."""
        return [
            self.id,
            self.revision,
            self.conflict,
            self.deleted,
            self.deleted_conflict,
            self.local_sequence,
            self.revisions,
            self.revisions_information,
            self.type,
        ]


class TypeNamePatterns(_CamelModel):
    """Regular expressions model names have to match."""
    public: str = r"^[A-Z][A-Za-z0-9]*$"
    private: str = r"^_[a-z][A-Za-z0-9]*$"


class PropertyNameConfiguration(_CamelModel):
    reserved: List[str] = Field(default_factory=list)
    special: SpecialPropertyNames = Field(default_factory=SpecialPropertyNames)
    type_regular_expression_pattern: TypeNamePatterns = Field(
        default_factory=TypeNamePatterns, alias="typeRegularExpressionPattern"
    )


class PropertyConfiguration(_CamelModel):
    default_specification: Dict[str, Any] = Field(
        default_factory=lambda: dict(DEFAULT_PROPERTY_SPECIFICATION),
        alias="defaultSpecification",
    )
    default_attachment_specification: Dict[str, Any] = Field(
        default_factory=lambda: dict(DEFAULT_ATTACHMENT_SPECIFICATION),
        alias="defaultAttachmentSpecification",
    )
    name: PropertyNameConfiguration = Field(default_factory=PropertyNameConfiguration)


class ModelConfiguration(_CamelModel):
    """
    Raw model catalog plus the rules used to resolve and enforce it.

    Example:
        configuration = ModelConfiguration(
            entities={
                "_base": {"createdAt": {"type": "DateTime"}},
                "Entity": {"name": {"type": "string"}},
            },
            update_strategy=UpdateStrategy.FILL_UP,
        )
    """
    entities: Dict[str, Any] = Field(default_factory=dict)
    properties: PropertyConfiguration = Field(
        default_factory=PropertyConfiguration, alias="property"
    )
    update_strategy: UpdateStrategy = Field(
        default=UpdateStrategy.STRICT, alias="updateStrategy"
    )

    @property
    def special_names(self) -> SpecialPropertyNames:
        return self.properties.name.special

    @property
    def reserved_names(self) -> List[str]:
        return self.properties.name.reserved


class UserContext(_CamelModel):
    """The acting user of a mutation (mirrors the store's user context)."""
    db: str = Field(default="dummy", description="Acting database")
    name: str = Field(default='"unknown"', description="Acting user name")
    roles: List[str] = Field(default_factory=list, description="Roles of the acting user")


class DatabaseUserConfiguration(_CamelModel):
    names: List[str] = Field(default_factory=list)
    roles: List[str] = Field(default_factory=list)


class SecuritySettings(_CamelModel):
    """Per database admin and member lists."""
    admins: DatabaseUserConfiguration = Field(default_factory=DatabaseUserConfiguration)
    members: DatabaseUserConfiguration = Field(default_factory=DatabaseUserConfiguration)

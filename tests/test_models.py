"""
Tests for ModelGuard Pydantic models.
"""

import pytest
from pydantic import ValidationError

from modelguard.models import (
    DEFAULT_PROPERTY_SPECIFICATION,
    UPDATE_STRATEGIES,
    ModelConfiguration,
    SecuritySettings,
    SpecialPropertyNames,
    UpdateStrategy,
    UserContext,
)


class TestModelConfiguration:
    """Test ModelConfiguration model."""

    def test_minimal_configuration(self):
        """An empty configuration uses every default."""
        configuration = ModelConfiguration()
        assert configuration.entities == {}
        assert configuration.update_strategy == UpdateStrategy.STRICT
        assert configuration.properties.default_specification == DEFAULT_PROPERTY_SPECIFICATION

    def test_camel_case_keys(self):
        """Configuration files use camelCase keys."""
        configuration = ModelConfiguration.model_validate({
            "entities": {"Entity": {}},
            "updateStrategy": "incremental",
            "property": {
                "defaultSpecification": {"type": "integer"},
                "name": {
                    "reserved": ["_secret"],
                    "special": {"id": "-id", "designDocumentNamePrefix": "-design/"},
                },
            },
        })
        assert configuration.update_strategy == UpdateStrategy.INCREMENTAL
        assert configuration.properties.default_specification == {"type": "integer"}
        assert configuration.reserved_names == ["_secret"]
        assert configuration.special_names.id == "-id"
        assert configuration.special_names.design_document_name_prefix == "-design/"

    def test_unknown_update_strategy(self):
        """Only known update strategies are accepted."""
        with pytest.raises(ValidationError):
            ModelConfiguration(update_strategy="merge")

    def test_default_specifications_are_not_shared(self):
        """Each configuration owns its default specification."""
        first = ModelConfiguration()
        first.properties.default_specification["type"] = "integer"
        assert ModelConfiguration().properties.default_specification["type"] == "string"


class TestSpecialPropertyNames:
    """Test SpecialPropertyNames model."""

    def test_defaults(self):
        names = SpecialPropertyNames()
        assert names.type == "_type"
        assert names.extend == "_extends"
        assert names.constraint.expression == "_constraintExpressions"
        assert names.update.execution == "_onUpdateExecution"

    def test_model_level_names(self):
        names = SpecialPropertyNames().model_level_names()
        assert "_allowedRoles" in names
        assert "_createExpression" in names
        assert "_attachments" not in names

    def test_system_names(self):
        names = SpecialPropertyNames().system_names()
        assert {"_id", "_rev", "_type", "_deleted"} <= set(names)


class TestUserContext:
    """Test UserContext and SecuritySettings models."""

    def test_defaults(self):
        user = UserContext()
        assert user.roles == []
        assert user.db == "dummy"

    def test_roles(self):
        assert UserContext(name="alice", roles=["editor"]).roles == ["editor"]

    def test_security_settings(self):
        settings = SecuritySettings.model_validate({"admins": {"names": ["root"]}})
        assert settings.admins.names == ["root"]
        assert settings.members.roles == []


def test_update_strategies():
    assert UPDATE_STRATEGIES == {"", "fillUp", "incremental", "migrate"}

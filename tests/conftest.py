"""
Pytest configuration and fixtures for ModelGuard tests.
"""

from __future__ import annotations

import os
from typing import Any, Callable, Dict, Generator, Optional

import pytest

from modelguard.cache import ValidatedDocumentCache, reset_validated_document_cache
from modelguard.config import reset_config
from modelguard.gate import validate_document_update
from modelguard.loader import ModelConfigurationLoader
from modelguard.models import ModelConfiguration, UserContext
from modelguard.resolver import resolve_models


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def clean_environment() -> Generator[None, None, None]:
    """Drop MODELGUARD_* variables and reset every process wide singleton."""
    original = {key: value for key, value in os.environ.items() if key.startswith("MODELGUARD_")}
    for key in original:
        del os.environ[key]
    reset_config()
    reset_validated_document_cache()
    ModelConfigurationLoader.clear_cache()

    yield

    os.environ.update(original)
    reset_config()
    reset_validated_document_cache()
    ModelConfigurationLoader.clear_cache()


# ============================================================================
# Model Fixtures
# ============================================================================


@pytest.fixture
def make_configuration() -> Callable[..., ModelConfiguration]:
    """Factory building a model configuration from raw entities."""

    def factory(entities: Dict[str, Any], **kwargs: Any) -> ModelConfiguration:
        return ModelConfiguration(entities=entities, **kwargs)

    return factory


@pytest.fixture
def blog_entities() -> Dict[str, Any]:
    """A small catalog exercising inheritance, nesting and constraints."""
    return {
        "_base": {
            "createdAt": {"type": "DateTime", "nullable": True, "writable": False,
                          "onCreateExpression": "nowUTCTimestamp"},
        },
        "_titled": {
            "title": {"nullable": False, "minimumLength": 2, "maximumLength": 40},
        },
        "Author": {
            "name": {"nullable": False},
            "email": {"regularExpressionPattern": "^[^@]+@[^@]+$"},
        },
        "Article": {
            "_extends": "_titled",
            "author": {"type": "Author", "nullable": True},
            "status": {"selection": ["draft", "published"], "default": "draft"},
            "tags": {"type": "string[]", "maximumNumber": 3},
            "views": {"type": "integer", "minimum": 0, "default": 0},
        },
    }


@pytest.fixture
def blog_configuration(make_configuration, blog_entities) -> ModelConfiguration:
    return make_configuration(blog_entities)


@pytest.fixture
def blog_models(blog_configuration):
    return resolve_models(blog_configuration)


# ============================================================================
# User Fixtures
# ============================================================================


@pytest.fixture
def admin_user() -> UserContext:
    return UserContext(name="admin", roles=["_admin"])


@pytest.fixture
def editor_user() -> UserContext:
    return UserContext(name="alice", roles=["editor"])


@pytest.fixture
def reader_user() -> UserContext:
    return UserContext(name="bob", roles=["user"])


# ============================================================================
# Validation Fixtures
# ============================================================================


@pytest.fixture
def cache() -> ValidatedDocumentCache:
    """A fresh validated-document cache."""
    return ValidatedDocumentCache(maxsize=16)


@pytest.fixture
def validate(make_configuration) -> Callable[..., Dict[str, Any]]:
    """
    Validate a mutation against raw entities with a throwaway cache.

    Usage:
        validate({"A": {...}}, {"_type": "A"}, old_document, strategy="fillUp")
    """

    def run(
        entities: Dict[str, Any],
        new_document: Dict[str, Any],
        old_document: Optional[Dict[str, Any]] = None,
        strategy: str = "",
        user_context: Any = None,
    ) -> Dict[str, Any]:
        configuration = make_configuration(entities, update_strategy=strategy)
        return validate_document_update(
            new_document,
            old_document,
            user_context or {"name": "admin", "roles": ["_admin"]},
            {},
            resolve_models(configuration),
            configuration,
            cache=ValidatedDocumentCache(maxsize=1),
        )

    return run

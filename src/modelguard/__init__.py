"""
ModelGuard - Model resolution and document validation for schemaless document stores.

Models are declared as plain mappings (YAML/JSON), may inherit from one or
more parent models and are resolved into flat, default-complete models. Every
document mutation is then checked against its model before the store accepts
it.

Key Features:
- Multi-parent model inheritance with cycle detection
- Property and document validation with update strategies
  (strict, fillUp, incremental, migrate)
- Safe expression hooks and constraints
- Role based write/read authorization per model
- Single-use validated-document cache
- Batch auto-migration of stored documents

Example usage:
    from modelguard import ModelConfiguration, resolve_models, validate_document_update

    configuration = ModelConfiguration(entities={
        "Article": {"title": {"maximumLength": 80}},
    })
    models = resolve_models(configuration)

    document = validate_document_update(
        {"_type": "Article", "title": " Hello "},
        None,
        {"name": "alice", "roles": ["_admin"]},
        {},
        models,
        configuration,
    )
    # document == {"_type": "Article", "title": "Hello"}
"""

__version__ = "0.1.0"
__all__ = [
    "AutoMigrator",
    "ForbiddenError",
    "ModelConfiguration",
    "UnauthorizedError",
    "authorize",
    "check_access",
    "resolve_models",
    "validate_document_update",
    "__version__",
]


# Lazy imports keep `import modelguard` free of pydantic/opentelemetry setup
def __getattr__(name: str):
    if name == "AutoMigrator":
        from modelguard.migration import AutoMigrator
        return AutoMigrator
    if name in ("ForbiddenError", "UnauthorizedError"):
        from modelguard import errors
        return getattr(errors, name)
    if name == "ModelConfiguration":
        from modelguard.models import ModelConfiguration
        return ModelConfiguration
    if name in ("authorize", "check_access"):
        from modelguard import rbac
        return getattr(rbac, name)
    if name == "resolve_models":
        from modelguard.resolver import resolve_models
        return resolve_models
    if name == "validate_document_update":
        from modelguard.gate import validate_document_update
        return validate_document_update
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

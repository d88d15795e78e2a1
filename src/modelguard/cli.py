"""
ModelGuard CLI - Resolve models, validate and migrate documents from files.

Commands:
    modelguard resolve    Print the resolved (flattened) models
    modelguard validate   Validate a document mutation
    modelguard authorize  Check whether a user may read or write a document
    modelguard roles      Print the allowed roles per model
    modelguard indexes    Print the generically indexable properties per model
    modelguard migrate    Migrate stored documents to the current models

Model configuration and document files may be YAML or JSON.
"""

import json
import sys
from pathlib import Path
from typing import Any, Optional, Tuple

import click
import yaml
from pydantic import ValidationError

from modelguard.cache import ValidatedDocumentCache
from modelguard.errors import ConfigurationError, ValidationRejection
from modelguard.gate import check_document_update
from modelguard.logger import configure_validation_logging
from modelguard.loader import ModelConfigurationLoader, load_document, load_documents
from modelguard.migration import AutoMigrator, MigratorError
from modelguard.models import ModelConfiguration, UserContext
from modelguard.rbac import check_access, determine_allowed_model_roles_mapping
from modelguard.resolver import Models, determine_generic_indexable_property_names

FORMATS = click.Choice(["yaml", "json"])


def _dump(data: Any, output_format: str) -> str:
    if output_format == "json":
        return json.dumps(data, indent=2, default=str)
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False).rstrip("\n")


def _load_catalog(config_path: str) -> Tuple[ModelConfiguration, Models]:
    """Load configuration and resolved models, exiting on any load error."""
    loader = ModelConfigurationLoader()
    path = Path(config_path)
    try:
        return loader.load(path), loader.load_models(path)
    except (ConfigurationError, ValidationError, yaml.YAMLError, TypeError) as error:
        click.echo(f"Error: Could not load model configuration {config_path}: {error}", err=True)
        sys.exit(1)


def _load_optional_document(path: Optional[str]) -> Optional[dict]:
    if path is None:
        return None
    try:
        return load_document(Path(path))
    except (yaml.YAMLError, TypeError) as error:
        click.echo(f"Error: {error}", err=True)
        sys.exit(1)


def _user_context(user: str, roles: Tuple[str, ...], database: str) -> UserContext:
    return UserContext(name=user, roles=list(roles), db=database)


user_options = [
    click.option("--user", "-u", default="unknown", help="Name of the acting user"),
    click.option("--role", "-r", "roles", multiple=True, help="Role of the acting user (repeatable)"),
    click.option("--db", "database", default="dummy", help="Database name of the user context"),
]


def with_user_options(function):
    for option in reversed(user_options):
        function = option(function)
    return function


@click.group()
@click.version_option(package_name="modelguard")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    help="Level of validation events written to stderr (default: MODELGUARD_LOG_LEVEL)",
)
def main(log_level: Optional[str]):
    """ModelGuard - Model resolution and document validation."""
    # Keep stdout for command output
    configure_validation_logging(stream=sys.stderr, level=log_level)


@main.command("resolve")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--model", "-m", "model_name", help="Only print this model")
@click.option("--format", "-f", "output_format", type=FORMATS, default="yaml", help="Output format")
def resolve_cmd(config_path: str, model_name: Optional[str], output_format: str):
    """Print the resolved models of a model configuration.

    Example:
        modelguard resolve models.yaml --model Article --format json
    """
    _, models = _load_catalog(config_path)
    if model_name is not None:
        if model_name not in models:
            click.echo(f"Error: Model '{model_name}' not found", err=True)
            sys.exit(1)
        models = {model_name: models[model_name]}
    click.echo(_dump(models, output_format))


@main.command("validate")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
@click.argument("document_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--old", "old_path", type=click.Path(exists=True, dir_okay=False), help="Currently stored document")
@click.option("--strategy", "-s", help="Update strategy for this mutation (fillUp, incremental, migrate)")
@with_user_options
@click.option("--format", "-f", "output_format", type=FORMATS, default="json", help="Output format")
def validate_cmd(
    config_path: str,
    document_path: str,
    old_path: Optional[str],
    strategy: Optional[str],
    user: str,
    roles: Tuple[str, ...],
    database: str,
    output_format: str,
):
    """Validate a document mutation and print the normalized document.

    Rejections are printed in their wire form (e.g. {"forbidden": "..."})
    and exit with status 1.

    Example:
        modelguard validate models.yaml article.json --old stored.json -r editor
    """
    configuration, models = _load_catalog(config_path)
    new_document = _load_optional_document(document_path)
    old_document = _load_optional_document(old_path)
    if strategy is not None:
        new_document[configuration.special_names.strategy] = strategy

    try:
        checked = check_document_update(
            new_document,
            old_document,
            _user_context(user, roles, database),
            None,
            models,
            configuration,
            cache=ValidatedDocumentCache(maxsize=1),
        )
    except ValidationRejection as error:
        click.echo(_dump(error.to_wire(), output_format))
        sys.exit(1)

    click.echo(_dump(checked.new_document, output_format))
    if checked.changed_path:
        click.echo(f"Changed: {' -> '.join(checked.changed_path)}", err=True)


@main.command("authorize")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
@click.argument("document_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--read", is_flag=True, help="Check read instead of write access")
@with_user_options
@click.option("--format", "-f", "output_format", type=FORMATS, default="json", help="Output format")
def authorize_cmd(
    config_path: str,
    document_path: str,
    read: bool,
    user: str,
    roles: Tuple[str, ...],
    database: str,
    output_format: str,
):
    """Check whether a user may read or write a document.

    Exits with status 1 when access is denied.

    Example:
        modelguard authorize models.yaml article.json -u bob -r reader --read
    """
    configuration, models = _load_catalog(config_path)
    document = _load_optional_document(document_path)
    special = configuration.special_names

    decision = check_access(
        document,
        user_context=_user_context(user, roles, database),
        allowed_model_roles_mapping=determine_allowed_model_roles_mapping(configuration, models),
        id_name=special.id,
        type_name=special.type,
        design_document_name_prefix=special.design_document_name_prefix,
        read=read,
    )
    click.echo(_dump(decision.model_dump(mode="json", exclude_none=True), output_format))
    if not decision.allowed:
        sys.exit(1)


@main.command("roles")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--format", "-f", "output_format", type=FORMATS, default="yaml", help="Output format")
def roles_cmd(config_path: str, output_format: str):
    """Print read and write roles per model (and per property)."""
    configuration, models = _load_catalog(config_path)
    mapping = determine_allowed_model_roles_mapping(configuration, models)
    click.echo(
        _dump(
            {name: roles.model_dump(mode="json") for name, roles in sorted(mapping.items())},
            output_format,
        )
    )


@main.command("indexes")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--format", "-f", "output_format", type=FORMATS, default="yaml", help="Output format")
def indexes_cmd(config_path: str, output_format: str):
    """Print the generically indexable property names per model."""
    configuration, models = _load_catalog(config_path)
    click.echo(
        _dump(
            {
                name: determine_generic_indexable_property_names(configuration, model)
                for name, model in sorted(models.items())
            },
            output_format,
        )
    )


@main.command("migrate")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
@click.argument("documents_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write migrated documents to this file")
@click.option("--format", "-f", "output_format", type=FORMATS, default="json", help="Output format")
@click.option("--fail-on-error", is_flag=True, help="Exit with error if any document could not be migrated")
def migrate_cmd(
    config_path: str,
    documents_path: str,
    output: Optional[str],
    output_format: str,
    fail_on_error: bool,
):
    """Migrate stored documents to the current models.

    Prints (or writes) only the documents that changed. Documents which can
    not be migrated automatically are reported and left untouched.

    Example:
        modelguard migrate models.yaml dump.json -o migrated.json
    """
    configuration, models = _load_catalog(config_path)
    try:
        documents = load_documents(Path(documents_path))
    except (yaml.YAMLError, TypeError) as error:
        click.echo(f"Error: {error}", err=True)
        sys.exit(1)

    try:
        result = AutoMigrator(models, configuration).migrate(documents)
    except MigratorError as error:
        click.echo(f"Error: {error}", err=True)
        sys.exit(1)

    rendered = _dump(result.migrated, output_format)
    if output:
        with open(output, "w") as f:
            f.write(rendered + "\n")
        click.echo(f"Migrated documents written to {output}", err=True)
    else:
        click.echo(rendered)

    click.echo(
        f"{len(result.migrated)} migrated, {len(result.unchanged)} unchanged, "
        f"{len(result.skipped)} skipped, {len(result.failed)} failed",
        err=True,
    )
    for document_id, reason in result.failed:
        click.echo(f"  {document_id}: {reason}", err=True)

    if fail_on_error and result.failed:
        sys.exit(1)


if __name__ == "__main__":
    main()

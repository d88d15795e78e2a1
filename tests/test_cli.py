"""
Tests for the modelguard CLI.
"""

import json
import sys

import pytest
import yaml
from click.testing import CliRunner

from modelguard.cli import main
from modelguard.logger import configure_validation_logging

CATALOG = {
    "entities": {
        "_base": {"createdAt": {"type": "number", "nullable": True}},
        "Article": {
            "_allowedRoles": {"read": "reader", "write": "editor"},
            "title": {"nullable": False, "minimumLength": 2},
            "status": {"selection": ["draft", "published"], "default": "draft"},
            "tags": {"type": "string[]"},
        },
    },
}


def leading_json(output):
    """First JSON value of the output (diagnostics on stderr may follow)."""
    return json.JSONDecoder().raw_decode(output)[0]


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    configure_validation_logging(stream=sys.stdout, level="info")


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def invoke(runner):
    """Run the CLI with validation events limited to errors."""

    def run(arguments):
        return runner.invoke(main, ["--log-level", "error", *arguments])

    return run


@pytest.fixture
def catalog(tmp_path):
    path = tmp_path / "models.yaml"
    path.write_text(yaml.safe_dump(CATALOG))
    return str(path)


@pytest.fixture
def write_json(tmp_path):
    def write(name, data):
        path = tmp_path / name
        path.write_text(json.dumps(data))
        return str(path)

    return write


class TestResolve:
    """Tests for the resolve command."""

    def test_resolve_all(self, invoke, catalog):
        result = invoke(["resolve", catalog])
        assert result.exit_code == 0
        models = yaml.safe_load(result.output)
        assert set(models) == {"_base", "Article"}
        assert models["Article"]["createdAt"]["type"] == "number"

    def test_resolve_one_model_as_json(self, invoke, catalog):
        result = invoke(["resolve", catalog, "--model", "Article", "--format", "json"])
        assert result.exit_code == 0
        assert list(json.loads(result.output)) == ["Article"]

    def test_unknown_model(self, invoke, catalog):
        result = invoke(["resolve", catalog, "-m", "Missing"])
        assert result.exit_code == 1
        assert "Model 'Missing' not found" in result.output

    def test_invalid_catalog(self, invoke, tmp_path):
        path = tmp_path / "cyclic.yaml"
        path.write_text("A:\n  _extends: B\nB:\n  _extends: A\n")
        result = invoke(["resolve", str(path)])
        assert result.exit_code == 1
        assert "Could not load model configuration" in result.output

    def test_missing_file(self, invoke, tmp_path):
        result = invoke(["resolve", str(tmp_path / "missing.yaml")])
        assert result.exit_code == 2


class TestValidate:
    """Tests for the validate command."""

    def test_accepted_document(self, invoke, catalog, write_json):
        document = write_json("article.json", {"_type": "Article", "title": " Hello "})
        result = invoke(["validate", catalog, document])
        assert result.exit_code == 0
        assert leading_json(result.output) == {
            "_type": "Article",
            "title": "Hello",
            "status": "draft",
        }

    def test_rejected_document(self, invoke, catalog, write_json):
        document = write_json("article.json", {"_type": "Article", "title": "H"})
        result = invoke(["validate", catalog, document])
        assert result.exit_code == 1
        assert leading_json(result.output)["forbidden"].startswith("MinimalLength:")

    def test_update_with_strategy(self, invoke, catalog, write_json):
        document = write_json("article.json", {"_type": "Article", "status": "published"})
        old = write_json("old.json", {"_type": "Article", "title": "Hello", "status": "draft"})
        result = invoke(["validate", catalog, document, "--old", old, "-s", "fillUp"])
        assert result.exit_code == 0
        assert leading_json(result.output) == {
            "_type": "Article",
            "title": "Hello",
            "status": "published",
        }
        assert "Changed: status -> value updated" in result.output

    def test_unknown_strategy(self, invoke, catalog, write_json):
        document = write_json("article.json", {"_type": "Article", "title": "Hello"})
        result = invoke(["validate", catalog, document, "--strategy", "merge"])
        assert result.exit_code == 1
        assert leading_json(result.output)["forbidden"].startswith("UpdateStrategy:")

    def test_events_go_to_stderr(self, runner, catalog, write_json):
        document = write_json("article.json", {"_type": "Article", "title": "Hello"})
        result = runner.invoke(main, ["validate", catalog, document])
        assert result.exit_code == 0
        assert '"event": "document.accepted"' in result.output


class TestAuthorize:
    """Tests for the authorize command."""

    def test_allowed_write(self, invoke, catalog, write_json):
        document = write_json("article.json", {"_type": "Article"})
        result = invoke(["authorize", catalog, document, "-u", "alice", "-r", "editor"])
        assert result.exit_code == 0
        decision = json.loads(result.output)
        assert decision["decision"] == "allow"
        assert decision["matched_role"] == "editor"

    def test_denied_write(self, invoke, catalog, write_json):
        document = write_json("article.json", {"_type": "Article"})
        result = invoke(["authorize", catalog, document, "-u", "bob", "-r", "reader"])
        assert result.exit_code == 1
        decision = json.loads(result.output)
        assert decision["decision"] == "deny"
        assert 'Current user "bob"' in decision["denial_reason"]

    def test_allowed_read(self, invoke, catalog, write_json):
        document = write_json("article.json", {"_type": "Article"})
        result = invoke(["authorize", catalog, document, "-r", "reader", "--read"])
        assert result.exit_code == 0
        assert json.loads(result.output)["operation"] == "read"


class TestCatalogCommands:
    """Tests for the roles and indexes commands."""

    def test_roles(self, invoke, catalog):
        result = invoke(["roles", catalog, "--format", "json"])
        assert result.exit_code == 0
        roles = json.loads(result.output)
        assert roles["Article"]["read"] == ["reader"]
        assert roles["Article"]["write"] == ["editor"]
        assert roles["_base"]["write"] == []

    def test_indexes(self, invoke, catalog):
        result = invoke(["indexes", catalog])
        assert result.exit_code == 0
        indexes = yaml.safe_load(result.output)
        assert indexes["Article"] == ["_id", "_rev", "createdAt", "status", "title"]


class TestMigrate:
    """Tests for the migrate command."""

    @pytest.fixture
    def dump(self, write_json):
        return write_json("dump.json", [
            {"_id": "a-1", "_rev": "1-a", "_type": "Article", "title": "Hello", "status": "draft"},
            {"_id": "a-2", "_rev": "1-b", "_type": "Article", "title": "Hello", "legacy": 1},
            {"_id": "a-3", "_rev": "1-c", "_type": "Article"},
            {"_id": "_design/Article", "language": "javascript"},
        ])

    def test_migrate_to_file(self, invoke, catalog, dump, tmp_path):
        output = tmp_path / "migrated.json"
        result = invoke([
            "migrate", catalog, dump, "--output", str(output),
        ])
        assert result.exit_code == 0
        migrated = json.loads(output.read_text())
        assert migrated == [
            {"_id": "a-2", "_rev": "1-b", "_type": "Article", "title": "Hello", "status": "draft"},
        ]
        assert "1 migrated, 1 unchanged, 1 skipped, 1 failed" in result.output
        assert "a-3: MissingProperty" in result.output

    def test_fail_on_error(self, invoke, catalog, dump, tmp_path):
        result = invoke([
            "migrate", catalog, dump,
            "-o", str(tmp_path / "migrated.json"), "--fail-on-error",
        ])
        assert result.exit_code == 1

    def test_invalid_documents_file(self, invoke, catalog, tmp_path):
        path = tmp_path / "dump.yaml"
        path.write_text("42\n")
        result = invoke(["migrate", catalog, str(path)])
        assert result.exit_code == 1
        assert "Error:" in result.output

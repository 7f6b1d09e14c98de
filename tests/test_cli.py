"""
Tests for promptstore/cli.py -- the command-line front end.
"""

import json

import pytest

from promptstore.cli import COMBINED_STUB_FILENAME, main
from promptstore.config import CONFIG_ENV_VAR, PROMPTS_DIR_ENV_VAR


@pytest.fixture
def cli(tmp_path, monkeypatch):
    """Return a runner bound to a config file in a temp dir."""
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.delenv(PROMPTS_DIR_ENV_VAR, raising=False)
    config_path = tmp_path / "promptstore.json"
    config_path.write_text(json.dumps({"promptsDir": "prompts", "outputDir": "out"}), encoding="utf-8")

    def run(*args):
        return main(["--config", str(config_path), *args])

    return run


@pytest.fixture
def entity_file(tmp_path, sample_entity_data):
    path = tmp_path / "greet.json"
    path.write_text(json.dumps(sample_entity_data), encoding="utf-8")
    return path


class TestCommands:
    """Tests for the happy path of each command."""

    def test_create_show_versions(self, cli, entity_file, capsys):
        """Verify a created prompt can be shown and its versions listed."""
        assert cli("create", str(entity_file)) == 0
        assert "Created demo/greet v1.0.0" in capsys.readouterr().out

        assert cli("show", "demo", "greet") == 0
        shown = json.loads(capsys.readouterr().out)
        assert shown["template"] == "Hi {{who}}"

        assert cli("versions", "demo", "greet") == 0
        assert capsys.readouterr().out.split() == ["1.0.0"]

    def test_update_and_revert(self, cli, entity_file, tmp_path, capsys):
        """Verify update bumps the version and revert restores old content."""
        cli("create", str(entity_file))
        changes = tmp_path / "changes.json"
        changes.write_text(json.dumps({"template": "Bye {{who}}"}), encoding="utf-8")
        assert cli("update", "demo", "greet", str(changes)) == 0
        assert cli("update", "demo", "greet", str(changes), "--no-bump") == 0
        assert cli("revert", "demo", "greet", "1.0.0") == 0
        capsys.readouterr()
        cli("show", "demo", "greet", "--version", "1.0.1")
        assert json.loads(capsys.readouterr().out)["template"] == "Bye {{who}}"
        cli("versions", "demo", "greet")
        assert capsys.readouterr().out.split() == ["1.0.2", "1.0.1", "1.0.0"]

    def test_list_search_categories(self, cli, entity_file, capsys):
        """Verify listing commands print one line per result."""
        cli("create", str(entity_file))
        cli("create-category", "empty")
        capsys.readouterr()
        cli("categories")
        assert capsys.readouterr().out.split() == ["demo", "empty"]
        cli("list", "--category", "demo")
        assert "greet (demo) v1.0.0" in capsys.readouterr().out
        cli("search", "someone")
        assert "greet" in capsys.readouterr().out
        cli("search", "nothing-like-this")
        assert "No prompts match" in capsys.readouterr().out

    def test_format(self, cli, entity_file, capsys):
        """Verify format renders the template with key=value inputs."""
        cli("create", str(entity_file))
        capsys.readouterr()
        assert cli("format", "demo", "greet", "who=Ada") == 0
        assert capsys.readouterr().out.strip() == "Hi Ada"
        assert cli("format", "demo", "greet", "oops") == 2

    def test_rename_and_delete(self, cli, entity_file, capsys):
        """Verify rename moves the prompt and delete-category removes it."""
        cli("create", str(entity_file))
        assert cli("rename", "demo", "greet", "social", "hello") == 0
        assert cli("show", "social", "hello") == 0
        assert cli("delete", "social", "hello") == 0
        assert cli("delete-category", "demo") == 0
        capsys.readouterr()
        cli("categories")
        assert capsys.readouterr().out.split() == ["social"]

    def test_export_stubs(self, cli, entity_file, tmp_path):
        """Verify export-stubs writes one combined module into the output dir."""
        cli("create", str(entity_file))
        assert cli("export-stubs") == 0
        stub = (tmp_path / "out" / COMBINED_STUB_FILENAME).read_text(encoding="utf-8")
        assert "class DemoGreetInput(TypedDict):" in stub


class TestErrors:
    """Tests for error reporting."""

    def test_not_found(self, cli, capsys):
        """Verify store errors print one line and exit 1."""
        assert cli("show", "demo", "missing") == 1
        err = capsys.readouterr().err
        assert "Error: Could not find the prompt 'demo/missing'." in err

    def test_validation_one_line(self, cli, tmp_path, capsys):
        """Verify validation errors are collapsed onto one line."""
        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps({"category": "demo", "name": "bad name", "template": ""}), encoding="utf-8")
        assert cli("create", str(bad)) == 1
        lines = [line for line in capsys.readouterr().err.splitlines() if line.startswith("Error:")]
        assert len(lines) == 1
        assert "name:" in lines[0] and "template:" in lines[0]

    def test_unreadable_input_file(self, cli, tmp_path, capsys):
        """Verify a missing or broken input file is a clean error."""
        assert cli("create", str(tmp_path / "nope.json")) == 1
        broken = tmp_path / "broken.json"
        broken.write_text("{", encoding="utf-8")
        assert cli("create", str(broken)) == 1
        assert "not valid JSON" in capsys.readouterr().err

    def test_bad_config(self, tmp_path, capsys):
        """Verify configuration errors exit 1."""
        assert main(["--config", str(tmp_path / "missing.json"), "categories"]) == 1
        assert "does not exist" in capsys.readouterr().err

"""
Tests for promptstore/config.py -- locating and validating configuration.
"""

import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from promptstore.config import (
    CONFIG_ENV_VAR,
    CONFIG_FILENAME,
    PROMPTS_DIR_ENV_VAR,
    StoreConfig,
    load_config,
)
from promptstore.errors import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate every test from the caller's environment and working dir."""
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.delenv(PROMPTS_DIR_ENV_VAR, raising=False)
    monkeypatch.chdir(tmp_path)


def _write_config(directory, data):
    path = directory / CONFIG_FILENAME
    path.write_text(data if isinstance(data, str) else json.dumps(data), encoding="utf-8")
    return path


class TestLoadConfig:
    """Tests for load_config lookup order and parsing."""

    def test_explicit_path(self, tmp_path):
        """Verify camelCase keys load and directories resolve next to the file."""
        path = _write_config(tmp_path, {
            "promptsDir": ".prompts",
            "outputDir": "out",
            "preferredModels": ["m1"],
            "modelParams": {"m1": {"temperature": 0.1}},
            "lockRetries": 2,
        })
        config = load_config(path)
        assert config.prompts_dir == tmp_path.resolve() / ".prompts"
        assert config.output_dir == tmp_path.resolve() / "out"
        assert config.preferred_models == ["m1"]
        assert config.model_params["m1"]["temperature"] == 0.1
        assert config.lock_retries == 2
        assert config.conflict_retries == 3
        assert config.store_manifest_path == tmp_path.resolve() / "store-manifest.json"

    def test_env_var_path(self, tmp_path, monkeypatch):
        """Verify PROMPTSTORE_CONFIG is used when no path is given."""
        nested = tmp_path / "conf"
        nested.mkdir()
        path = _write_config(nested, {"promptsDir": "p"})
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert load_config().prompts_dir == nested.resolve() / "p"

    def test_working_directory_file(self, tmp_path):
        """Verify ./promptstore.json is picked up."""
        _write_config(tmp_path, {})
        config = load_config()
        assert config.prompts_dir == tmp_path.resolve() / "prompts"
        assert config.output_dir == tmp_path.resolve() / "generated"

    def test_defaults_without_file(self, tmp_path, monkeypatch):
        """Verify defaults live under the user data directory."""
        monkeypatch.setattr("promptstore.config.get_user_data_dir", lambda: tmp_path / "data")
        config = load_config()
        assert config.prompts_dir == tmp_path / "data" / "prompts"
        assert config.lock_retries == 5
        assert config.lock_retry_delay == 0.2
        assert config.generate_artifacts is True

    def test_prompts_dir_override(self, tmp_path, monkeypatch):
        """Verify PROMPTSTORE_PROMPTS_DIR wins over the file."""
        _write_config(tmp_path, {"promptsDir": "from-file"})
        monkeypatch.setenv(PROMPTS_DIR_ENV_VAR, str(tmp_path / "from-env"))
        assert load_config().prompts_dir == (tmp_path / "from-env").resolve()

    def test_missing_explicit_file(self, tmp_path):
        """Verify a named file that does not exist is an error."""
        with pytest.raises(ConfigError):
            load_config(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path):
        """Verify broken JSON is reported with its position."""
        path = _write_config(tmp_path, "{broken")
        with pytest.raises(ConfigError) as info:
            load_config(path)
        assert "line 1" in str(info.value)

    def test_invalid_values(self, tmp_path):
        """Verify out-of-range and unknown settings are rejected."""
        with pytest.raises(ConfigError):
            load_config(_write_config(tmp_path, {"lockRetries": -1}))
        with pytest.raises(ConfigError):
            load_config(_write_config(tmp_path, {"colour": "red"}))
        with pytest.raises(ConfigError):
            load_config(_write_config(tmp_path, {"promptsDir": 5}))
        with pytest.raises(ConfigError):
            load_config(_write_config(tmp_path, ["not", "an", "object"]))


class TestStoreConfig:
    """Tests for the StoreConfig model."""

    def test_frozen(self, tmp_path):
        """Verify configs cannot be changed after loading."""
        config = StoreConfig.defaults(tmp_path)
        with pytest.raises(PydanticValidationError):
            config.lock_retries = 9

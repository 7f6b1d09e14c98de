"""
promptstore/config.py -- Store configuration.

Configuration is read once, validated with pydantic and then treated as
immutable.  The file is ``promptstore.json`` with camelCase keys::

    {
      "promptsDir": ".prompts",
      "outputDir": "generated",
      "preferredModels": ["default-model"],
      "modelParams": {"default-model": {"temperature": 0.7}},
      "lockRetries": 5,
      "lockRetryDelay": 0.2
    }

Relative directories resolve against the directory holding the file.

Lookup order for ``load_config()``:
    1. the explicit ``path`` argument;
    2. the ``PROMPTSTORE_CONFIG`` environment variable;
    3. ``./promptstore.json`` in the working directory;
    4. built-in defaults rooted in the platform user data directory.

``PROMPTSTORE_PROMPTS_DIR`` overrides ``promptsDir`` whichever source won.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from platformdirs import user_data_dir
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from promptstore.errors import ConfigError
from promptstore.layout import STORE_MANIFEST_FILENAME

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "promptstore.json"
CONFIG_ENV_VAR = "PROMPTSTORE_CONFIG"
PROMPTS_DIR_ENV_VAR = "PROMPTSTORE_PROMPTS_DIR"

_APP_NAME = "promptstore"
_APP_AUTHOR = "promptstore"


def get_user_data_dir() -> Path:
    """Return the platform-appropriate user data directory (not created)."""
    return Path(user_data_dir(_APP_NAME, _APP_AUTHOR))


class StoreConfig(BaseModel):
    """Everything the store and the CLI need to know, frozen once built."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
        protected_namespaces=(),
    )

    prompts_dir: Path
    output_dir: Path
    preferred_models: list[str] = Field(default_factory=list)
    model_params: dict[str, dict[str, Any]] = Field(default_factory=dict)
    lock_retries: int = Field(default=5, ge=0)
    lock_retry_delay: float = Field(default=0.2, ge=0)
    lock_stale_after: float = Field(default=30.0, gt=0)
    conflict_retries: int = Field(default=3, ge=1)
    generate_artifacts: bool = True

    @property
    def store_manifest_path(self) -> Path:
        return self.prompts_dir.parent / STORE_MANIFEST_FILENAME

    @classmethod
    def defaults(cls, base_dir=None, **overrides) -> "StoreConfig":
        """Build a config rooted at *base_dir* (user data dir if omitted)."""
        base = Path(base_dir) if base_dir is not None else get_user_data_dir()
        values: dict[str, Any] = {
            "prompts_dir": base / "prompts",
            "output_dir": base / "generated",
        }
        values.update(overrides)
        return cls(**values)


def load_config(path=None) -> StoreConfig:
    """Locate, read and validate the configuration.

    Raises
    ------
    ConfigError
        If an explicitly named file is missing, or any file found is not
        valid JSON or does not match ``StoreConfig``.
    """
    source = _find_config_file(path)
    if source is None:
        logger.debug("No %s found; using defaults", CONFIG_FILENAME)
        config = StoreConfig.defaults()
    else:
        config = _read_config_file(source)

    override = os.environ.get(PROMPTS_DIR_ENV_VAR)
    if override:
        config = config.model_copy(update={"prompts_dir": Path(override).resolve()})
    return config


def _find_config_file(path) -> Path | None:
    explicit = path or os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidate = Path(explicit)
        if not candidate.is_file():
            raise ConfigError(f"Configuration file '{candidate}' does not exist.")
        return candidate
    local = Path.cwd() / CONFIG_FILENAME
    return local if local.is_file() else None


def _read_config_file(source: Path) -> StoreConfig:
    try:
        with open(source, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ConfigError(
            f"Configuration file '{source}' is not valid JSON "
            f"(line {exc.lineno}, column {exc.colno}): {exc.msg}"
        ) from exc
    except OSError as exc:
        raise ConfigError(f"Could not read configuration file '{source}': {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file '{source}' must contain a JSON object.")

    base = source.resolve().parent
    data = dict(data)
    for key, default in (("promptsDir", "prompts"), ("outputDir", "generated")):
        value = data.get(key, default)
        if not isinstance(value, str):
            raise ConfigError(f"Configuration file '{source}': '{key}' must be a path string.")
        data[key] = base / value

    try:
        config = StoreConfig.model_validate(data)
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise ConfigError(f"Configuration file '{source}' is invalid: {problems}") from exc
    logger.info("Loaded configuration from %s", source)
    return config

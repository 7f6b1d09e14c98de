"""
promptstore -- A versioned, file-backed store for prompt templates.

Usage::

    from promptstore import EntityStore, load_config

    store = EntityStore(load_config())
    await store.initialize()
    entity = await store.create({"category": "demo", "name": "greet",
                                 "template": "Hi {{who}}"})
"""

from promptstore.config import StoreConfig, load_config
from promptstore.entity_store import EntityStore
from promptstore.errors import (
    AlreadyExistsError,
    ConfigError,
    CorruptDataError,
    LockTimeoutError,
    NotFoundError,
    StorageError,
    StorageFailure,
    StoreError,
    ValidationError,
    VersionConflictError,
)
from promptstore.models import EntityKey, PromptEntity

__version__ = "0.1.0"

__all__ = [
    "AlreadyExistsError",
    "ConfigError",
    "CorruptDataError",
    "EntityKey",
    "EntityStore",
    "LockTimeoutError",
    "NotFoundError",
    "PromptEntity",
    "StorageError",
    "StorageFailure",
    "StoreConfig",
    "StoreError",
    "ValidationError",
    "VersionConflictError",
    "load_config",
]

"""
promptstore/store_manifest.py -- Store-wide summary file.

``store-manifest.json`` sits next to the prompts root and records how many
entities the store holds and when it last changed shape::

    {"schemaVersion": 1, "lastUpdated": "2024-05-01T10:00:00+00:00", "entityCount": 12}

It is rewritten under the lock on the prompts root after every create,
delete, rename and category change.  Nothing in the store reads it back;
it exists for tooling that wants a cheap overview.
"""

from __future__ import annotations

import logging
from typing import Any

from promptstore.layout import StoreLayout
from promptstore.lock_manager import LockManager
from promptstore.utils import now_iso, safe_read_json, write_json_atomic

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class StoreManifest:

    def __init__(self, layout: StoreLayout, locks: LockManager):
        self.layout = layout
        self.locks = locks

    @property
    def path(self):
        return self.layout.store_manifest_path

    async def read(self) -> dict[str, Any] | None:
        """Return the manifest, or None if it is missing or unreadable."""
        data = await safe_read_json(self.path)
        return data if isinstance(data, dict) else None

    async def refresh(self, entity_count: int) -> dict[str, Any]:
        """Rewrite the manifest with *entity_count* and the current time."""
        manifest = {
            "schemaVersion": SCHEMA_VERSION,
            "lastUpdated": now_iso(),
            "entityCount": entity_count,
        }
        async with self.locks.acquire(self.layout.root):
            await write_json_atomic(self.path, manifest)
        logger.debug("Store manifest updated: %d entities", entity_count)
        return manifest

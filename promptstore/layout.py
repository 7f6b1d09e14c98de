"""
promptstore/layout.py -- On-disk path resolution for the prompt store.

Every path the store reads or writes is derived here so that the directory
layout lives in exactly one place::

    <root>/<category>/<name>/current.json
    <root>/<category>/<name>/.versions/v<version>.json
    <root>/<category>/<name>/.versions/versions.json
    <root>/../store-manifest.json
"""

from __future__ import annotations

from pathlib import Path

from promptstore.models.entity import EntityKey

CURRENT_FILENAME = "current.json"
VERSIONS_DIRNAME = ".versions"
VERSION_MANIFEST_FILENAME = "versions.json"
STORE_MANIFEST_FILENAME = "store-manifest.json"

RESERVED_FILENAMES = frozenset({CURRENT_FILENAME, VERSIONS_DIRNAME})


class StoreLayout:
    """Maps entity keys to paths under a prompts root.

    Parameters
    ----------
    root : str or pathlib.Path
        The prompts directory.  Resolved to an absolute path.
    """

    def __init__(self, root):
        self.root = Path(root).resolve()

    @property
    def store_manifest_path(self) -> Path:
        return self.root.parent / STORE_MANIFEST_FILENAME

    def category_dir(self, category: str) -> Path:
        return self.root / category

    def entity_dir(self, key: EntityKey) -> Path:
        return self.root / key.category / key.name

    def current_path(self, key: EntityKey) -> Path:
        return self.entity_dir(key) / CURRENT_FILENAME

    def versions_dir(self, key: EntityKey) -> Path:
        return self.entity_dir(key) / VERSIONS_DIRNAME

    def snapshot_path(self, key: EntityKey, version: str) -> Path:
        return self.versions_dir(key) / f"v{version}.json"

    def version_manifest_path(self, key: EntityKey) -> Path:
        return self.versions_dir(key) / VERSION_MANIFEST_FILENAME

    def artifact_path(self, key: EntityKey, filename: str) -> Path:
        """Return the path of a generated artifact inside the entity directory.

        Raises ``ValueError`` if *filename* is not a plain file name or would
        shadow one of the store's own files.
        """
        if (
            not filename
            or filename in RESERVED_FILENAMES
            or filename.startswith(".")
            or "/" in filename
            or "\\" in filename
        ):
            raise ValueError(
                f"Generated artifact name '{filename}' is not allowed; it must be a "
                f"plain file name that does not clash with {sorted(RESERVED_FILENAMES)}."
            )
        return self.entity_dir(key) / filename

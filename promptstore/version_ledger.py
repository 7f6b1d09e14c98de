"""
promptstore/version_ledger.py -- Per-entity version history.

Versions are dotted numeric strings ("1.2.3").  They are compared component
by component as integers, with missing trailing components counting as 0, so
"1.0.10" sorts above "1.0.9" and "1.0" equals "1.0.0".  Plain string
comparison is never used.

The manifest (``.versions/versions.json``) lists every version ever recorded
for one entity, unique and sorted highest first.
"""

from __future__ import annotations

import json
import logging
import re
from functools import cmp_to_key
from typing import Iterable

from promptstore.layout import StoreLayout
from promptstore.models.entity import VERSION_PATTERN, EntityKey
from promptstore.utils import read_json, write_json_atomic

logger = logging.getLogger(__name__)

SENTINEL_VERSION = "0.0.0"

_VERSION_RE = re.compile(VERSION_PATTERN)


# ---------------------------------------------------------------------------
# Version arithmetic
# ---------------------------------------------------------------------------

def parse_version(version: str) -> tuple[int, ...]:
    """Split a dotted version into integer components.

    Raises ``ValueError`` for anything that is not digits separated by dots.
    """
    if not isinstance(version, str) or not _VERSION_RE.match(version):
        raise ValueError(
            f"'{version}' is not a valid version; expected numbers separated "
            f"by dots, e.g. '1.0.0'."
        )
    return tuple(int(part) for part in version.split("."))


def compare_versions(a: str, b: str) -> int:
    """Return 1 if *a* is newer than *b*, -1 if older, 0 if equal."""
    parts_a = parse_version(a)
    parts_b = parse_version(b)
    width = max(len(parts_a), len(parts_b))
    for i in range(width):
        part_a = parts_a[i] if i < len(parts_a) else 0
        part_b = parts_b[i] if i < len(parts_b) else 0
        if part_a > part_b:
            return 1
        if part_a < part_b:
            return -1
    return 0


def increment_version(version: str) -> str:
    """Bump the last component: "1.2.9" -> "1.2.10"."""
    parts = list(parse_version(version))
    parts[-1] += 1
    return ".".join(str(p) for p in parts)


def _identity(version: str) -> tuple[int, ...]:
    parts = list(parse_version(version))
    while len(parts) > 1 and parts[-1] == 0:
        parts.pop()
    return tuple(parts)


def sort_versions_desc(versions: Iterable[str]) -> list[str]:
    """Deduplicate *versions* and sort them highest first.

    Spellings of one version ("1.0", "1.0.0") count once; the first seen is
    kept.
    """
    unique: dict[tuple[int, ...], str] = {}
    for version in versions:
        unique.setdefault(_identity(version), version)
    return sorted(unique.values(), key=cmp_to_key(compare_versions), reverse=True)


def recorded_spelling(versions: Iterable[str], version: str) -> str | None:
    """Return the entry of *versions* equal to *version*, or None."""
    for recorded in versions:
        if compare_versions(recorded, version) == 0:
            return recorded
    return None


# ---------------------------------------------------------------------------
# VersionLedger
# ---------------------------------------------------------------------------

class VersionLedger:
    """Reads and records the version manifest of each entity.

    Parameters
    ----------
    layout : StoreLayout
        Where manifests live.
    """

    def __init__(self, layout: StoreLayout):
        self.layout = layout

    async def get_versions(self, key: EntityKey) -> list[str]:
        """Return the recorded versions of *key*, highest first.

        A missing manifest means no history and yields ``[]``.  So does a
        damaged one (logged): history must never break a lookup that would
        otherwise succeed.
        """
        path = self.layout.version_manifest_path(key)
        try:
            data = await read_json(path)
        except FileNotFoundError:
            return []
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable version manifest %s: %s", path, exc)
            return []
        if not isinstance(data, list):
            logger.warning("Ignoring version manifest %s: expected a list", path)
            return []
        valid = []
        for item in data:
            try:
                parse_version(item)
            except ValueError:
                logger.warning("Skipping invalid version %r in %s", item, path)
                continue
            valid.append(item)
        return sort_versions_desc(valid)

    async def get_current_version(self, key: EntityKey) -> str:
        """Return the highest recorded version, or ``"0.0.0"`` if none."""
        versions = await self.get_versions(key)
        return versions[0] if versions else SENTINEL_VERSION

    async def find_version(self, key: EntityKey, version: str) -> str | None:
        """Return the recorded spelling of *version* for *key*, or None."""
        return recorded_spelling(await self.get_versions(key), version)

    async def has_version(self, key: EntityKey, version: str) -> bool:
        return await self.find_version(key, version) is not None

    async def record_version(self, key: EntityKey, version: str) -> list[str]:
        """Add *version* to the manifest of *key* and write it back.

        The caller is expected to hold the entity's directory lock.
        Returns the updated list.
        """
        versions = self.with_version(await self.get_versions(key), version)
        await write_json_atomic(self.layout.version_manifest_path(key), versions)
        return versions

    @staticmethod
    def with_version(versions: Iterable[str], version: str) -> list[str]:
        """Return *versions* plus *version*, deduplicated and sorted highest first."""
        parse_version(version)
        current = list(versions)
        if recorded_spelling(current, version) is None:
            current.append(version)
        return sort_versions_desc(current)

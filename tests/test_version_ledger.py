"""
Tests for promptstore/version_ledger.py -- version arithmetic and manifests.

Validates:
    - Dotted-numeric comparison (never lexicographic)
    - Incrementing the last component
    - Manifest reads tolerate missing and damaged files
    - record_version keeps entries unique (numerically) and sorted highest first
"""

import json

import pytest

from promptstore.layout import StoreLayout
from promptstore.models.entity import EntityKey
from promptstore.version_ledger import (
    SENTINEL_VERSION,
    VersionLedger,
    compare_versions,
    increment_version,
    parse_version,
    sort_versions_desc,
)

KEY = EntityKey("demo", "greet")


@pytest.fixture
def ledger(prompts_root):
    return VersionLedger(StoreLayout(prompts_root))


def _write_manifest(ledger, data):
    path = ledger.layout.version_manifest_path(KEY)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(data if isinstance(data, str) else json.dumps(data), encoding="utf-8")


class TestVersionArithmetic:
    """Tests for parse/compare/increment/sort."""

    def test_numeric_not_lexicographic(self):
        """Verify 1.0.10 sorts above 1.0.9."""
        assert compare_versions("1.0.10", "1.0.9") == 1
        assert compare_versions("1.0.9", "1.0.10") == -1

    def test_missing_components_are_zero(self):
        """Verify 1.0 equals 1.0.0."""
        assert compare_versions("1.0", "1.0.0") == 0
        assert compare_versions("2", "1.9.9") == 1

    def test_increment_last_component(self):
        """Verify only the last component is bumped."""
        assert increment_version("1.0.0") == "1.0.1"
        assert increment_version("1.2.9") == "1.2.10"
        assert increment_version("3") == "4"

    def test_parse_rejects_garbage(self):
        """Verify non-numeric versions raise ValueError."""
        for bad in ("", "1.a", "v1.0", "1..0", "1.0."):
            with pytest.raises(ValueError):
                parse_version(bad)

    def test_sort_dedupes_descending(self):
        """Verify duplicates are dropped and order is highest first."""
        assert sort_versions_desc(["1.0.9", "1.0.10", "1.0.9", "0.9"]) == ["1.0.10", "1.0.9", "0.9"]

    def test_sort_dedupes_equal_spellings(self):
        """Verify "1.0" and "1.0.0" count as one version, the first kept."""
        assert sort_versions_desc(["1.0.0", "1.0", "1", "0.9"]) == ["1.0.0", "0.9"]
        assert sort_versions_desc(["1.0", "1.0.0"]) == ["1.0"]


class TestVersionLedger:
    """Tests for manifest reading and recording."""

    async def test_missing_manifest_is_empty(self, ledger):
        """Verify an entity with no manifest has no versions."""
        assert await ledger.get_versions(KEY) == []
        assert await ledger.get_current_version(KEY) == SENTINEL_VERSION

    async def test_corrupt_manifest_is_empty(self, ledger):
        """Verify a damaged manifest is treated as no history."""
        _write_manifest(ledger, "{not json")
        assert await ledger.get_versions(KEY) == []

    async def test_non_list_manifest_is_empty(self, ledger):
        """Verify a manifest that is not a list is ignored."""
        _write_manifest(ledger, {"versions": ["1.0.0"]})
        assert await ledger.get_versions(KEY) == []

    async def test_invalid_entries_skipped(self, ledger):
        """Verify invalid version strings are skipped, the rest kept sorted."""
        _write_manifest(ledger, ["1.0.0", "junk", 7, "1.0.2"])
        assert await ledger.get_versions(KEY) == ["1.0.2", "1.0.0"]

    async def test_record_version(self, ledger):
        """Verify recording inserts, dedupes and sorts on disk."""
        await ledger.record_version(KEY, "1.0.9")
        await ledger.record_version(KEY, "1.0.10")
        result = await ledger.record_version(KEY, "1.0.9")
        assert result == ["1.0.10", "1.0.9"]
        on_disk = json.loads(ledger.layout.version_manifest_path(KEY).read_text(encoding="utf-8"))
        assert on_disk == ["1.0.10", "1.0.9"]
        assert await ledger.get_current_version(KEY) == "1.0.10"
        assert await ledger.has_version(KEY, "1.0.9")

    async def test_equal_spelling_recorded_once(self, ledger):
        """Verify a numerically equal version is found but not added again."""
        await ledger.record_version(KEY, "1.0.0")
        assert await ledger.record_version(KEY, "1.0") == ["1.0.0"]
        assert await ledger.find_version(KEY, "1.0") == "1.0.0"
        assert await ledger.has_version(KEY, "1")
        assert await ledger.find_version(KEY, "1.0.1") is None
        assert VersionLedger.with_version(["1.0.0"], "1.0.0.0") == ["1.0.0"]

    async def test_record_rejects_invalid(self, ledger):
        """Verify an invalid version is never written."""
        with pytest.raises(ValueError):
            await ledger.record_version(KEY, "latest")
        assert not ledger.layout.version_manifest_path(KEY).exists()

    def test_with_version_is_pure(self):
        """Verify with_version leaves its input alone."""
        original = ["1.0.0"]
        assert VersionLedger.with_version(original, "1.0.1") == ["1.0.1", "1.0.0"]
        assert original == ["1.0.0"]

"""
promptstore/entity_store.py -- Versioned CRUD for prompt entities.

The ``EntityStore`` is what every caller talks to.  It never writes a file
directly: each persist validates the entity, locks the entity directory,
lets the ``ConflictResolver`` settle the version, then queues the current
state, a snapshot of that version, the updated version manifest and the
code generator's artifacts in one ``TransactionLog`` and commits it under
the lock it already holds.

On disk (see ``promptstore.layout``)::

    <root>/<category>/<name>/current.json
    <root>/<category>/<name>/.versions/v<version>.json
    <root>/<category>/<name>/.versions/versions.json
    <root>/<category>/<name>/prompt.pyi, samples.json

Usage::

    store = EntityStore(load_config())
    await store.initialize()
    entity = await store.create({"category": "demo", "name": "greet",
                                 "template": "Hi {{who}}"})
    entity = await store.update("demo", "greet", {"description": "Say hi"})
    await store.versions("demo", "greet")      # ["1.0.1", "1.0.0"]
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Mapping

import aiofiles.os
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from promptstore.codegen import CodeGenerator, StubGenerator
from promptstore.config import StoreConfig
from promptstore.conflict_resolver import ConflictResolver
from promptstore.errors import (
    AlreadyExistsError,
    CorruptDataError,
    NotFoundError,
    ValidationError,
)
from promptstore.layout import StoreLayout
from promptstore.lock_manager import LockHandle, LockManager, normalize_path
from promptstore.models.entity import (
    EntityKey,
    PromptEntity,
    is_valid_name,
    template_parameters,
)
from promptstore.models.validators import (
    FieldError,
    JsonSchemaValidator,
    SchemaValidator,
    validate_entity_document,
)
from promptstore.store_manifest import StoreManifest
from promptstore.transaction import TransactionLog
from promptstore.utils import (
    classify_os_error,
    dump_json,
    list_files,
    list_subdirectories,
    now_iso,
    read_json,
    read_text,
    remove_tree,
    write_text_atomic,
)
from promptstore.version_ledger import (
    VersionLedger,
    increment_version,
    parse_version,
    recorded_spelling,
)

logger = logging.getLogger(__name__)


@contextmanager
def _classified(action: str) -> Iterator[None]:
    """Re-raise any ``OSError`` from the block as a ``StorageError``."""
    try:
        yield
    except OSError as exc:
        raise classify_os_error(exc, action) from exc


def _pydantic_field_errors(exc: PydanticValidationError) -> list[FieldError]:
    return [
        FieldError(".".join(str(p) for p in err["loc"]) or "(root)", err["msg"], err["type"])
        for err in exc.errors()
    ]


class EntityStore:
    """Versioned, file-backed store of prompt entities.

    Parameters
    ----------
    config : StoreConfig
        Prompts root, retry budgets and whether to generate artifacts.
    validator : SchemaValidator, optional
        Gate every entity document passes before it is written or after it
        is read.  Defaults to ``JsonSchemaValidator``.
    generator : CodeGenerator, optional
        Produces the companion files committed with each save.  Defaults to
        ``StubGenerator`` unless ``config.generate_artifacts`` is false.
    index : dict, optional
        The in-memory ``EntityKey -> PromptEntity`` map.  Pass one in to
        share it; otherwise the store owns a fresh one.
    """

    def __init__(
        self,
        config: StoreConfig,
        *,
        validator: SchemaValidator | None = None,
        generator: CodeGenerator | None = None,
        index: dict[EntityKey, PromptEntity] | None = None,
    ):
        self.config = config
        self.layout = StoreLayout(config.prompts_dir)
        self.locks = LockManager(
            retries=config.lock_retries,
            retry_delay=config.lock_retry_delay,
            stale_after=config.lock_stale_after,
        )
        self.ledger = VersionLedger(self.layout)
        self.resolver = ConflictResolver(self.ledger, max_attempts=config.conflict_retries)
        self.manifest = StoreManifest(self.layout, self.locks)
        self.validator = validator or JsonSchemaValidator()
        if generator is None and config.generate_artifacts:
            generator = StubGenerator()
        self.generator = generator
        self._index: dict[EntityKey, PromptEntity] = index if index is not None else {}

    @property
    def index(self) -> dict[EntityKey, PromptEntity]:
        return self._index

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def initialize(self) -> int:
        """Create the prompts root and load every entity into the index.

        Entities that fail to load are logged and skipped.  Returns the
        number of entities loaded.
        """
        with _classified("create the prompts directory"):
            await aiofiles.os.makedirs(str(self.layout.root), exist_ok=True)
        entities = await self.list_entities()
        logger.info("Loaded %d prompts from %s", len(entities), self.layout.root)
        return len(entities)

    # ------------------------------------------------------------------
    # Create / save / update
    # ------------------------------------------------------------------

    async def create(self, entity: PromptEntity | Mapping[str, Any]) -> PromptEntity:
        """Create a new entity.

        Missing optional fields get their defaults (version ``"1.0.0"``,
        fresh metadata timestamps, parameters taken from the template).

        Raises
        ------
        ValidationError
            If the entity does not match the schema.
        AlreadyExistsError
            If ``(category, name)`` is already taken, in the index or on disk.
        """
        entity = self._coerce(entity)
        if not entity.parameters:
            entity = entity.model_copy(update={"parameters": template_parameters(entity.template)})
        self._check(entity)
        key = entity.key
        if key in self._index:
            raise AlreadyExistsError(f"A prompt named '{key}' already exists.")

        entity_dir = self.layout.entity_dir(key)
        with _classified(f"create '{key}'"):
            async with self.locks.acquire(entity_dir) as handle:
                # Re-checked under the lock: a concurrent create may have won.
                if await aiofiles.os.path.exists(str(entity_dir)):
                    raise AlreadyExistsError(f"A prompt named '{key}' already exists.")
                saved = await self._persist_locked(entity, handle)
        self._index[key] = saved
        logger.info("Created %s v%s", key, saved.version)
        await self._refresh_manifest()
        return saved

    async def save(self, entity: PromptEntity | Mapping[str, Any]) -> PromptEntity:
        """Validate and persist *entity*, creating it if it does not exist.

        If the stored version is already ahead of ``entity.version`` the
        entity is re-stamped past it; the returned entity carries the
        version actually written.

        Raises
        ------
        ValidationError, LockTimeoutError, VersionConflictError, StorageError
        """
        entity = self._coerce(entity)
        self._check(entity)
        key = entity.key
        entity_dir = self.layout.entity_dir(key)
        with _classified(f"save '{key}'"):
            is_new = not await aiofiles.os.path.isdir(str(entity_dir))
            async with self.locks.acquire(entity_dir) as handle:
                saved = await self._persist_locked(entity, handle)
        self._index[key] = saved
        logger.info("Saved %s v%s", key, saved.version)
        if is_new:
            await self._refresh_manifest()
        return saved

    async def update(
        self,
        category: str,
        name: str,
        changes: Mapping[str, Any],
        *,
        bump_version: bool = True,
    ) -> PromptEntity:
        """Merge *changes* into the stored entity and save it.

        Top-level fields are replaced; ``metadata`` is merged one level
        deep.  Keys may be given in camelCase (as on disk) or snake_case.
        ``metadata.lastModified`` is always refreshed.  Unless
        *bump_version* is false or *changes* sets ``version`` explicitly,
        the last version component is incremented.

        Raises
        ------
        NotFoundError
            If the entity does not exist.
        ValidationError
            If *changes* tries to move the entity (use ``rename``) or the
            merged document does not match the schema.
        """
        key = self._make_key(category, name)
        changes = {(to_camel(k) if "_" in k else k): v for k, v in changes.items()}
        moved = [
            FieldError(field, "Cannot be changed by an update; use rename instead.", "rename")
            for field in ("category", "name")
            if field in changes and changes[field] != getattr(key, field)
        ]
        if moved:
            raise ValidationError(str(key), moved)

        current = await self.load(category, name)
        document = current.to_document()
        for field, value in changes.items():
            if field == "metadata" and isinstance(value, Mapping):
                value = {(to_camel(k) if "_" in k else k): v for k, v in value.items()}
                document["metadata"] = {**document["metadata"], **value}
            else:
                document[field] = value
        document["metadata"]["lastModified"] = now_iso()
        if bump_version and "version" not in changes:
            document["version"] = increment_version(current.version)

        errors = validate_entity_document(document, self.validator)
        if errors:
            raise ValidationError(str(key), errors)
        return await self.save(self._coerce(document))

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def load(self, category: str, name: str) -> PromptEntity:
        """Read, parse and validate the current state of an entity.

        Raises
        ------
        NotFoundError
            If the entity does not exist.
        CorruptDataError
            If ``current.json`` cannot be parsed or describes another key.
        ValidationError
            If the stored document no longer matches the schema.
        """
        key = self._make_key(category, name)
        entity_dir = self.layout.entity_dir(key)
        await self._require_entity_dir(key)
        with _classified(f"read '{key}'"):
            async with self.locks.acquire(entity_dir):
                entity = await self._read_current(key)
        self._index[key] = entity
        return entity

    async def load_version(self, category: str, name: str, version: str) -> PromptEntity:
        """Return the snapshot of an entity at *version*.

        Snapshots are not re-validated against the schema.  A version that
        is not in the manifest is not found, even if a file for it exists.
        """
        key = self._make_key(category, name)
        try:
            parse_version(version)
        except ValueError:
            raise NotFoundError(f"'{version}' is not a version of '{key}'.")
        await self._require_entity_dir(key)

        with _classified(f"read version {version} of '{key}'"):
            async with self.locks.acquire(self.layout.entity_dir(key)):
                recorded = await self.ledger.find_version(key, version)
                if recorded is None:
                    raise NotFoundError(f"Version {version} of '{key}' was never saved.")
                path = self.layout.snapshot_path(key, recorded)
                try:
                    document = await read_json(path)
                except FileNotFoundError:
                    raise NotFoundError(
                        f"Version {version} of '{key}' is listed but its snapshot is missing."
                    )
                except json.JSONDecodeError as exc:
                    raise CorruptDataError(path, f"invalid JSON at line {exc.lineno}") from exc
        try:
            return PromptEntity.from_document(document)
        except PydanticValidationError as exc:
            raise CorruptDataError(path, f"{exc.error_count()} invalid field(s)") from exc

    async def versions(self, category: str, name: str) -> list[str]:
        """Return every saved version of an entity, highest first."""
        key = self._make_key(category, name)
        await self._require_entity_dir(key)
        with _classified(f"read the versions of '{key}'"):
            async with self.locks.acquire(self.layout.entity_dir(key)):
                return await self.ledger.get_versions(key)

    def get(self, category: str, name: str) -> PromptEntity | None:
        """Return the indexed entity, or None.  Does not touch the disk."""
        return self._index.get(EntityKey(category, name))

    def exists(self, category: str, name: str) -> bool:
        return EntityKey(category, name) in self._index

    # ------------------------------------------------------------------
    # Revert / delete / rename
    # ------------------------------------------------------------------

    async def revert(self, category: str, name: str, version: str) -> PromptEntity:
        """Make the snapshot at *version* the current state again.

        The content is saved under a new version one past the current one;
        history is never rewritten.
        """
        key = self._make_key(category, name)
        snapshot = await self.load_version(category, name, version)
        disk_version = await self.ledger.get_current_version(key)
        restored = snapshot.model_copy(update={
            "category": key.category,
            "name": key.name,
            "version": increment_version(disk_version),
            "metadata": snapshot.metadata.model_copy(update={"last_modified": now_iso()}),
        })
        saved = await self.save(restored)
        logger.info("Reverted %s to the content of v%s (now v%s)", key, version, saved.version)
        return saved

    async def delete(self, category: str, name: str) -> None:
        """Remove an entity with all its snapshots.  Cannot be undone."""
        key = self._make_key(category, name)
        entity_dir = self.layout.entity_dir(key)
        await self._require_entity_dir(key)
        with _classified(f"delete '{key}'"):
            async with self.locks.acquire(entity_dir) as handle:
                await self._require_entity_dir(key)
                tx = TransactionLog(self.locks)
                tx.delete(self.layout.current_path(key))
                tx.delete(entity_dir)
                await tx.commit(held=handle)
        self._index.pop(key, None)
        logger.info("Deleted %s", key)
        await self._refresh_manifest()

    async def rename(
        self, category: str, name: str, new_category: str, new_name: str,
    ) -> PromptEntity:
        """Move an entity to a new ``(category, name)``.

        The directory is moved with its whole history, then the current
        state is re-persisted with the new key.  If that fails the
        directory is moved back.

        Raises
        ------
        NotFoundError
            If the source does not exist.
        AlreadyExistsError
            If the destination is taken.
        """
        source = self._make_key(category, name)
        target = self._make_key(new_category, new_name)
        if source == target:
            return await self.load(category, name)

        source_dir = self.layout.entity_dir(source)
        target_dir = self.layout.entity_dir(target)
        await self._require_entity_dir(source)

        with _classified(f"rename '{source}' to '{target}'"):
            async with self.locks.acquire_many([source_dir, target_dir]) as handles:
                await self._require_entity_dir(source)
                if await aiofiles.os.path.exists(str(target_dir)):
                    raise AlreadyExistsError(f"A prompt named '{target}' already exists.")
                entity = await self._read_current(source)
                originals = await self._read_persisted_files(source, entity.version)
                await aiofiles.os.rename(str(source_dir), str(target_dir))
                moved = entity.model_copy(update={
                    "category": target.category,
                    "name": target.name,
                    "metadata": entity.metadata.model_copy(update={"last_modified": now_iso()}),
                })
                try:
                    saved = await self._persist_locked(moved, handles[normalize_path(target_dir)])
                except BaseException:
                    logger.warning("Rename of %s failed; moving it back", source)
                    try:
                        await aiofiles.os.rename(str(target_dir), str(source_dir))
                        # The failed commit rolled back by deleting what it wrote.
                        for relative, text in originals.items():
                            await write_text_atomic(source_dir / relative, text)
                    except OSError as exc:
                        logger.error(
                            "Could not move %s back to %s: %s", target_dir, source_dir, exc,
                        )
                    raise

        self._index.pop(source, None)
        self._index[target] = saved
        logger.info("Renamed %s to %s", source, target)
        await self._refresh_manifest()
        return saved

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    async def create_category(self, name: str) -> None:
        """Create an empty category.

        Raises ``AlreadyExistsError`` if it exists already.
        """
        self._require_valid_name("category", name)
        path = self.layout.category_dir(name)
        with _classified(f"create category '{name}'"):
            async with self.locks.acquire(path):
                if await aiofiles.os.path.exists(str(path)):
                    raise AlreadyExistsError(f"The category '{name}' already exists.")
                await aiofiles.os.makedirs(str(path))
        logger.info("Created category %s", name)
        await self._refresh_manifest()

    async def delete_category(self, name: str) -> list[EntityKey]:
        """Delete a category and every entity in it.  Returns the removed keys."""
        self._require_valid_name("category", name)
        path = self.layout.category_dir(name)
        if not await aiofiles.os.path.isdir(str(path)):
            raise NotFoundError(f"There is no category named '{name}'.")

        with _classified(f"delete category '{name}'"):
            async with self.locks.acquire(path):
                keys = await self._keys_in(name)
                async with self.locks.acquire_many(self.layout.entity_dir(k) for k in keys):
                    for key in keys:
                        await remove_tree(self.layout.entity_dir(key))
                # Entity lock markers live inside the category; they are gone
                # once acquire_many has released them.
                await remove_tree(path)

        for key in keys:
            self._index.pop(key, None)
        logger.info("Deleted category %s (%d prompts)", name, len(keys))
        await self._refresh_manifest()
        return keys

    async def list_categories(self) -> list[str]:
        with _classified("list categories"):
            names = await list_subdirectories(self.layout.root)
        return [n for n in names if is_valid_name(n)]

    async def search_categories(self, query: str) -> list[str]:
        """Categories whose name contains *query*, case-insensitively."""
        needle = query.strip().lower()
        return [c for c in await self.list_categories() if needle in c.lower()]

    # ------------------------------------------------------------------
    # Listing and search
    # ------------------------------------------------------------------

    async def list_keys(self, category: str | None = None) -> list[EntityKey]:
        """Enumerate the entities on disk (directories holding a current state)."""
        categories = [category] if category is not None else await self.list_categories()
        keys: list[EntityKey] = []
        for cat in categories:
            keys.extend(await self._keys_in(cat))
        return keys

    async def list_entities(self, category: str | None = None) -> list[PromptEntity]:
        """Load every entity on disk, optionally within one category.

        Entities that cannot be loaded are logged and left out.
        """
        entities = []
        for key in await self.list_keys(category):
            try:
                entities.append(await self.load(key.category, key.name))
            except (NotFoundError, CorruptDataError, ValidationError) as exc:
                logger.warning("Skipping %s: %s", key, exc)
        return entities

    async def search(self, query: str) -> list[PromptEntity]:
        """Case-insensitive substring search.

        Looks at name, category, description, template and every string
        value in metadata.  An empty query matches nothing.
        """
        if not query or not query.strip():
            return []
        needle = query.strip().lower()
        return [e for e in await self.list_entities() if self._entity_matches_query(e, needle)]

    @staticmethod
    def _entity_matches_query(entity: PromptEntity, query_lower: str) -> bool:
        fields = [entity.name, entity.category, entity.description, entity.template]
        fields.extend(
            value for value in entity.metadata.model_dump().values() if isinstance(value, str)
        )
        return any(query_lower in value.lower() for value in fields)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _persist_locked(self, entity: PromptEntity, handle: LockHandle) -> PromptEntity:
        """Write *entity* while the caller holds the entity directory lock."""

        async def persist(candidate: PromptEntity) -> PromptEntity:
            key = candidate.key
            recorded = await self.ledger.get_versions(key)
            # "1.0" over a recorded "1.0.0" is saved as "1.0.0".
            spelling = recorded_spelling(recorded, candidate.version)
            if spelling is not None and spelling != candidate.version:
                candidate = candidate.model_copy(update={"version": spelling})
            text = dump_json(candidate.to_document())
            versions = VersionLedger.with_version(recorded, candidate.version)
            tx = TransactionLog(self.locks)
            tx.write(self.layout.current_path(key), text)
            tx.write(self.layout.snapshot_path(key, candidate.version), text)
            tx.write(self.layout.version_manifest_path(key), dump_json(versions))
            for filename, content in self._artifacts(candidate).items():
                tx.write(self.layout.artifact_path(key, filename), content)
            await tx.commit(held=handle)
            return candidate

        return await self.resolver.run(entity, persist)

    async def _read_persisted_files(self, key: EntityKey, version: str) -> dict[str, str]:
        """Contents of every file a persist of *key* at *version* would overwrite,
        keyed by path relative to the entity directory."""
        entity_dir = self.layout.entity_dir(key)
        paths = [entity_dir / name for name in await list_files(entity_dir)]
        paths.append(self.layout.version_manifest_path(key))
        paths.append(self.layout.snapshot_path(key, version))
        contents = {}
        for path in paths:
            try:
                contents[str(path.relative_to(entity_dir))] = await read_text(path)
            except FileNotFoundError:
                continue
        return contents

    def _artifacts(self, entity: PromptEntity) -> dict[str, str]:
        if self.generator is None:
            return {}
        return self.generator.generate(entity)

    async def _read_current(self, key: EntityKey) -> PromptEntity:
        path = self.layout.current_path(key)
        try:
            text = await read_text(path)
        except FileNotFoundError:
            raise NotFoundError(f"Could not find the prompt '{key}'.")
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            raise CorruptDataError(path, f"invalid JSON at line {exc.lineno}") from exc
        if not isinstance(document, dict):
            raise CorruptDataError(path, "expected a JSON object")
        stored = (document.get("category"), document.get("name"))
        if stored != (key.category, key.name):
            raise CorruptDataError(
                path, f"it describes '{stored[0]}/{stored[1]}' but is stored as '{key}'",
            )

        errors = validate_entity_document(document, self.validator)
        if errors:
            raise ValidationError(str(key), errors)
        try:
            return PromptEntity.from_document(document)
        except PydanticValidationError as exc:
            raise CorruptDataError(path, f"{exc.error_count()} invalid field(s)") from exc

    async def _keys_in(self, category: str) -> list[EntityKey]:
        with _classified(f"list category '{category}'"):
            names = await list_subdirectories(self.layout.category_dir(category))
            keys = []
            for name in names:
                if not is_valid_name(name):
                    continue
                key = EntityKey(category, name)
                if await aiofiles.os.path.isfile(str(self.layout.current_path(key))):
                    keys.append(key)
        return keys

    async def _refresh_manifest(self) -> None:
        count = len(await self.list_keys())
        with _classified("update the store manifest"):
            await self.manifest.refresh(count)

    async def _require_entity_dir(self, key: EntityKey) -> None:
        if not await aiofiles.os.path.isdir(str(self.layout.entity_dir(key))):
            raise NotFoundError(f"Could not find the prompt '{key}'.")

    def _check(self, entity: PromptEntity) -> None:
        errors = validate_entity_document(entity.to_document(), self.validator)
        if errors:
            raise ValidationError(str(entity.key), errors)

    def _coerce(self, data: PromptEntity | Mapping[str, Any]) -> PromptEntity:
        if isinstance(data, PromptEntity):
            return data
        if not isinstance(data, Mapping):
            raise ValidationError(
                "prompt", [FieldError("(root)", "Expected an object with prompt fields.", "type")],
            )
        subject = f"{data.get('category', '?')}/{data.get('name', '?')}"
        try:
            return PromptEntity.from_document(dict(data))
        except PydanticValidationError as exc:
            raise ValidationError(subject, _pydantic_field_errors(exc)) from exc

    @staticmethod
    def _require_valid_name(field: str, value: str) -> None:
        if not is_valid_name(value):
            raise ValidationError(value, [FieldError(
                field,
                f"'{value}' is not a valid {field} name; use letters, digits, '_' and '-', "
                f"not starting with '-'.",
                "pattern",
            )])

    def _make_key(self, category: str, name: str) -> EntityKey:
        errors = []
        for field, value in (("category", category), ("name", name)):
            try:
                self._require_valid_name(field, value)
            except ValidationError as exc:
                errors.extend(exc.errors)
        if errors:
            raise ValidationError(f"{category}/{name}", errors)
        return EntityKey(category, name)

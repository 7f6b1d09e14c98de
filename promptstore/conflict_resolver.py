"""
promptstore/conflict_resolver.py -- Optimistic concurrency for saves.

Before an entity is written, the version it carries in memory is compared
with the highest version recorded on disk.  If the disk is ahead, somebody
else saved in the meantime: the entity is re-stamped one increment past the
disk version and the persist attempt runs again, up to a fixed budget.

Nothing is merged.  The re-stamped entity keeps its own field values, and
whatever the other writer changed is overwritten.  Callers that care about
lost updates must reload before editing.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from promptstore.errors import VersionConflictError
from promptstore.models.entity import PromptEntity
from promptstore.retry import BoundedRetry
from promptstore.version_ledger import VersionLedger, compare_versions, increment_version

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


class StaleVersion(Exception):
    """The on-disk version is newer than the one being saved."""

    def __init__(self, ours: str, disk: str):
        self.ours = ours
        self.disk = disk
        super().__init__(f"in-memory version {ours} is behind stored version {disk}")


class ConflictResolver:
    """Detects stale versions and re-stamps them.

    Parameters
    ----------
    ledger : VersionLedger
        Source of the authoritative on-disk version.
    max_attempts : int
        Persist attempts allowed before giving up with
        ``VersionConflictError``.
    """

    def __init__(self, ledger: VersionLedger, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self.ledger = ledger
        self.max_attempts = max_attempts
        self._policy = BoundedRetry(max_attempts=max_attempts)

    async def check(self, entity: PromptEntity) -> str:
        """Return the on-disk version, raising ``StaleVersion`` if it is ahead."""
        disk = await self.ledger.get_current_version(entity.key)
        if compare_versions(disk, entity.version) > 0:
            raise StaleVersion(entity.version, disk)
        return disk

    @staticmethod
    def restamp(entity: PromptEntity, disk_version: str) -> PromptEntity:
        """Return a copy of *entity* stamped one increment past *disk_version*."""
        return entity.model_copy(update={"version": increment_version(disk_version)})

    async def run(
        self,
        entity: PromptEntity,
        persist: Callable[[PromptEntity], Awaitable[PromptEntity]],
    ) -> PromptEntity:
        """Persist *entity*, re-stamping and retrying while the disk is ahead.

        Returns whatever *persist* returned for the attempt that went through.

        Raises
        ------
        VersionConflictError
            If the disk was still ahead on the last allowed attempt.
        """
        candidate = entity

        async def attempt(state) -> PromptEntity:
            await self.check(candidate)
            return await persist(candidate)

        def resolve(state, exc: StaleVersion) -> None:
            nonlocal candidate
            candidate = self.restamp(candidate, exc.disk)
            logger.warning(
                "Version conflict on %s: stored %s is ahead of %s, saving as %s "
                "(attempt %d/%d)",
                entity.key, exc.disk, exc.ours, candidate.version,
                state.attempt, state.max_attempts,
            )

        def exhausted(state) -> VersionConflictError:
            disk = state.last_error.disk if isinstance(state.last_error, StaleVersion) else "?"
            return VersionConflictError(entity.key, state.attempt, disk)

        return await self._policy.run(
            attempt, retry_on=StaleVersion, resolve=resolve, on_exhausted=exhausted,
        )

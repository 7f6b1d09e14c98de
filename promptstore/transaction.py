"""
promptstore/transaction.py -- Batched file operations applied under one lock.

A ``TransactionLog`` collects writes and deletes, then applies them in call
order while holding the lock on the directory of the first operation.  When
any operation fails, the ones already applied are rolled back best-effort and
the original error is re-raised.

Rollback limits:
    - A write is undone by deleting the written path.  No pre-image is taken
      before an existing file is overwritten, so an overwrite cannot be
      undone.
    - A delete of a regular file is undone from the content read just before
      the file was removed.  Deleted directories are not restored.
    - Directories the transaction created are removed again if empty.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import aiofiles.os

from promptstore.lock_manager import LockHandle, LockManager
from promptstore.utils import read_text, remove_tree, write_text_atomic

logger = logging.getLogger(__name__)


class OpKind(Enum):
    WRITE = "write"
    READ = "read"
    DELETE = "delete"


@dataclass
class Operation:
    """One queued file operation."""
    kind: OpKind
    path: Path
    content: str | None = None


@dataclass
class _Applied:
    op: Operation
    pre_image: str | None = None
    created_dirs: list[Path] = field(default_factory=list)
    done: bool = True


class TransactionLog:
    """Ordered list of file operations committed together.

    Parameters
    ----------
    locks : LockManager
        Used to lock the directory of the first operation at commit time.
    """

    def __init__(self, locks: LockManager):
        self._locks = locks
        self._operations: list[Operation] = []
        self._applied: list[_Applied] = []
        self._committed = False

    @property
    def operations(self) -> list[Operation]:
        return list(self._operations)

    @property
    def committed(self) -> bool:
        return self._committed

    def __len__(self) -> int:
        return len(self._operations)

    # ------------------------------------------------------------------
    # Queueing
    # ------------------------------------------------------------------

    def write(self, path, content: str) -> None:
        self._operations.append(Operation(OpKind.WRITE, Path(path), content))

    def delete(self, path) -> None:
        self._operations.append(Operation(OpKind.DELETE, Path(path)))

    async def read(self, path) -> str:
        """Read *path* now and record the read.  Reads are not replayed."""
        self._operations.append(Operation(OpKind.READ, Path(path)))
        return await read_text(path)

    # ------------------------------------------------------------------
    # Commit / rollback
    # ------------------------------------------------------------------

    def lock_scope(self) -> Path | None:
        """Directory locked at commit time (that of the first operation)."""
        if not self._operations:
            return None
        return self._operations[0].path.parent

    async def commit(self, held: LockHandle | None = None) -> None:
        """Apply every queued operation in order under one lock.

        Parameters
        ----------
        held : LockHandle, optional
            A lock the caller already holds.  It is reused when it covers the
            commit's lock scope; otherwise the scope is locked here.

        Raises
        ------
        LockTimeoutError
            If the lock cannot be acquired.
        Exception
            Whatever the failing operation raised, after rollback.
        """
        if self._committed:
            raise RuntimeError("This transaction has already been committed.")
        scope = self.lock_scope()
        if scope is None:
            self._committed = True
            return

        if held is not None and held.covers(scope):
            await self._apply_all()
        else:
            async with self._locks.acquire(scope):
                await self._apply_all()
        self._committed = True

    async def _apply_all(self) -> None:
        try:
            for op in self._operations:
                await self._apply(op)
        except BaseException as exc:
            logger.warning(
                "Transaction failed after %d of %d operations (%s); rolling back",
                len(self._applied), len(self._operations), exc,
            )
            await self.rollback()
            raise

    async def _apply(self, op: Operation) -> None:
        if op.kind is OpKind.WRITE:
            created = await _missing_ancestors(op.path.parent)
            try:
                await write_text_atomic(op.path, op.content or "")
            except BaseException:
                # The write never landed but its directories may have.
                self._applied.append(_Applied(op, created_dirs=created, done=False))
                raise
            self._applied.append(_Applied(op, created_dirs=created))
        elif op.kind is OpKind.DELETE:
            pre_image = None
            if await aiofiles.os.path.isfile(str(op.path)):
                pre_image = await read_text(op.path)
                await aiofiles.os.remove(str(op.path))
            elif await aiofiles.os.path.isdir(str(op.path)):
                await remove_tree(op.path)
            else:
                logger.debug("Nothing to delete at %s", op.path)
            self._applied.append(_Applied(op, pre_image=pre_image))
        # READ operations are provenance only.

    async def rollback(self) -> None:
        """Undo applied operations, newest first.  Never raises."""
        while self._applied:
            applied = self._applied.pop()
            op = applied.op
            try:
                if op.kind is OpKind.WRITE and applied.done:
                    try:
                        await aiofiles.os.remove(str(op.path))
                    except FileNotFoundError:
                        pass
                elif op.kind is OpKind.DELETE and applied.pre_image is not None:
                    await write_text_atomic(op.path, applied.pre_image)
            except OSError as exc:
                logger.error("Error rolling back %s of %s: %s", op.kind.value, op.path, exc)
            for directory in reversed(applied.created_dirs):
                try:
                    await aiofiles.os.rmdir(str(directory))
                except OSError:
                    # Not empty (or already gone); leave it.
                    pass


async def _missing_ancestors(directory: Path) -> list[Path]:
    """Return the ancestors of *directory* (inclusive) that do not exist yet,
    outermost first."""
    missing: list[Path] = []
    current = directory
    while not await aiofiles.os.path.exists(str(current)):
        missing.append(current)
        parent = current.parent
        if parent == current:
            break
        current = parent
    missing.reverse()
    return missing

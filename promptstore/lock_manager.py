"""
promptstore/lock_manager.py -- Advisory directory locks.

A lock on ``<dir>`` is the marker directory ``<dir>.lock`` next to it.
Creating a directory is atomic on every filesystem we care about, so the
marker works between asyncio tasks of one process and between processes on
the same host alike.  The lock is advisory: it protects the store only as
long as every writer goes through a ``LockManager``.

A holder refreshes the marker's mtime while it holds the lock.  A marker that
has not been refreshed for ``stale_after`` seconds belongs to a process that
died mid-operation and is reclaimed by the next caller.

Usage::

    locks = LockManager(retries=5, retry_delay=0.2)
    async with locks.acquire(entity_dir):
        ...
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
import uuid
from contextlib import AsyncExitStack, asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Iterable

import aiofiles.os

from promptstore.errors import LockTimeoutError
from promptstore.retry import BoundedRetry

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock"
DEFAULT_RETRIES = 5
DEFAULT_RETRY_DELAY = 0.2
DEFAULT_STALE_AFTER = 30.0


class _LockBusy(Exception):
    """Internal: the marker directory already exists."""


def normalize_path(path) -> Path:
    """Return the absolute form used to identify a lock."""
    return Path(os.path.abspath(str(path)))


def lock_marker_for(path) -> Path:
    """Return the marker directory guarding *path*."""
    target = normalize_path(path)
    return target.parent / (target.name + LOCK_SUFFIX)


class LockHandle:
    """A held lock.  ``release()`` is idempotent."""

    def __init__(self, path: Path, marker: Path, keepalive: asyncio.Task | None):
        self.path = path
        self.marker = marker
        self._keepalive = keepalive
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def covers(self, path) -> bool:
        """Return True if this handle guards *path* and is still held."""
        return not self._released and normalize_path(path) == self.path

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        if self._keepalive is not None:
            self._keepalive.cancel()
            try:
                await self._keepalive
            except asyncio.CancelledError:
                pass
        try:
            await aiofiles.os.rmdir(str(self.marker))
        except FileNotFoundError:
            logger.warning("Lock marker %s vanished before release", self.marker)
        except OSError as exc:
            logger.error("Could not remove lock marker %s: %s", self.marker, exc)
        else:
            logger.debug("Released lock on %s", self.path)

    def __repr__(self) -> str:
        state = "released" if self._released else "held"
        return f"<LockHandle {self.path} {state}>"


class LockManager:
    """Hands out exclusive, advisory, per-directory locks.

    Parameters
    ----------
    retries : int
        How many times to retry after the first failed attempt.
    retry_delay : float
        Fixed pause between attempts, in seconds.
    stale_after : float
        Age in seconds after which an unrefreshed marker is reclaimed.
    """

    def __init__(
        self,
        retries: int = DEFAULT_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        stale_after: float = DEFAULT_STALE_AFTER,
    ):
        if stale_after <= 0:
            raise ValueError(f"stale_after must be positive, got {stale_after}")
        self.retries = retries
        self.retry_delay = retry_delay
        self.stale_after = stale_after
        self._policy = BoundedRetry(max_attempts=retries + 1, delay=retry_delay)

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    async def lock(self, path) -> LockHandle:
        """Acquire the lock on *path* and return its handle.

        The caller owns the handle and must ``await handle.release()`` on
        every exit path; prefer ``acquire()`` which does that for you.

        Raises
        ------
        LockTimeoutError
            If the lock is still held by someone else after every retry.
        """
        target = normalize_path(path)
        marker = lock_marker_for(target)
        await aiofiles.os.makedirs(str(marker.parent), exist_ok=True)

        async def attempt(state) -> None:
            if await self._try_create(marker):
                return
            if state.attempt == 1 or state.exhausted:
                logger.debug("Lock on %s is busy (attempt %d)", target, state.attempt)
            else:
                logger.warning(
                    "Lock on %s is busy, retrying in %.2fs (%d attempts left)",
                    target, self.retry_delay, state.remaining,
                )
            raise _LockBusy(str(target))

        await self._policy.run(
            attempt,
            retry_on=_LockBusy,
            on_exhausted=lambda state: LockTimeoutError(target, state.attempt),
        )
        keepalive = asyncio.create_task(self._keep_alive(marker))
        logger.debug("Acquired lock on %s", target)
        return LockHandle(target, marker, keepalive)

    @asynccontextmanager
    async def acquire(self, path) -> AsyncIterator[LockHandle]:
        """Hold the lock on *path* for the duration of an ``async with`` block."""
        handle = await self.lock(path)
        try:
            yield handle
        finally:
            await handle.release()

    @asynccontextmanager
    async def acquire_many(self, paths: Iterable) -> AsyncIterator[dict[Path, LockHandle]]:
        """Hold several directory locks at once for one logical operation.

        Paths are deduplicated by their absolute form, so the same physical
        directory is only ever locked once, and taken in sorted order so that
        two callers locking overlapping sets cannot deadlock each other.
        Yields a mapping from normalized path to handle.
        """
        targets = sorted({normalize_path(p) for p in paths}, key=str)
        async with AsyncExitStack() as stack:
            handles: dict[Path, LockHandle] = {}
            for target in targets:
                handles[target] = await stack.enter_async_context(self.acquire(target))
            yield handles

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _try_create(self, marker: Path) -> bool:
        try:
            await aiofiles.os.mkdir(str(marker))
            return True
        except FileExistsError:
            pass
        if not await self._reclaim_if_stale(marker):
            return False
        try:
            await aiofiles.os.mkdir(str(marker))
            return True
        except FileExistsError:
            return False

    async def _reclaim_if_stale(self, marker: Path) -> bool:
        try:
            stat = await aiofiles.os.stat(str(marker))
        except FileNotFoundError:
            # Released between our mkdir and stat.
            return True
        age = time.time() - stat.st_mtime
        if age <= self.stale_after:
            return False
        # Moved aside first so that two contenders cannot both remove it.
        aside = marker.with_name(f"{marker.name}.{uuid.uuid4().hex}.stale")
        try:
            await aiofiles.os.rename(str(marker), str(aside))
        except FileNotFoundError:
            return True
        moved = await aiofiles.os.stat(str(aside))
        if time.time() - moved.st_mtime <= self.stale_after:
            # Another contender reclaimed it first; this marker is live.
            await aiofiles.os.rename(str(aside), str(marker))
            return False
        logger.warning(
            "Reclaiming stale lock %s (untouched for %.1fs)", marker, age,
        )
        await aiofiles.os.rmdir(str(aside))
        return True

    async def _keep_alive(self, marker: Path) -> None:
        interval = self.stale_after / 2
        while True:
            await asyncio.sleep(interval)
            try:
                await asyncio.to_thread(os.utime, str(marker), None)
            except FileNotFoundError:
                logger.warning("Lock marker %s disappeared while held", marker)
                return

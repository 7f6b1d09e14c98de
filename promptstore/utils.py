"""
Shared helpers for the prompt store.

All writes go through ``write_text_atomic``: the content is written to a
temporary file in the target directory and moved into place with
``os.replace()``, so a reader sees either the old file or the new one and
never a partial write.  File I/O is asynchronous (``aiofiles``); the few
blocking tree operations run in a worker thread via ``asyncio.to_thread``.
"""

import asyncio
import errno
import json
import logging
import os
import shutil
import tempfile
from datetime import datetime, timezone

import aiofiles
import aiofiles.os

from promptstore.errors import StorageError, StorageFailure

logger = logging.getLogger(__name__)


def now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def dump_json(data, *, indent=2) -> str:
    """Serialise *data* the way every store file is written."""
    return json.dumps(data, indent=indent, ensure_ascii=False) + "\n"


# ---------------------------------------------------------------------------
# Async file I/O
# ---------------------------------------------------------------------------

async def read_text(path) -> str:
    """Read a UTF-8 text file.  ``FileNotFoundError`` propagates."""
    async with aiofiles.open(str(path), "r", encoding="utf-8") as fh:
        return await fh.read()


async def read_json(path):
    """Read and parse a JSON file.

    ``FileNotFoundError`` and ``json.JSONDecodeError`` propagate so that
    callers can tell a missing file from a damaged one.
    """
    return json.loads(await read_text(path))


async def safe_read_json(path, default=None):
    """Read a JSON file, returning *default* if it is missing or corrupt."""
    try:
        return await read_json(path)
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return default


async def write_text_atomic(path, text: str) -> None:
    """Atomically write *text* to *path*.

    Uses a temporary file in the same directory followed by
    ``os.replace()``.  Parent directories are created if they do not exist.
    """
    path = str(path)
    parent = os.path.dirname(path)
    await aiofiles.os.makedirs(parent, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=parent, prefix=".", suffix=".tmp")
    os.close(fd)
    try:
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as fh:
            await fh.write(text)
            await fh.flush()
        await aiofiles.os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any failure.
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


async def write_json_atomic(path, data, *, indent=2) -> None:
    """Atomically write *data* as JSON to *path*."""
    await write_text_atomic(path, dump_json(data, indent=indent))


async def remove_tree(path) -> None:
    """Recursively delete a directory tree."""
    await asyncio.to_thread(shutil.rmtree, str(path))


async def list_subdirectories(path) -> list[str]:
    """Return the names of the immediate subdirectories of *path*, sorted.

    A missing directory yields an empty list.
    """
    try:
        entries = await aiofiles.os.scandir(str(path))
    except FileNotFoundError:
        return []
    with entries:
        return sorted(entry.name for entry in entries if entry.is_dir())


async def list_files(path) -> list[str]:
    """Return the names of the regular files directly inside *path*, sorted."""
    try:
        entries = await aiofiles.os.scandir(str(path))
    except FileNotFoundError:
        return []
    with entries:
        return sorted(entry.name for entry in entries if entry.is_file())


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

_ERRNO_REASONS = {
    errno.ENOSPC: StorageFailure.INSUFFICIENT_SPACE,
    errno.EDQUOT: StorageFailure.INSUFFICIENT_SPACE,
    errno.EACCES: StorageFailure.PERMISSION_DENIED,
    errno.EPERM: StorageFailure.PERMISSION_DENIED,
    errno.EROFS: StorageFailure.PERMISSION_DENIED,
    errno.EBUSY: StorageFailure.RESOURCE_BUSY,
    errno.EAGAIN: StorageFailure.RESOURCE_BUSY,
    errno.ETXTBSY: StorageFailure.RESOURCE_BUSY,
    errno.EMFILE: StorageFailure.RESOURCE_BUSY,
}


def classify_os_error(exc: OSError, action: str) -> StorageError:
    """Turn a low-level ``OSError`` into a classified ``StorageError``."""
    reason = _ERRNO_REASONS.get(exc.errno, StorageFailure.UNKNOWN)
    detail = exc.strerror or str(exc)
    logger.error("Storage failure while trying to %s: %s (%s)", action, detail, reason.value)
    return StorageError(action, reason, path=exc.filename, detail=detail)

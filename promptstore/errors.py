"""
promptstore/errors.py -- Error taxonomy for the prompt store.

Every failure the store surfaces is one of the classes below.  Messages are
written for people reading a terminal, not for developers reading a stack
trace.  Only ``LockTimeoutError`` and ``VersionConflictError`` are the result
of automatic retries; everything else propagates on first occurrence.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from promptstore.models.validators import FieldError


class StoreError(Exception):
    """Base class for every error raised by the prompt store."""


class ConfigError(StoreError):
    """The configuration file or environment is invalid."""


class ValidationError(StoreError, ValueError):
    """An entity failed schema validation.

    Attributes
    ----------
    errors : list[FieldError]
        Every violated field, in the order the validator reported them.
    """

    def __init__(self, subject: str, errors: list[FieldError]):
        self.subject = subject
        self.errors = list(errors)
        super().__init__(self._format())

    @property
    def fields(self) -> list[str]:
        return [err.field for err in self.errors]

    def _format(self) -> str:
        lines = [f"The data for '{self.subject}' has some issues that need fixing:"]
        for i, err in enumerate(self.errors, 1):
            lines.append(f"  {i}. {err}")
        return "\n".join(lines)


class NotFoundError(StoreError, LookupError):
    """A category, entity or version does not exist."""


class AlreadyExistsError(StoreError):
    """An entity with the same (category, name) is already present."""


class CorruptDataError(StoreError):
    """Persisted state could not be parsed.  Needs manual repair."""

    def __init__(self, path, detail: str):
        self.path = str(path)
        self.detail = detail
        super().__init__(
            f"The file '{self.path}' is damaged and could not be read ({detail}). "
            f"Restore it from a version snapshot or fix it by hand."
        )


class LockTimeoutError(StoreError):
    """A directory lock could not be acquired within the retry budget."""

    def __init__(self, path, attempts: int):
        self.path = str(path)
        self.attempts = attempts
        super().__init__(
            f"Could not lock '{self.path}' after {attempts} attempts. "
            f"Another editor may be saving; try again in a moment."
        )


class VersionConflictError(StoreError):
    """Optimistic-concurrency retries ran out while saving an entity."""

    def __init__(self, key, attempts: int, disk_version: str):
        self.key = key
        self.attempts = attempts
        self.disk_version = disk_version
        super().__init__(
            f"Could not save '{key}': the stored version kept moving ahead "
            f"(last seen {disk_version}) after {attempts} attempts."
        )


class StorageFailure(Enum):
    INSUFFICIENT_SPACE = "insufficient space"
    PERMISSION_DENIED = "permission denied"
    RESOURCE_BUSY = "resource busy"
    UNKNOWN = "unknown"


class StorageError(StoreError):
    """A filesystem operation failed.  Classified, never retried.

    Attributes
    ----------
    reason : StorageFailure
        Broad cause derived from the underlying ``errno``.
    path : str | None
        The file or directory involved, when known.
    """

    def __init__(self, action: str, reason: StorageFailure, path=None, detail: str = ""):
        self.action = action
        self.reason = reason
        self.path = str(path) if path is not None else None
        where = f" at '{self.path}'" if self.path else ""
        suffix = f": {detail}" if detail else ""
        super().__init__(f"Could not {action}{where} ({reason.value}){suffix}")

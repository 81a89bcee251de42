"""Error taxonomy for the tag store."""

from __future__ import annotations

from pathlib import Path


class TagStoreError(Exception):
    """Base class for every error raised by tagstore."""


class InvalidGroupId(TagStoreError, ValueError):
    """Group id is empty or contains characters outside ``[A-Za-z0-9]``."""

    def __init__(self, group_id: object) -> None:
        self.group_id = group_id
        super().__init__(f"Invalid group ID: {group_id!r}")


class LockContended(TagStoreError):
    """The advisory lock for a group file stayed held through every retry."""

    def __init__(self, path: Path | str, attempts: int) -> None:
        self.path = Path(path)
        self.attempts = attempts
        super().__init__(f"Lock contended for {self.path} after {attempts} attempts")


class CorruptRead(TagStoreError):
    """A group file exists but could not be read."""

    def __init__(self, path: Path | str, cause: OSError) -> None:
        self.path = Path(path)
        self.cause = cause
        super().__init__(f"Failed to read {self.path}: {cause}")


class StoreNotReady(TagStoreError):
    """The store was used before its initial scan finished."""


class DurabilityWarning(TagStoreError):
    """Tags were added in memory but the append to disk did not happen.

    Returned on ``AddResult.warning`` rather than raised: the tags are visible
    to readers, they are just not on disk yet. ``cause`` is the
    ``LockContended`` or ``OSError`` that stopped the write.
    """

    def __init__(self, group_id: str, path: Path | str, cause: Exception) -> None:
        self.group_id = group_id
        self.path = Path(path)
        self.cause = cause
        super().__init__(f"Tags for group {group_id!r} not persisted to {self.path}: {cause}")

    @property
    def contended(self) -> bool:
        return isinstance(self.cause, LockContended)

"""Error hierarchy for snapshot history operations."""
from __future__ import annotations


class BackupError(RuntimeError):
    """Base exception for backup related failures."""


class BackupRestoreError(BackupError):
    """Raised when restoring a snapshot fails."""


class BackupNotFoundError(BackupRestoreError):
    """Raised when a document or entry id is not in the index."""


class IndexFormatError(BackupError):
    """Raised when the persisted index cannot be decoded."""


class StoragePathError(BackupError):
    """Raised when a storage path escapes the adapter root."""


__all__ = [
    "BackupError",
    "BackupNotFoundError",
    "BackupRestoreError",
    "IndexFormatError",
    "StoragePathError",
]

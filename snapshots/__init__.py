"""Deduplicated, space-bounded snapshot history for text documents."""
from __future__ import annotations

from .errors import BackupError, BackupNotFoundError, BackupRestoreError
from .logs import BackupLogger
from .manager import BackupManager
from .storage import LocalStorageAdapter, StorageAdapter
from .types import BackupCategory, BackupDescriptor, BackupOutcome, BackupSettings

__version__ = "0.1.0"

__all__ = [
    "BackupCategory",
    "BackupDescriptor",
    "BackupError",
    "BackupLogger",
    "BackupManager",
    "BackupNotFoundError",
    "BackupOutcome",
    "BackupRestoreError",
    "BackupSettings",
    "LocalStorageAdapter",
    "StorageAdapter",
    "__version__",
]

"""Common dataclasses shared across snapshot modules."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from core.settings import BackupSettings


class BackupCategory(str, Enum):
    LATEST = "latest"
    RECENT = "recent"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    ARCHIVE = "archive"


class BackupOutcome(str, Enum):
    CREATED = "created"
    SKIPPED = "skipped"


@dataclass(slots=True)
class BackupEntry:
    """Single stored snapshot of a document."""

    id: str
    created_at: int
    size: int
    hash: str
    is_initial: bool = False
    change_preview: Optional[str] = None
    primary_field_value: Optional[str] = None


@dataclass(slots=True)
class FileBackupRecord:
    """All entries for one document path, newest first."""

    entries: List[BackupEntry] = field(default_factory=list)
    total_size: int = 0

    def find(self, entry_id: str) -> Optional[BackupEntry]:
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None

    def has_initial(self) -> bool:
        return any(entry.is_initial for entry in self.entries)

    def recompute(self) -> None:
        self.entries.sort(key=lambda entry: entry.created_at, reverse=True)
        self.total_size = sum(entry.size for entry in self.entries)


@dataclass(slots=True)
class BackupIndex:
    version: int
    total_size: int = 0
    files: Dict[str, FileBackupRecord] = field(default_factory=dict)

    def recompute(self) -> None:
        self.total_size = sum(record.total_size for record in self.files.values())


@dataclass(slots=True, frozen=True)
class BucketRule:
    category: BackupCategory
    max_age: float
    bucket_size: int


@dataclass(slots=True)
class BackupDescriptor:
    id: str
    created_at: int
    size: int
    category: BackupCategory
    is_initial: bool = False
    change_preview: Optional[str] = None
    primary_field_value: Optional[str] = None


@dataclass(slots=True)
class ReconcileSummary:
    changed: bool
    kept: int = 0
    migrated: List[str] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)
    resized: List[str] = field(default_factory=list)


@dataclass(slots=True)
class CapacitySummary:
    changed: bool
    removed: List[Tuple[str, str]] = field(default_factory=list)
    freed_bytes: int = 0
    limit_bytes: Optional[int] = None
    total_size: int = 0


__all__ = [
    "BackupCategory",
    "BackupDescriptor",
    "BackupEntry",
    "BackupIndex",
    "BackupOutcome",
    "BackupSettings",
    "BucketRule",
    "CapacitySummary",
    "FileBackupRecord",
    "ReconcileSummary",
]

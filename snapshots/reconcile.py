"""Heal the index against the blobs actually present in storage."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from .errors import StoragePathError
from .logs import BackupLogger
from .naming import (
    BACKUP_EXTENSION,
    build_backup_file_name,
    build_legacy_entry_path,
    legacy_segments,
    legacy_segments_escape,
)
from .storage import StorageAdapter, StorageStat
from .types import BackupEntry, BackupIndex, FileBackupRecord, ReconcileSummary

__all__ = [
    "LocateOutcome",
    "LocateResult",
    "locate_entry",
    "reconcile_index",
    "remove_legacy_directories_if_empty",
]


class LocateOutcome(str, Enum):
    FOUND_CURRENT = "found-current"
    MIGRATED = "found-legacy-and-migrated"
    NOT_FOUND = "not-found"


@dataclass(slots=True, frozen=True)
class LocateResult:
    outcome: LocateOutcome
    size: int = 0

    @property
    def found(self) -> bool:
        return self.outcome is not LocateOutcome.NOT_FOUND


def _safe_stat(storage: StorageAdapter, path: str, logger: BackupLogger) -> Optional[StorageStat]:
    try:
        return storage.stat(path)
    except (OSError, StoragePathError) as exc:
        logger.warning("stat_failed", path=path, error=str(exc))
        return None


def remove_legacy_directories_if_empty(storage: StorageAdapter, segments: Sequence[str]) -> None:
    """Remove empty legacy directories, deepest first, stopping at the first non-empty one."""

    for count in range(len(segments), 0, -1):
        dir_path = "/".join(segments[:count])
        try:
            files, folders = storage.list(dir_path)
        except FileNotFoundError:
            continue
        except (OSError, StoragePathError):
            break
        if files or folders:
            break
        try:
            storage.rmdir(dir_path)
        except FileNotFoundError:
            continue
        except (OSError, StoragePathError):
            break


def _migrate(storage: StorageAdapter, legacy_path: str, entry_path: str, logger: BackupLogger) -> bool:
    try:
        storage.rename(legacy_path, entry_path)
        return True
    except OSError as exc:
        logger.warning("legacy_rename_failed", legacy_path=legacy_path, entry_path=entry_path, error=str(exc))
    try:
        data = storage.read_bytes(legacy_path)
        storage.write_bytes(entry_path, data)
    except OSError as exc:
        logger.warning("legacy_copy_failed", legacy_path=legacy_path, entry_path=entry_path, error=str(exc))
        return False
    try:
        storage.remove(legacy_path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("legacy_remove_failed", legacy_path=legacy_path, error=str(exc))
    return True


def locate_entry(
    storage: StorageAdapter,
    file_path: str,
    entry: BackupEntry,
    *,
    logger: BackupLogger,
    extension: str = BACKUP_EXTENSION,
) -> LocateResult:
    """Find the blob for *entry*, migrating it from the legacy layout when needed."""

    entry_path = build_backup_file_name(file_path, entry.id, extension)
    current = _safe_stat(storage, entry_path, logger)
    if current is not None and current.is_file:
        return LocateResult(LocateOutcome.FOUND_CURRENT, current.size)

    segments = legacy_segments(file_path)
    if legacy_segments_escape(segments):
        return LocateResult(LocateOutcome.NOT_FOUND)
    legacy_path = build_legacy_entry_path(segments, entry.id, extension)
    legacy = _safe_stat(storage, legacy_path, logger)
    if legacy is None or not legacy.is_file:
        return LocateResult(LocateOutcome.NOT_FOUND)

    if not _migrate(storage, legacy_path, entry_path, logger):
        return LocateResult(LocateOutcome.NOT_FOUND)
    remove_legacy_directories_if_empty(storage, segments)

    migrated = _safe_stat(storage, entry_path, logger)
    if migrated is None or not migrated.is_file:
        return LocateResult(LocateOutcome.NOT_FOUND)
    logger.info("legacy_migrated", path=file_path, id=entry.id)
    return LocateResult(LocateOutcome.MIGRATED, migrated.size)


def reconcile_index(
    storage: StorageAdapter,
    index: BackupIndex,
    *,
    logger: BackupLogger,
    extension: str = BACKUP_EXTENSION,
) -> ReconcileSummary:
    """Verify every indexed entry against storage and rebuild the totals.

    On-disk sizes are authoritative. Entries found nowhere are dropped, and
    records left empty are removed. Running it again without filesystem
    changes reports ``changed=False``.
    """

    summary = ReconcileSummary(changed=False)
    for file_path in list(index.files):
        record = index.files[file_path]
        survivors: List[BackupEntry] = []
        for entry in record.entries:
            located = locate_entry(storage, file_path, entry, logger=logger, extension=extension)
            label = f"{file_path}#{entry.id}"
            if not located.found:
                logger.warning("entry_dropped", path=file_path, id=entry.id, reason="missing")
                summary.dropped.append(label)
                continue
            if located.outcome is LocateOutcome.MIGRATED:
                summary.migrated.append(label)
            if located.size != entry.size:
                summary.resized.append(label)
                entry.size = located.size
            survivors.append(entry)

        if not survivors:
            del index.files[file_path]
            summary.changed = True
            continue
        rebuilt = FileBackupRecord(entries=survivors)
        rebuilt.recompute()
        if [entry.id for entry in rebuilt.entries] != [entry.id for entry in record.entries]:
            summary.changed = True
        if rebuilt.total_size != record.total_size:
            summary.changed = True
        index.files[file_path] = rebuilt
        summary.kept += len(survivors)

    previous_total = index.total_size
    index.recompute()
    if index.total_size != previous_total:
        summary.changed = True
    if summary.dropped or summary.migrated or summary.resized:
        summary.changed = True
    return summary

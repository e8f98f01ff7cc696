"""Snapshot history orchestration for documents."""
from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from core.paths import get_backups_dir
from core.settings import backup_settings_provider

from .capacity import enforce_capacity, resolve_limit_bytes
from .errors import (
    BackupError,
    BackupNotFoundError,
    BackupRestoreError,
    IndexFormatError,
    StoragePathError,
)
from .hashing import HashBackend, select_backend
from .index import INDEX_FILE_NAME, INDEX_VERSION, empty_index, parse_index, serialize_index
from .logs import BackupLogger
from .naming import (
    BACKUP_EXTENSION,
    build_backup_file_name,
    build_legacy_entry_path,
    generate_entry_id,
    legacy_segments,
    legacy_segments_escape,
)
from .preview import ChangeSummary, compute_change_summary
from .reconcile import reconcile_index, remove_legacy_directories_if_empty
from .retention import BUCKET_RULES, LATEST_KEEP_COUNT, describe_categories, plan_retention
from .storage import LocalStorageAdapter, StorageAdapter
from .tasks import SerialTaskQueue
from .types import (
    BackupDescriptor,
    BackupEntry,
    BackupIndex,
    BackupOutcome,
    BackupSettings,
    BucketRule,
    CapacitySummary,
    FileBackupRecord,
)

Summarizer = Callable[[str, str], ChangeSummary]


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class BackupManager:
    """Keep deduplicated, bounded snapshot history for documents.

    Every operation waits for :meth:`initialize` and then runs on a single
    worker queue, so the in-memory index and the storage directory are only
    ever touched by one task at a time. Methods suffixed ``_unsafe`` assume
    they already run on that queue.
    """

    def __init__(
        self,
        *,
        storage: StorageAdapter,
        documents: StorageAdapter,
        get_settings: Callable[[], BackupSettings],
        logger: Optional[BackupLogger] = None,
        clock: Optional[Callable[[], int]] = None,
        hash_backend: Optional[HashBackend] = None,
        summarizer: Optional[Summarizer] = compute_change_summary,
        extension: str = BACKUP_EXTENSION,
        keep_latest: int = LATEST_KEEP_COUNT,
        rules: Sequence[BucketRule] = BUCKET_RULES,
    ) -> None:
        self._storage = storage
        self._documents = documents
        self._get_settings = get_settings
        self._logger = logger or BackupLogger()
        self._clock = clock or _epoch_ms
        self._hash_backend = hash_backend or select_backend()
        self._summarizer = summarizer
        self._extension = extension
        self._keep_latest = keep_latest
        self._rules = tuple(rules)
        self._queue = SerialTaskQueue()
        self._index: BackupIndex = empty_index()
        self._ready = False
        self._init_future: Optional[Future] = None
        self._init_lock = threading.Lock()

    @classmethod
    def from_working_dir(
        cls,
        working_dir: Path,
        *,
        documents_root: Path,
        get_settings: Optional[Callable[[], BackupSettings]] = None,
        **kwargs,
    ) -> "BackupManager":
        working_dir = Path(working_dir)
        return cls(
            storage=LocalStorageAdapter(get_backups_dir(working_dir)),
            documents=LocalStorageAdapter(Path(documents_root)),
            get_settings=get_settings or backup_settings_provider(working_dir),
            logger=kwargs.pop("logger", None) or BackupLogger(working_dir),
            **kwargs,
        )

    # ------------------------------------------------------------------
    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def index(self) -> BackupIndex:
        """The live index; only inspect it while no operation is in flight."""

        return self._index

    @property
    def hash_backend(self) -> HashBackend:
        return self._hash_backend

    def close(self) -> None:
        self._queue.close()

    def __enter__(self) -> "BackupManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    def initialize(self) -> None:
        """Load, reconcile and trim the index once; concurrent callers share the attempt."""

        if self._ready:
            return
        with self._init_lock:
            future = self._init_future
            if future is None:
                future = self._queue.submit(self._initialize_unsafe)
                self._init_future = future
        try:
            future.result()
        except Exception as exc:
            with self._init_lock:
                if self._init_future is future:
                    self._init_future = None
                    self._logger.error("initialize_failed", error=str(exc), err=type(exc).__name__)
            raise

    def ensure_backup(self, file_path: str, content: str) -> BackupOutcome:
        return self._ensure(file_path, content, initial=False)

    def ensure_initial_backup(self, file_path: str, content: str) -> BackupOutcome:
        return self._ensure(file_path, content, initial=True)

    def list_backups(self, file_path: str) -> List[BackupDescriptor]:
        self.initialize()
        return self._queue.run(self._list_unsafe, file_path)

    def read_backup_content(self, file_path: str, entry_id: str) -> str:
        self.initialize()
        return self._queue.run(self._read_unsafe, file_path, entry_id)

    def restore_backup(self, file_path: str, entry_id: str) -> Dict[str, object]:
        self.initialize()
        return self._queue.run(self._restore_unsafe, file_path, entry_id)

    def enforce_capacity(self) -> CapacitySummary:
        self.initialize()
        return self._queue.run(self._enforce_and_persist_unsafe)

    # ------------------------------------------------------------------
    def _ensure(self, file_path: str, content: str, *, initial: bool) -> BackupOutcome:
        self.initialize()
        if not self._get_settings().enabled:
            self._logger.debug("backup_skipped", path=file_path, reason="disabled")
            return BackupOutcome.SKIPPED
        return self._queue.run(self._create_backup_unsafe, file_path, content, initial=initial)

    def _initialize_unsafe(self) -> None:
        if self._ready:
            return
        self._storage.mkdir("")
        self._load_index_unsafe()
        summary = reconcile_index(self._storage, self._index, logger=self._logger, extension=self._extension)
        if summary.changed:
            self._logger.event(
                event="index_reconciled",
                phase="initialize",
                ok=True,
                kept=summary.kept,
                migrated=len(summary.migrated),
                dropped=len(summary.dropped),
                resized=len(summary.resized),
            )
        self._enforce_capacity_unsafe()
        self._persist_index_unsafe()
        self._ready = True
        self._logger.event(
            event="backup_ready",
            phase="initialize",
            ok=True,
            files=len(self._index.files),
            total_size=self._index.total_size,
            hash_backend=self._hash_backend.name,
        )

    def _load_index_unsafe(self) -> None:
        try:
            raw = self._storage.read_text(INDEX_FILE_NAME)
        except FileNotFoundError:
            self._index = empty_index()
            return
        except (OSError, UnicodeDecodeError) as exc:
            self._logger.error("index_load_failed", error=str(exc))
            self._index = empty_index()
            return
        try:
            parsed = parse_index(raw, INDEX_VERSION)
        except IndexFormatError as exc:
            self._logger.warning("index_reset", reason="corrupt", error=str(exc))
            parsed = None
        else:
            if parsed is None:
                self._logger.warning("index_reset", reason="version_mismatch", expected=INDEX_VERSION)
        self._index = parsed or empty_index()

    def _persist_index_unsafe(self) -> None:
        self._storage.write_text(INDEX_FILE_NAME, serialize_index(self._index))

    def _entry_path(self, file_path: str, entry_id: str) -> str:
        return build_backup_file_name(file_path, entry_id, self._extension)

    # ------------------------------------------------------------------
    def _create_backup_unsafe(self, file_path: str, content: str, *, initial: bool) -> BackupOutcome:
        record = self._index.files.get(file_path)
        if initial and record is not None and record.has_initial():
            return BackupOutcome.SKIPPED

        encoded = content.encode("utf-8")
        digest = self._hash_backend.hexdigest(encoded)
        latest = record.entries[0] if record and record.entries else None
        if latest is not None and latest.hash == digest:
            self._logger.debug("backup_skipped", path=file_path, reason="unchanged")
            return BackupOutcome.SKIPPED

        now = self._clock()
        existing = [entry.id for entry in record.entries] if record else []
        entry_id = generate_entry_id(existing, now)
        summary = self._summarize_unsafe(file_path, latest, content)
        entry = BackupEntry(
            id=entry_id,
            created_at=now,
            size=len(encoded),
            hash=digest,
            is_initial=initial,
            change_preview=summary.preview if summary else None,
            primary_field_value=summary.primary_value if summary else None,
        )
        self._storage.write_bytes(self._entry_path(file_path, entry_id), encoded)

        record = self._index.files.setdefault(file_path, FileBackupRecord())
        record.entries.insert(0, entry)
        record.entries.sort(key=lambda item: item.created_at, reverse=True)
        record.total_size += entry.size
        self._index.total_size += entry.size

        self._apply_retention_unsafe(file_path, record, now)
        self._enforce_capacity_unsafe(now)
        self._persist_index_unsafe()
        self._logger.event(
            event="backup_created",
            phase="create",
            ok=True,
            path=file_path,
            id=entry_id,
            size=entry.size,
            initial=initial,
        )
        return BackupOutcome.CREATED

    def _summarize_unsafe(
        self, file_path: str, latest: Optional[BackupEntry], content: str
    ) -> Optional[ChangeSummary]:
        if self._summarizer is None or latest is None:
            return None
        try:
            previous = self._storage.read_text(self._entry_path(file_path, latest.id))
        except (OSError, UnicodeDecodeError) as exc:
            self._logger.warning("preview_source_unreadable", path=file_path, id=latest.id, error=str(exc))
            return None
        try:
            return self._summarizer(previous, content)
        except Exception as exc:
            self._logger.warning("preview_failed", path=file_path, error=str(exc))
            return None

    def _apply_retention_unsafe(self, file_path: str, record: FileBackupRecord, now: int) -> bool:
        if len(record.entries) <= self._keep_latest:
            return False
        plan = plan_retention(record, now, keep_latest=self._keep_latest, rules=self._rules)
        for entry in plan.remove:
            self._delete_entry_unsafe(file_path, entry, reason="retention")
        return bool(plan.remove)

    def _enforce_capacity_unsafe(self, now: Optional[int] = None) -> CapacitySummary:
        limit = resolve_limit_bytes(self._get_settings().max_size_mb)
        summary = enforce_capacity(
            self._index,
            limit,
            self._clock() if now is None else now,
            lambda file_path, entry: self._delete_entry_unsafe(file_path, entry, reason="capacity"),
            keep_latest=self._keep_latest,
            rules=self._rules,
        )
        if summary.changed:
            self._logger.event(
                event="capacity_enforced",
                phase="capacity",
                ok=True,
                removed=len(summary.removed),
                freed_bytes=summary.freed_bytes,
                limit_bytes=limit,
                total_size=summary.total_size,
            )
        return summary

    def _enforce_and_persist_unsafe(self) -> CapacitySummary:
        summary = self._enforce_capacity_unsafe()
        if summary.changed:
            self._persist_index_unsafe()
        return summary

    def _delete_entry_unsafe(self, file_path: str, entry: BackupEntry, *, reason: str) -> bool:
        record = self._index.files.get(file_path)
        if record is None:
            return False
        position = next((pos for pos, item in enumerate(record.entries) if item.id == entry.id), None)
        if position is None:
            return False
        record.entries.pop(position)
        record.total_size = max(0, record.total_size - entry.size)
        self._index.total_size = max(0, self._index.total_size - entry.size)
        self._remove_blob_unsafe(file_path, entry.id)
        if not record.entries:
            del self._index.files[file_path]
        self._logger.warning("backup_removed", path=file_path, id=entry.id, reason=reason, size=entry.size)
        return True

    def _remove_blob_unsafe(self, file_path: str, entry_id: str) -> None:
        entry_path = self._entry_path(file_path, entry_id)
        try:
            self._storage.remove(entry_path)
            return
        except FileNotFoundError:
            pass
        except (OSError, StoragePathError) as exc:
            self._logger.warning("blob_remove_failed", path=entry_path, error=str(exc))
            return
        segments = legacy_segments(file_path)
        if legacy_segments_escape(segments):
            return
        legacy_path = build_legacy_entry_path(segments, entry_id, self._extension)
        try:
            self._storage.remove(legacy_path)
        except FileNotFoundError:
            return
        except (OSError, StoragePathError) as exc:
            self._logger.warning("legacy_remove_failed", path=legacy_path, error=str(exc))
            return
        remove_legacy_directories_if_empty(self._storage, segments)

    # ------------------------------------------------------------------
    def _list_unsafe(self, file_path: str) -> List[BackupDescriptor]:
        record = self._index.files.get(file_path)
        if record is None:
            return []
        categories = describe_categories(record, self._clock(), keep_latest=self._keep_latest, rules=self._rules)
        return [
            BackupDescriptor(
                id=entry.id,
                created_at=entry.created_at,
                size=entry.size,
                category=categories[entry.id],
                is_initial=entry.is_initial,
                change_preview=entry.change_preview,
                primary_field_value=entry.primary_field_value,
            )
            for entry in record.entries
        ]

    def _find_entry_unsafe(self, file_path: str, entry_id: str) -> BackupEntry:
        record = self._index.files.get(file_path)
        if record is None:
            raise BackupNotFoundError(f"No backups found for {file_path}")
        entry = record.find(entry_id)
        if entry is None:
            raise BackupNotFoundError(f"Backup entry {entry_id} not found for {file_path}")
        return entry

    def _read_unsafe(self, file_path: str, entry_id: str) -> str:
        entry = self._find_entry_unsafe(file_path, entry_id)
        entry_path = self._entry_path(file_path, entry.id)
        try:
            return self._storage.read_text(entry_path)
        except (OSError, UnicodeDecodeError) as exc:
            self._logger.error("backup_read_failed", path=entry_path, error=str(exc))
            raise BackupRestoreError(f"Failed to read backup {entry_id} for {file_path}") from exc

    def _restore_unsafe(self, file_path: str, entry_id: str) -> Dict[str, object]:
        content = self._read_unsafe(file_path, entry_id)

        safety: Optional[BackupOutcome] = None
        try:
            current = self._documents.read_text(file_path)
            safety = self._create_backup_unsafe(file_path, current, initial=False)
        except (OSError, UnicodeDecodeError, BackupError) as exc:
            self._logger.warning("safety_backup_failed", path=file_path, error=str(exc))

        try:
            self._documents.write_text(file_path, content)
        except (OSError, StoragePathError) as exc:
            self._logger.error("restore_failed", path=file_path, id=entry_id, error=str(exc))
            raise BackupRestoreError(f"Failed to restore {file_path} from {entry_id}") from exc

        self._logger.event(event="backup_restored", phase="restore", ok=True, path=file_path, id=entry_id)
        return {
            "id": entry_id,
            "path": file_path,
            "safety_backup": safety.value if safety else None,
        }


__all__ = ["BackupManager"]

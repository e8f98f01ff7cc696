import json
import threading

import pytest

from snapshots.capacity import BYTES_PER_MB
from snapshots.index import INDEX_FILE_NAME
from snapshots.naming import build_backup_file_name, format_entry_id
from snapshots.retention import DAY_MS, MINUTE_MS
from snapshots.storage import LocalStorageAdapter
from snapshots.types import BackupCategory, BackupOutcome

DOC = "notes/todo.md"


class CountingStorage(LocalStorageAdapter):
    def __init__(self, root):
        super().__init__(root)
        self.index_reads = 0
        self._lock = threading.Lock()

    def read_text(self, path):
        if path == INDEX_FILE_NAME:
            with self._lock:
                self.index_reads += 1
        return super().read_text(path)


class FlakyMkdirStorage(LocalStorageAdapter):
    def __init__(self, root, failures=1):
        super().__init__(root)
        self.failures = failures

    def mkdir(self, path):
        if self.failures > 0:
            self.failures -= 1
            raise OSError("disk busy")
        super().mkdir(path)


def _blob_files(backups_dir):
    return sorted(path.name for path in backups_dir.glob("*.tlbkp"))


def test_first_backup_is_created_and_listed(make_manager, backups_dir, clock):
    manager = make_manager()

    outcome = manager.ensure_backup(DOC, "hello")

    assert outcome is BackupOutcome.CREATED
    listed = manager.list_backups(DOC)
    assert len(listed) == 1
    descriptor = listed[0]
    assert descriptor.id == format_entry_id(clock.now)
    assert descriptor.size == 5
    assert descriptor.category is BackupCategory.LATEST
    assert descriptor.is_initial is False
    assert _blob_files(backups_dir) == [build_backup_file_name(DOC, descriptor.id)]
    assert manager.read_backup_content(DOC, descriptor.id) == "hello"


def test_unchanged_content_is_deduplicated(make_manager, clock):
    manager = make_manager()

    assert manager.ensure_backup(DOC, "A") is BackupOutcome.CREATED
    total_before = manager.index.total_size
    clock.advance(1000)
    assert manager.ensure_backup(DOC, "A") is BackupOutcome.SKIPPED
    assert manager.index.total_size == total_before == 1
    assert len(manager.list_backups(DOC)) == 1
    clock.advance(1000)
    assert manager.ensure_backup(DOC, "B") is BackupOutcome.CREATED

    assert len(manager.list_backups(DOC)) == 2


def test_same_millisecond_backups_get_suffixed_ids(make_manager, clock):
    manager = make_manager()

    manager.ensure_backup(DOC, "one")
    manager.ensure_backup(DOC, "two")

    base = format_entry_id(clock.now)
    assert sorted(item.id for item in manager.list_backups(DOC)) == [base, f"{base}-01"]


def test_initial_backup_is_exclusive_per_document(make_manager, clock):
    manager = make_manager()

    assert manager.ensure_initial_backup(DOC, "first") is BackupOutcome.CREATED
    clock.advance(1000)
    assert manager.ensure_initial_backup(DOC, "second") is BackupOutcome.SKIPPED
    assert manager.ensure_backup(DOC, "second") is BackupOutcome.CREATED

    listed = manager.list_backups(DOC)
    assert [item.is_initial for item in listed] == [False, True]


def test_disabled_backups_are_skipped(make_manager, settings, backups_dir):
    settings.enabled = False
    manager = make_manager()

    assert manager.ensure_backup(DOC, "text") is BackupOutcome.SKIPPED
    assert manager.ensure_initial_backup(DOC, "text") is BackupOutcome.SKIPPED
    assert manager.list_backups(DOC) == []
    assert _blob_files(backups_dir) == []


def test_index_persists_across_managers(make_manager, backups_dir, clock):
    first = make_manager()
    first.ensure_backup(DOC, "v1")
    clock.advance(MINUTE_MS)
    first.ensure_backup(DOC, "v2")
    expected = [item.id for item in first.list_backups(DOC)]
    expected_entries = [(entry.id, entry.size, entry.hash) for entry in first.index.files[DOC].entries]
    first.close()

    payload = json.loads((backups_dir / INDEX_FILE_NAME).read_text(encoding="utf-8"))
    assert payload["version"] == 1
    assert payload["totalSize"] == 4
    assert [entry["id"] for entry in payload["files"][DOC]["entries"]] == expected
    stored = payload["files"][DOC]["entries"]
    assert [(entry["id"], entry["size"], entry["hash"]) for entry in stored] == expected_entries

    second = make_manager()
    assert [item.id for item in second.list_backups(DOC)] == expected
    assert [(entry.id, entry.size, entry.hash) for entry in second.index.files[DOC].entries] == expected_entries
    assert second.index.total_size == 4


def test_corrupt_index_is_reset(make_manager, backups_dir, logger):
    backups_dir.mkdir(parents=True)
    (backups_dir / INDEX_FILE_NAME).write_text("{garbage", encoding="utf-8")

    manager = make_manager()
    manager.initialize()

    assert manager.ready
    assert manager.index.files == {}
    resets = [extra for level, name, extra in logger.events if name == "index_reset"]
    assert resets and resets[0]["reason"] == "corrupt"
    assert json.loads((backups_dir / INDEX_FILE_NAME).read_text(encoding="utf-8"))["files"] == {}


def test_version_mismatch_resets_index(make_manager, backups_dir, logger):
    backups_dir.mkdir(parents=True)
    (backups_dir / INDEX_FILE_NAME).write_text(json.dumps({"version": 7, "files": {}}), encoding="utf-8")

    manager = make_manager()
    manager.initialize()

    resets = [extra for level, name, extra in logger.events if name == "index_reset"]
    assert resets and resets[0]["reason"] == "version_mismatch"


def test_concurrent_initialize_loads_index_once(make_manager, backups_dir):
    storage = CountingStorage(backups_dir)
    manager = make_manager(storage=storage)
    barrier = threading.Barrier(5)
    errors = []

    def _init():
        barrier.wait()
        try:
            manager.initialize()
        except Exception as exc:  # pragma: no cover - surfaced by assertion
            errors.append(exc)

    threads = [threading.Thread(target=_init) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    assert manager.ready
    assert storage.index_reads == 1


def test_failed_initialize_can_be_retried(make_manager, backups_dir, logger):
    manager = make_manager(storage=FlakyMkdirStorage(backups_dir))

    with pytest.raises(OSError):
        manager.initialize()
    assert not manager.ready
    assert "initialize_failed" in logger.names()

    manager.initialize()
    assert manager.ready
    assert manager.ensure_backup(DOC, "after retry") is BackupOutcome.CREATED


def test_change_preview_is_recorded(make_manager, clock):
    manager = make_manager()

    manager.ensure_backup(DOC, "## Task: Alpha\nold")
    clock.advance(1000)
    manager.ensure_backup(DOC, "## Task: Alpha\nnew line")

    newest, oldest = manager.list_backups(DOC)
    assert newest.change_preview == "new line"
    assert newest.primary_field_value == "Alpha"
    assert oldest.change_preview is None


def test_retention_thins_history_over_time(make_manager, clock, backups_dir):
    manager = make_manager()
    stamps = []
    for step in range(30):
        manager.ensure_backup(DOC, f"revision {step}")
        stamps.append(clock.now)
        clock.advance(MINUTE_MS)

    listed = manager.list_backups(DOC)
    assert len(listed) < 30
    assert [item.id for item in listed[:3]] == [format_entry_id(stamp) for stamp in reversed(stamps[-3:])]
    assert len(_blob_files(backups_dir)) == len(listed)


def test_capacity_limit_is_enforced_on_write(make_manager, clock, settings, backups_dir):
    settings.max_size_mb = 1
    manager = make_manager()
    stamps = []
    for step in range(20):
        manager.ensure_backup(DOC, f"{step:06d}" + "x" * (100_000 - 6))
        stamps.append(clock.now)
        clock.advance(MINUTE_MS)

    assert manager.index.total_size <= BYTES_PER_MB
    ids = [item.id for item in manager.list_backups(DOC)]
    assert ids[:3] == [format_entry_id(stamp) for stamp in reversed(stamps[-3:])]
    assert len(_blob_files(backups_dir)) == len(ids)


def test_explicit_capacity_enforcement(make_manager, clock, settings):
    settings.max_size_mb = 0
    manager = make_manager()
    for step in range(6):
        manager.ensure_backup(DOC, f"{step}" + "y" * 400_000)
        clock.advance(DAY_MS)
    assert manager.index.total_size > BYTES_PER_MB

    settings.max_size_mb = 1
    summary = manager.enforce_capacity()

    assert summary.changed is True
    assert summary.limit_bytes == BYTES_PER_MB
    assert manager.index.total_size <= BYTES_PER_MB
    assert summary.total_size == manager.index.total_size


def test_missing_blobs_are_dropped_on_startup(make_manager, backups_dir, clock):
    first = make_manager()
    first.ensure_backup(DOC, "keep")
    clock.advance(MINUTE_MS)
    first.ensure_backup(DOC, "lose")
    newest, oldest = [item.id for item in first.list_backups(DOC)]
    first.close()
    (backups_dir / build_backup_file_name(DOC, newest)).unlink()

    second = make_manager()

    assert [item.id for item in second.list_backups(DOC)] == [oldest]
    assert second.index.total_size == 4


def test_categories_follow_the_clock(make_manager, clock):
    manager = make_manager()
    for step in range(4):
        manager.ensure_backup(DOC, f"rev {step}")
        clock.advance(MINUTE_MS)

    assert manager.list_backups(DOC)[3].category is BackupCategory.RECENT
    clock.advance(3 * DAY_MS)
    assert manager.list_backups(DOC)[3].category is BackupCategory.WEEKLY


OUTSIDE = "../shared/notes.md"


def test_escaping_path_with_missing_blob_does_not_block_startup(make_manager, backups_dir, clock):
    first = make_manager()
    first.ensure_backup(OUTSIDE, "v1")
    entry_id = first.list_backups(OUTSIDE)[0].id
    first.close()
    (backups_dir / build_backup_file_name(OUTSIDE, entry_id)).unlink()

    second = make_manager()
    second.initialize()

    assert second.ready
    assert second.list_backups(OUTSIDE) == []
    assert second.index.total_size == 0
    assert second.ensure_backup(DOC, "still usable") is BackupOutcome.CREATED


def test_removing_entries_with_missing_blobs_persists_the_index(make_manager, backups_dir, clock, settings, logger):
    settings.max_size_mb = 0
    manager = make_manager()
    for step in range(6):
        manager.ensure_backup(OUTSIDE, f"{step}" + "z" * 400_000)
        clock.advance(DAY_MS)
    for blob in backups_dir.glob("*.tlbkp"):
        blob.unlink()

    settings.max_size_mb = 1
    summary = manager.enforce_capacity()

    assert summary.changed is True
    assert manager.index.total_size <= BYTES_PER_MB
    payload = json.loads((backups_dir / INDEX_FILE_NAME).read_text(encoding="utf-8"))
    assert payload["totalSize"] == manager.index.total_size
    assert len(payload["files"][OUTSIDE]["entries"]) == len(manager.list_backups(OUTSIDE))
    assert "blob_remove_failed" not in logger.names()

"""Capacity ceiling enforcement across every document's history."""
from __future__ import annotations

import math
from typing import Callable, List, Optional, Sequence, Tuple

from .retention import (
    BUCKET_RULES,
    INITIAL_GRACE_MS,
    LATEST_KEEP_COUNT,
    collect_candidates,
    is_grace_protected,
)
from .types import BackupCategory, BackupEntry, BackupIndex, BucketRule, CapacitySummary

MAX_CAPACITY_MB = 10_240
BYTES_PER_MB = 1024 * 1024

EVICTION_ORDER: Tuple[BackupCategory, ...] = (
    BackupCategory.ARCHIVE,
    BackupCategory.WEEKLY,
    BackupCategory.DAILY,
    BackupCategory.HOURLY,
    BackupCategory.RECENT,
    BackupCategory.LATEST,
)

DeleteEntry = Callable[[str, BackupEntry], bool]


def resolve_limit_bytes(max_size_mb: Optional[float]) -> Optional[int]:
    """Byte ceiling for *max_size_mb*, or ``None`` when there is no limit."""

    if max_size_mb is None or isinstance(max_size_mb, bool):
        return None
    try:
        value = float(max_size_mb)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    megabytes = min(max(1, math.floor(value)), MAX_CAPACITY_MB)
    return megabytes * BYTES_PER_MB


def _evict_pass(
    index: BackupIndex,
    limit_bytes: int,
    now: int,
    delete_entry: DeleteEntry,
    *,
    allow_protected: bool,
    keep_latest: int,
    rules: Sequence[BucketRule],
    grace_ms: int,
    removed: List[Tuple[str, str]],
) -> None:
    for category in EVICTION_ORDER:
        if index.total_size <= limit_bytes:
            return
        candidates = collect_candidates(index.files, category, now, keep_latest=keep_latest, rules=rules)
        for file_path, entry in candidates:
            if index.total_size <= limit_bytes:
                return
            record = index.files.get(file_path)
            # at least one entry always survives per document
            if record is None or len(record.entries) <= 1:
                continue
            if not allow_protected and is_grace_protected(entry, now, grace_ms):
                continue
            if delete_entry(file_path, entry):
                removed.append((file_path, entry.id))


def enforce_capacity(
    index: BackupIndex,
    limit_bytes: Optional[int],
    now: int,
    delete_entry: DeleteEntry,
    *,
    keep_latest: int = LATEST_KEEP_COUNT,
    rules: Sequence[BucketRule] = BUCKET_RULES,
    grace_ms: int = INITIAL_GRACE_MS,
) -> CapacitySummary:
    """Evict entries until ``index.total_size`` fits *limit_bytes*.

    *delete_entry* removes one entry from the live index and its blob, keeping
    record and index totals current. The first pass skips grace-protected
    initial entries; the second pass, run only when still over budget, does not.
    """

    if limit_bytes is None or index.total_size <= limit_bytes:
        return CapacitySummary(changed=False, limit_bytes=limit_bytes, total_size=index.total_size)

    before = index.total_size
    removed: List[Tuple[str, str]] = []
    for allow_protected in (False, True):
        if index.total_size <= limit_bytes:
            break
        _evict_pass(
            index,
            limit_bytes,
            now,
            delete_entry,
            allow_protected=allow_protected,
            keep_latest=keep_latest,
            rules=rules,
            grace_ms=grace_ms,
            removed=removed,
        )
    return CapacitySummary(
        changed=bool(removed),
        removed=removed,
        freed_bytes=max(0, before - index.total_size),
        limit_bytes=limit_bytes,
        total_size=index.total_size,
    )


__all__ = [
    "BYTES_PER_MB",
    "EVICTION_ORDER",
    "MAX_CAPACITY_MB",
    "enforce_capacity",
    "resolve_limit_bytes",
]

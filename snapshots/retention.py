"""Time-bucketed retention for per-document snapshot history."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Sequence, Set, Tuple

from .types import BackupCategory, BackupEntry, BucketRule, FileBackupRecord

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS
WEEK_MS = 7 * DAY_MS

LATEST_KEEP_COUNT = 3
INITIAL_GRACE_MS = 7 * DAY_MS

BUCKET_RULES: Tuple[BucketRule, ...] = (
    BucketRule(BackupCategory.RECENT, max_age=5 * MINUTE_MS, bucket_size=5 * MINUTE_MS),
    BucketRule(BackupCategory.HOURLY, max_age=60 * MINUTE_MS, bucket_size=10 * MINUTE_MS),
    BucketRule(BackupCategory.DAILY, max_age=24 * HOUR_MS, bucket_size=HOUR_MS),
    BucketRule(BackupCategory.WEEKLY, max_age=7 * DAY_MS, bucket_size=DAY_MS),
    BucketRule(BackupCategory.ARCHIVE, max_age=math.inf, bucket_size=WEEK_MS),
)


@dataclass(slots=True)
class RetentionPlan:
    keep: List[BackupEntry] = field(default_factory=list)
    remove: List[BackupEntry] = field(default_factory=list)


def select_bucket(rules: Sequence[BucketRule], age: float) -> BucketRule:
    for rule in rules:
        if age <= rule.max_age:
            return rule
    return rules[-1]


def resolve_category(
    index: int,
    entry: BackupEntry,
    now: int,
    *,
    keep_latest: int = LATEST_KEEP_COUNT,
    rules: Sequence[BucketRule] = BUCKET_RULES,
) -> BackupCategory:
    if index < keep_latest:
        return BackupCategory.LATEST
    return select_bucket(rules, now - entry.created_at).category


def bucket_key(entry: BackupEntry, now: int, rules: Sequence[BucketRule] = BUCKET_RULES) -> Tuple[str, int]:
    rule = select_bucket(rules, now - entry.created_at)
    return rule.category.value, entry.created_at // rule.bucket_size


def is_grace_protected(entry: BackupEntry, now: int, grace_ms: int = INITIAL_GRACE_MS) -> bool:
    return entry.is_initial and now - entry.created_at < grace_ms


def plan_retention(
    record: FileBackupRecord,
    now: int,
    *,
    keep_latest: int = LATEST_KEEP_COUNT,
    rules: Sequence[BucketRule] = BUCKET_RULES,
    grace_ms: int = INITIAL_GRACE_MS,
) -> RetentionPlan:
    """Decide which entries of *record* survive.

    The newest ``keep_latest`` entries always survive. Older entries keep only
    the first one per ``(category, bucket)`` key, walking newest to oldest.
    Initial entries inside their grace period survive regardless.
    """

    ordered = sorted(record.entries, key=lambda entry: entry.created_at, reverse=True)
    plan = RetentionPlan()
    seen: Set[Tuple[str, int]] = set()
    for index, entry in enumerate(ordered):
        if index < keep_latest:
            plan.keep.append(entry)
            continue
        key = bucket_key(entry, now, rules)
        if key not in seen:
            seen.add(key)
            plan.keep.append(entry)
        elif is_grace_protected(entry, now, grace_ms):
            plan.keep.append(entry)
        else:
            plan.remove.append(entry)
    return plan


def collect_candidates(
    files: Mapping[str, FileBackupRecord],
    category: BackupCategory,
    now: int,
    *,
    keep_latest: int = LATEST_KEEP_COUNT,
    rules: Sequence[BucketRule] = BUCKET_RULES,
) -> List[Tuple[str, BackupEntry]]:
    """Entries of *category* across every record, oldest first."""

    result: List[Tuple[str, BackupEntry]] = []
    for file_path, record in files.items():
        for index, entry in enumerate(record.entries):
            if resolve_category(index, entry, now, keep_latest=keep_latest, rules=rules) is category:
                result.append((file_path, entry))
    result.sort(key=lambda item: item[1].created_at)
    return result


def describe_categories(
    record: FileBackupRecord,
    now: int,
    *,
    keep_latest: int = LATEST_KEEP_COUNT,
    rules: Sequence[BucketRule] = BUCKET_RULES,
) -> Dict[str, BackupCategory]:
    return {
        entry.id: resolve_category(index, entry, now, keep_latest=keep_latest, rules=rules)
        for index, entry in enumerate(record.entries)
    }


__all__ = [
    "BUCKET_RULES",
    "DAY_MS",
    "HOUR_MS",
    "INITIAL_GRACE_MS",
    "LATEST_KEEP_COUNT",
    "MINUTE_MS",
    "RetentionPlan",
    "WEEK_MS",
    "bucket_key",
    "collect_candidates",
    "describe_categories",
    "is_grace_protected",
    "plan_retention",
    "resolve_category",
    "select_bucket",
]

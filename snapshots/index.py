"""Decode and encode the persisted snapshot index."""
from __future__ import annotations

import json
import math
from typing import Any, Dict, List, Optional, Set

from .errors import IndexFormatError
from .naming import is_entry_id
from .types import BackupEntry, BackupIndex, FileBackupRecord

INDEX_VERSION = 1
INDEX_FILE_NAME = "index.json"


def empty_index(version: int = INDEX_VERSION) -> BackupIndex:
    return BackupIndex(version=version)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _parse_entry(raw: Any) -> Optional[BackupEntry]:
    if not isinstance(raw, dict):
        return None
    entry_id = raw.get("id")
    created_at = raw.get("createdAt")
    size = raw.get("size")
    digest = raw.get("hash")
    if not is_entry_id(entry_id):
        return None
    if not _is_number(created_at) or created_at <= 0:
        return None
    if not _is_number(size) or size < 0:
        return None
    if not isinstance(digest, str) or not digest:
        return None
    primary = raw.get("primaryFieldValue")
    preview = raw.get("changePreview")
    return BackupEntry(
        id=entry_id,
        created_at=int(created_at),
        size=int(size),
        hash=digest,
        is_initial=raw.get("isInitial") is True,
        primary_field_value=primary if isinstance(primary, str) and primary.strip() else None,
        change_preview=preview if isinstance(preview, str) else None,
    )


def parse_index(raw: str, version: int = INDEX_VERSION) -> Optional[BackupIndex]:
    """Parse *raw* into a sanitized index.

    Returns ``None`` when the payload is not an object or its version differs.
    Invalid JSON raises :class:`IndexFormatError`. Totals are always recomputed
    from the surviving entries.
    """

    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise IndexFormatError(f"Backup index is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict) or payload.get("version") != version:
        return None

    index = empty_index(version)
    files = payload.get("files")
    if not isinstance(files, dict):
        files = {}
    for file_path, record in files.items():
        if not isinstance(record, dict):
            continue
        raw_entries = record.get("entries")
        entries: List[BackupEntry] = []
        seen: Set[str] = set()
        for raw_entry in raw_entries if isinstance(raw_entries, list) else []:
            entry = _parse_entry(raw_entry)
            if entry is None or entry.id in seen:
                continue
            seen.add(entry.id)
            entries.append(entry)
        if not entries:
            continue
        parsed = FileBackupRecord(entries=entries)
        parsed.recompute()
        index.files[str(file_path)] = parsed
    index.recompute()
    return index


def _entry_payload(entry: BackupEntry) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": entry.id,
        "createdAt": entry.created_at,
        "size": entry.size,
        "hash": entry.hash,
    }
    if entry.is_initial:
        payload["isInitial"] = True
    if entry.primary_field_value:
        payload["primaryFieldValue"] = entry.primary_field_value
    if entry.change_preview is not None:
        payload["changePreview"] = entry.change_preview
    return payload


def serialize_index(index: BackupIndex) -> str:
    payload = {
        "version": index.version,
        "totalSize": index.total_size,
        "files": {
            file_path: {
                "entries": [_entry_payload(entry) for entry in record.entries],
                "totalSize": record.total_size,
            }
            for file_path, record in index.files.items()
        },
    }
    return json.dumps(payload, indent=2, ensure_ascii=False)


__all__ = [
    "INDEX_FILE_NAME",
    "INDEX_VERSION",
    "empty_index",
    "parse_index",
    "serialize_index",
]

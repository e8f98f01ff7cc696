"""Blob naming for the flat storage layout and the legacy nested layout."""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Iterable, List

from .hashing import fnv1a_pair

__all__ = [
    "BACKUP_EXTENSION",
    "MAX_SLUG_LENGTH",
    "PATH_HASH_LENGTH",
    "build_backup_file_name",
    "build_legacy_entry_path",
    "format_entry_id",
    "generate_entry_id",
    "hash_path",
    "is_entry_id",
    "legacy_segments",
    "legacy_segments_escape",
    "sanitize_slug",
]

BACKUP_EXTENSION = ".tlbkp"
PATH_HASH_LENGTH = 12
MAX_SLUG_LENGTH = 60

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]+")
_DASH_RUNS = re.compile(r"-+")
_EXTENSION = re.compile(r"\.[^./\\]+$")
_ENTRY_ID = re.compile(r"\d{8}-\d{6}-\d{3}(?:-\d{2,})?")


def _segments(file_path: str) -> List[str]:
    return [segment for segment in file_path.replace("\\", "/").split("/") if segment]


def sanitize_slug(file_path: str) -> str:
    """Return an ASCII-safe slug of *file_path*, keeping the tail when too long."""

    segments = _segments(file_path)
    if not segments:
        return "root"
    cleaned = [_UNSAFE_CHARS.sub("-", segment) for segment in segments]
    joined = _DASH_RUNS.sub("-", "-".join(part for part in cleaned if part)).strip("-")
    if not joined:
        return "root"
    if len(joined) <= MAX_SLUG_LENGTH:
        return joined
    return joined[-MAX_SLUG_LENGTH:]


def hash_path(file_path: str) -> str:
    """Short deterministic fingerprint of the document path (not its content)."""

    hash_a, hash_b = fnv1a_pair((ord(char) for char in file_path), lambda code, index: code ^ index)
    return f"{hash_a:08x}{hash_b:08x}"[:PATH_HASH_LENGTH]


def build_backup_file_name(file_path: str, entry_id: str, extension: str = BACKUP_EXTENSION) -> str:
    return f"{hash_path(file_path)}-{sanitize_slug(file_path)}-{entry_id}{extension}"


def legacy_segments(file_path: str) -> List[str]:
    """Directory segments of the pre-migration layout, ending in the base name."""

    segments = _segments(file_path)
    if not segments:
        return ["root"]
    file_name = segments.pop()
    base_name = _EXTENSION.sub("", file_name) or file_name
    return [*segments, base_name]


def legacy_segments_escape(segments: Iterable[str]) -> bool:
    """True when the legacy directory would climb out of the backups root."""

    return ".." in segments


def build_legacy_entry_path(segments: Iterable[str], entry_id: str, extension: str = BACKUP_EXTENSION) -> str:
    return "/".join([*segments, f"{entry_id}{extension}"])


def format_entry_id(timestamp_ms: int) -> str:
    moment = datetime.fromtimestamp(timestamp_ms // 1000, tz=timezone.utc)
    return f"{moment:%Y%m%d-%H%M%S}-{timestamp_ms % 1000:03d}"


def is_entry_id(value: object) -> bool:
    return isinstance(value, str) and _ENTRY_ID.fullmatch(value) is not None


def generate_entry_id(existing_ids: Iterable[str], timestamp_ms: int) -> str:
    """Timestamp id, suffixed ``-01``, ``-02``... when it already exists in the record."""

    base = format_entry_id(timestamp_ms)
    existing = set(existing_ids)
    if base not in existing:
        return base
    counter = 1
    candidate = f"{base}-{counter:02d}"
    while candidate in existing:
        counter += 1
        candidate = f"{base}-{counter:02d}"
    return candidate

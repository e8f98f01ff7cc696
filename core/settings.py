from __future__ import annotations

import json
import math
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict

from .paths import get_default_settings_paths, get_logs_dir
from .settings_schema import SETTINGS_VALIDATOR

__all__ = [
    "BackupSettings",
    "DEFAULT_SETTINGS",
    "MAX_BACKUP_SIZE_MB",
    "SETTINGS_VERSION",
    "backup_settings_provider",
    "load_settings",
    "merge_defaults",
    "sanitize_backup_settings",
    "save_settings",
]

SETTINGS_VERSION = 1
MAX_BACKUP_SIZE_MB = 10_240


@dataclass(slots=True)
class BackupSettings:
    """Settings consumed by the backup manager on every operation."""

    enabled: bool = True
    max_size_mb: float = 200


DEFAULT_SETTINGS: Dict[str, Any] = {
    "version": SETTINGS_VERSION,
    "backups": {
        "enabled": True,
        "max_size_mb": 200,
    },
    "api": {
        "host": "127.0.0.1",
        "port": 8766,
    },
    "logging": {
        "level": "INFO",
    },
}


def merge_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
    def _merge(default: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key, value in default.items():
            if isinstance(value, dict):
                current = payload.get(key)
                if isinstance(current, dict):
                    result[key] = _merge(value, current)
                else:
                    result[key] = _merge(value, {})
            elif isinstance(value, list):
                current = payload.get(key)
                result[key] = list(current) if isinstance(current, list) else list(value)
            else:
                result[key] = payload.get(key, value)
        for key, value in payload.items():
            if key not in result:
                result[key] = value
        return result

    return _merge(DEFAULT_SETTINGS, data or {})


def sanitize_backup_settings(raw: Any) -> BackupSettings:
    """Coerce the ``backups`` section into :class:`BackupSettings`.

    Invalid sizes fall back to the default; valid ones are floored and clamped
    to ``[1, MAX_BACKUP_SIZE_MB]``.
    """

    base = DEFAULT_SETTINGS["backups"]
    section = raw if isinstance(raw, dict) else {}
    enabled = section.get("enabled")
    if not isinstance(enabled, bool):
        enabled = base["enabled"]
    value = section.get("max_size_mb")
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
        value = base["max_size_mb"]
    max_size = min(MAX_BACKUP_SIZE_MB, max(1, math.floor(value)))
    return BackupSettings(enabled=enabled, max_size_mb=max_size)


def _apply_migrations(settings: Dict[str, Any], working_dir: Path) -> Dict[str, Any]:
    version = settings.get("version")
    try:
        version_int = int(version)
    except (TypeError, ValueError):
        version_int = 0
    if version_int < SETTINGS_VERSION:
        settings["version"] = SETTINGS_VERSION
    return settings


def _report_invalid_keys(settings: Dict[str, Any], working_dir: Path) -> None:
    unknown = list(SETTINGS_VALIDATOR.unknown_keys(settings))
    invalid = [{"key": key, "type": kind} for key, kind in SETTINGS_VALIDATOR.type_errors(settings)]
    if not unknown and not invalid:
        return
    logs_dir = get_logs_dir(working_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    payload = {
        "ts": time.time(),
        "unknown": unknown,
        "invalid": invalid,
    }
    target = logs_dir / "settings_invalid.json"
    try:
        with open(target, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
    except OSError:
        return


def load_settings(working_dir: Path) -> Dict[str, Any]:
    working_dir = Path(working_dir)
    data: Dict[str, Any] = {}
    for candidate in get_default_settings_paths(working_dir):
        try:
            with open(candidate, "r", encoding="utf-8") as handle:
                loaded = json.load(handle)
        except FileNotFoundError:
            continue
        except json.JSONDecodeError:
            continue
        except OSError:
            continue
        if isinstance(loaded, dict):
            data = loaded
            break
    merged = merge_defaults(data)
    merged = _apply_migrations(merged, working_dir)
    merged.setdefault("working_dir", str(working_dir))
    _report_invalid_keys(merged, working_dir)
    return merged


def save_settings(settings: Dict[str, Any], working_dir: Path) -> None:
    working_dir = Path(working_dir)
    merged = merge_defaults(dict(settings))
    merged = _apply_migrations(merged, working_dir)
    merged.setdefault("working_dir", str(working_dir))
    path = working_dir / "settings.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(merged, handle, ensure_ascii=False, indent=2)


def backup_settings_provider(working_dir: Path) -> Callable[[], BackupSettings]:
    """Return a callable re-reading the backup section on every call."""

    def _provider() -> BackupSettings:
        return sanitize_backup_settings(load_settings(working_dir).get("backups"))

    return _provider

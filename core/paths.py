from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

__all__ = [
    "ensure_working_dir_structure",
    "get_backups_dir",
    "get_default_settings_paths",
    "get_logs_dir",
    "resolve_working_dir",
]

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_HOME = "DOCSNAP_HOME"


def _expand_path(value: str) -> Path:
    expanded = os.path.expandvars(os.path.expanduser(value))
    return Path(expanded).resolve()


def _ensure_writable_dir(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False
    test_file = path / f".write_test_{os.getpid()}"
    try:
        with open(test_file, "w", encoding="utf-8") as handle:
            handle.write("ok")
        test_file.unlink(missing_ok=True)
        return True
    except OSError:
        try:
            if test_file.exists():
                test_file.unlink()
        except OSError:  # pragma: no cover - cleanup only
            pass
        return False


def _prepare_working_dir(candidate: Path) -> Optional[Path]:
    if not _ensure_writable_dir(candidate):
        return None
    try:
        ensure_working_dir_structure(candidate)
        return candidate
    except OSError:
        return None


def resolve_working_dir() -> Path:
    """Resolve the docsnap working directory, creating it if required."""

    env_home = os.environ.get(_ENV_HOME)
    if env_home:
        try:
            env_path: Optional[Path] = _expand_path(env_home)
        except (OSError, RuntimeError):
            env_path = None
        if env_path:
            prepared = _prepare_working_dir(env_path)
            if prepared is not None:
                return prepared

    prepared = _prepare_working_dir(Path.home() / ".docsnap")
    if prepared is not None:
        return prepared

    fallback = Path.home() / "docsnap"
    ensure_working_dir_structure(fallback)
    return fallback


def get_backups_dir(working_dir: Path) -> Path:
    return Path(working_dir) / "backups"


def get_logs_dir(working_dir: Path) -> Path:
    return Path(working_dir) / "logs"


def ensure_working_dir_structure(working_dir: Path) -> None:
    for directory in (
        Path(working_dir),
        get_backups_dir(working_dir),
        get_logs_dir(working_dir),
    ):
        directory.mkdir(parents=True, exist_ok=True)


def get_default_settings_paths(working_dir: Path) -> list[Path]:
    """Return the search order for settings.json files."""

    return [Path(working_dir) / "settings.json", _PROJECT_ROOT / "settings.json"]

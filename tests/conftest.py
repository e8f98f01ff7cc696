from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, List, Tuple

import pytest

from core.settings import BackupSettings
from snapshots.manager import BackupManager
from snapshots.storage import LocalStorageAdapter

BASE_TIME_MS = 1_700_000_000_000


class FakeClock:
    def __init__(self, start: int = BASE_TIME_MS) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class RecordingLogger:
    def __init__(self) -> None:
        self.events: List[Tuple[str, str, dict]] = []

    def event(self, *, event: str, phase: str, ok: bool, **extra: Any) -> None:
        self.events.append(("event", event, {"phase": phase, "ok": ok, **extra}))

    def debug(self, event: str, **extra: Any) -> None:
        self.events.append(("debug", event, extra))

    def info(self, event: str, **extra: Any) -> None:
        self.events.append(("info", event, extra))

    def warning(self, event: str, **extra: Any) -> None:
        self.events.append(("warning", event, extra))

    def error(self, event: str, **extra: Any) -> None:
        self.events.append(("error", event, extra))

    def names(self) -> List[str]:
        return [name for _, name, _ in self.events]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def settings() -> BackupSettings:
    return BackupSettings(enabled=True, max_size_mb=200)


@pytest.fixture
def backups_dir(tmp_path: Path) -> Path:
    return tmp_path / "backups"


@pytest.fixture
def docs_dir(tmp_path: Path) -> Path:
    path = tmp_path / "docs"
    path.mkdir()
    return path


@pytest.fixture
def make_manager(backups_dir, docs_dir, clock, logger, settings) -> Callable[..., BackupManager]:
    created: List[BackupManager] = []

    def _make(**overrides: Any) -> BackupManager:
        kwargs: dict = {
            "storage": LocalStorageAdapter(backups_dir),
            "documents": LocalStorageAdapter(docs_dir),
            "get_settings": lambda: settings,
            "logger": logger,
            "clock": clock,
        }
        kwargs.update(overrides)
        manager = BackupManager(**kwargs)
        created.append(manager)
        return manager

    yield _make
    for manager in created:
        manager.close()

"""Structured logging helpers for snapshot operations."""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

LOGGER = logging.getLogger("docsnap.backup")

DEFAULT_MAX_BYTES = 5 * 1024 * 1024


class BackupLogger:
    """Write structured JSONL entries for backup related events.

    Without a working directory the entries only go through :mod:`logging`.
    Once the file reaches *max_bytes* it is moved to ``backup.jsonl.1``,
    replacing the previous generation.
    """

    def __init__(self, working_dir: Optional[Path] = None, *, max_bytes: int = DEFAULT_MAX_BYTES) -> None:
        self._log_path: Optional[Path] = None
        self._max_bytes = max_bytes
        if working_dir is not None:
            self._log_path = Path(working_dir) / "logs" / "backup.jsonl"
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    @property
    def log_path(self) -> Optional[Path]:
        return self._log_path

    # ------------------------------------------------------------------
    def _rotate_if_needed(self, path: Path) -> None:
        if self._max_bytes <= 0:
            return
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            return
        if size >= self._max_bytes:
            os.replace(path, path.with_name(path.name + ".1"))

    def _write(self, payload: Dict[str, Any], *, level: int) -> None:
        payload.setdefault("ts", datetime.now(timezone.utc).isoformat())
        line = json.dumps(payload, sort_keys=True, default=str)
        if self._log_path is not None:
            with self._lock:
                self._rotate_if_needed(self._log_path)
                with self._log_path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
        LOGGER.log(level, "%s", payload["event"], extra={"payload": payload})

    def event(self, *, event: str, phase: str, ok: bool, **extra: Any) -> None:
        payload = {
            "event": event,
            "phase": phase,
            "ok": bool(ok),
        }
        if extra:
            payload.update(extra)
        level = logging.INFO if ok else logging.ERROR
        self._write(payload, level=level)

    def debug(self, event: str, **extra: Any) -> None:
        self._write({"event": event, **extra, "ok": True}, level=logging.DEBUG)

    def info(self, event: str, **extra: Any) -> None:
        self._write({"event": event, **extra, "ok": True}, level=logging.INFO)

    def warning(self, event: str, **extra: Any) -> None:
        self._write({"event": event, **extra, "ok": False}, level=logging.WARNING)

    def error(self, event: str, **extra: Any) -> None:
        self._write({"event": event, **extra, "ok": False}, level=logging.ERROR)


__all__ = ["BackupLogger"]

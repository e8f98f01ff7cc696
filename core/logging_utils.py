from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .paths import get_logs_dir, resolve_working_dir

LOG_FILE_NAME = "docsnap.log.jsonl"

_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()) | {"message", "asctime", "payload"}


class JsonLogFormatter(logging.Formatter):
    """Render each record as one JSON object.

    A structured ``payload`` dict passed through ``extra`` is merged into the top
    level; other JSON-serialisable extras are copied as they are.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        structured = getattr(record, "payload", None)
        if isinstance(structured, dict):
            for key, value in structured.items():
                payload.setdefault(key, value)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key.startswith("_") or key in _RESERVED_ATTRS or key in payload:
                continue
            try:
                json.dumps(value)
            except TypeError:
                continue
            payload[key] = value
        return json.dumps(payload, ensure_ascii=False, default=str)


def coerce_level(level: int | str | None) -> int:
    """Map a settings value such as ``"debug"`` to a logging level, else INFO."""

    if isinstance(level, int) and not isinstance(level, bool):
        return level
    resolved = logging.getLevelName(str(level or "").upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_json_logging(
    name: str = "docsnap",
    *,
    working_dir: Optional[Path] = None,
    level: int | str | None = logging.INFO,
) -> logging.Logger:
    working_dir = Path(working_dir) if working_dir is not None else resolve_working_dir()
    logs_dir = get_logs_dir(working_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / LOG_FILE_NAME
    logger = logging.getLogger(name)
    logger.setLevel(coerce_level(level))
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler) and getattr(handler, "baseFilename", None) == str(log_path):
            break
    else:
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setFormatter(JsonLogFormatter())
        logger.addHandler(handler)
    logger.propagate = False
    return logger


__all__ = ["JsonLogFormatter", "LOG_FILE_NAME", "coerce_level", "configure_json_logging"]

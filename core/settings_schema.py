from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Tuple

_NUMBER = (int, float)

# Leaf rules are accepted types; "*" accepts any nested mapping; None any value.
_ALLOWED_STRUCTURE: Dict[str, Any] = {
    "backups": {
        "enabled": bool,
        "max_size_mb": _NUMBER,
    },
    "api": {
        "host": str,
        "port": int,
    },
    "logging": "*",
    "working_dir": str,
    "documents_root": str,
    "version": int,
}


def _matches(value: Any, expected: Any) -> bool:
    types = expected if isinstance(expected, tuple) else (expected,)
    if isinstance(value, bool) and bool not in types:
        return False
    return isinstance(value, types)


@dataclass(slots=True)
class SettingsValidator:
    schema: Mapping[str, Any]

    def unknown_keys(self, payload: Mapping[str, Any]) -> Iterable[str]:
        return sorted(self._iter_unknown(payload, self.schema, path=""))

    def type_errors(self, payload: Mapping[str, Any]) -> Iterable[Tuple[str, str]]:
        """Return ``(key, actual type)`` for known keys holding the wrong type."""

        return sorted(self._iter_type_errors(payload, self.schema, path=""))

    def _iter_unknown(self, payload: Mapping[str, Any], schema: Mapping[str, Any], *, path: str) -> Iterable[str]:
        for key, value in payload.items():
            if key not in schema:
                yield f"{path}{key}"
                continue
            rule = schema[key]
            if isinstance(rule, Mapping) and isinstance(value, Mapping):
                yield from self._iter_unknown(value, rule, path=f"{path}{key}.")

    def _iter_type_errors(
        self, payload: Mapping[str, Any], schema: Mapping[str, Any], *, path: str
    ) -> Iterable[Tuple[str, str]]:
        for key, value in payload.items():
            rule = schema.get(key)
            if rule is None or rule == "*":
                continue
            if isinstance(rule, Mapping):
                if not isinstance(value, Mapping):
                    yield f"{path}{key}", type(value).__name__
                    continue
                yield from self._iter_type_errors(value, rule, path=f"{path}{key}.")
                continue
            if value is not None and not _matches(value, rule):
                yield f"{path}{key}", type(value).__name__


SETTINGS_VALIDATOR = SettingsValidator(_ALLOWED_STRUCTURE)

__all__ = ["SETTINGS_VALIDATOR", "SettingsValidator"]

"""Storage adapters used by the snapshot manager.

Paths handed to an adapter are relative POSIX strings; the adapter decides
where they live. :class:`LocalStorageAdapter` maps them under a directory.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from stat import S_ISDIR
from typing import List, Optional, Protocol, Tuple, runtime_checkable

from .errors import StoragePathError

__all__ = ["LocalStorageAdapter", "StorageAdapter", "StorageStat"]


@dataclass(slots=True, frozen=True)
class StorageStat:
    kind: str
    size: int

    @property
    def is_file(self) -> bool:
        return self.kind == "file"


@runtime_checkable
class StorageAdapter(Protocol):
    def read_bytes(self, path: str) -> bytes: ...

    def write_bytes(self, path: str, data: bytes) -> None: ...

    def read_text(self, path: str) -> str: ...

    def write_text(self, path: str, text: str) -> None: ...

    def remove(self, path: str) -> None: ...

    def rename(self, source: str, target: str) -> None: ...

    def stat(self, path: str) -> Optional[StorageStat]: ...

    def list(self, path: str) -> Tuple[List[str], List[str]]: ...

    def mkdir(self, path: str) -> None: ...

    def rmdir(self, path: str) -> None: ...


class LocalStorageAdapter:
    """Filesystem adapter rooted at *root*."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    # ------------------------------------------------------------------
    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path.replace("\\", "/"))
        if relative.is_absolute() or ".." in relative.parts:
            raise StoragePathError(f"Path escapes storage root: {path}")
        return self._root.joinpath(*relative.parts)

    # ------------------------------------------------------------------
    def read_bytes(self, path: str) -> bytes:
        return self._resolve(path).read_bytes()

    def write_bytes(self, path: str, data: bytes) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def read_text(self, path: str) -> str:
        return self._resolve(path).read_text(encoding="utf-8")

    def write_text(self, path: str, text: str) -> None:
        self.write_bytes(path, text.encode("utf-8"))

    def remove(self, path: str) -> None:
        self._resolve(path).unlink()

    def rename(self, source: str, target: str) -> None:
        destination = self._resolve(target)
        destination.parent.mkdir(parents=True, exist_ok=True)
        os.replace(self._resolve(source), destination)

    def stat(self, path: str) -> Optional[StorageStat]:
        try:
            result = self._resolve(path).stat()
        except FileNotFoundError:
            return None
        if S_ISDIR(result.st_mode):
            return StorageStat(kind="folder", size=0)
        return StorageStat(kind="file", size=int(result.st_size))

    def list(self, path: str) -> Tuple[List[str], List[str]]:
        base = self._resolve(path)
        files: List[str] = []
        folders: List[str] = []
        prefix = path.strip("/")
        for child in sorted(base.iterdir()):
            relative = f"{prefix}/{child.name}" if prefix else child.name
            if child.is_dir():
                folders.append(relative)
            else:
                files.append(relative)
        return files, folders

    def mkdir(self, path: str) -> None:
        self._resolve(path).mkdir(parents=True, exist_ok=True)

    def rmdir(self, path: str) -> None:
        self._resolve(path).rmdir()

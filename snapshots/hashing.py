"""Content fingerprints used to skip redundant snapshots."""
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Callable, Optional

__all__ = [
    "FNV32_OFFSET_BASIS",
    "FNV32_PRIME",
    "HashBackend",
    "compute_hash",
    "fallback_digest",
    "fnv1a_pair",
    "select_backend",
]

FNV32_OFFSET_BASIS = 0x811C9DC5
FNV32_PRIME = 0x01000193
_MASK32 = 0xFFFFFFFF


@dataclass(slots=True, frozen=True)
class HashBackend:
    """Narrow digest capability; the hex form of ``digest`` is the stored hash."""

    name: str
    digest: Callable[[bytes], bytes]

    def hexdigest(self, data: bytes) -> str:
        return self.digest(data).hex()


def fnv1a_pair(values, mix: Callable[[int, int], int]) -> tuple[int, int]:
    """Run two FNV-1a 32-bit hashes in parallel over *values*.

    The second hash consumes ``mix(value, index) & 0xff`` instead of the raw value.
    """

    hash_a = FNV32_OFFSET_BASIS
    hash_b = FNV32_OFFSET_BASIS
    for index, value in enumerate(values):
        hash_a = ((hash_a ^ value) * FNV32_PRIME) & _MASK32
        hash_b = ((hash_b ^ (mix(value, index) & 0xFF)) * FNV32_PRIME) & _MASK32
    return hash_a, hash_b


def fallback_digest(data: bytes) -> bytes:
    hash_a, hash_b = fnv1a_pair(data, lambda value, index: value + index)
    return hash_a.to_bytes(4, "big") + hash_b.to_bytes(4, "big")


def _sha256_digest(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


_FALLBACK = HashBackend(name="fnv1a-pair", digest=fallback_digest)


def select_backend(prefer: Optional[str] = None) -> HashBackend:
    """Pick the digest backend once; callers keep the result for the index lifetime."""

    if prefer == _FALLBACK.name:
        return _FALLBACK
    try:
        hashlib.sha256(b"")
    except (AttributeError, ValueError):
        return _FALLBACK
    return HashBackend(name="sha256", digest=_sha256_digest)


def compute_hash(data: bytes, backend: Optional[HashBackend] = None) -> str:
    return (backend or select_backend()).hexdigest(data)

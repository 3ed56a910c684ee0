from __future__ import annotations

from typing import Iterable, Protocol


class CachePort(Protocol):
    def get(self, key: str) -> bytes | None:
        """Return cached bytes for key, or None if missing/expired."""

    def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None:
        """Store bytes with optional TTL in seconds."""

    def delete(self, key: str) -> None:
        """Remove a single key if present."""

    def clear(self, prefix: str | None = None) -> None:
        """Clear cached entries. Without prefix, clears all. With prefix, clears only matching keys."""

    def iter_keys(self, prefix: str) -> Iterable[str]:
        """Iterate over keys in the current namespace matching the given prefix."""
        ...

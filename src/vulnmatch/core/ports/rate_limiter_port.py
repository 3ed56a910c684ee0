from __future__ import annotations

from typing import Protocol


class RateLimiterPort(Protocol):
    def acquire(self) -> None:
        """Block until another request to the remote corpus is allowed."""

from __future__ import annotations

from datetime import datetime, timezone
from threading import Event
from typing import Protocol


class ClockPort(Protocol):
    def now(self) -> datetime:
        """Return current UTC datetime."""
        ...

    def sleep(self, seconds: float, cancel: Event | None = None) -> bool:
        """Sleep for the given seconds; return False if cancel was set meanwhile."""
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def sleep(self, seconds: float, cancel: Event | None = None) -> bool:
        if seconds <= 0:
            return not (cancel is not None and cancel.is_set())
        if cancel is None:
            Event().wait(seconds)
            return True
        return not cancel.wait(seconds)

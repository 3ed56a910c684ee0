from __future__ import annotations

from enum import Enum, IntEnum
from typing import Optional


class Confidence(IntEnum):
    """Trust placed in a piece of evidence or in a value derived from it.

    Totally ordered: LOW < MEDIUM < HIGH < HIGHEST.
    """

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    HIGHEST = 4

    @classmethod
    def from_str(cls, value: str) -> "Confidence":
        return cls[value.strip().upper()]


class EvidenceType(Enum):
    VENDOR = "VENDOR"
    PRODUCT = "PRODUCT"
    VERSION = "VERSION"


class Part(Enum):
    APPLICATION = "a"
    OPERATING_SYSTEM = "o"
    HARDWARE = "h"
    ANY = "*"

    @classmethod
    def from_code(cls, code: str) -> "Part":
        c = (code or "*").strip().lower()
        for member in cls:
            if member.value == c:
                return member
        raise ValueError(f"Unknown CPE part: {code!r}")


class Severity(Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    NONE = "NONE"
    UNKNOWN = "UNKNOWN"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def from_str(cls, value: str) -> Optional["Severity"]:
        """Parse a severity label (case-insensitive); 'moderate' maps to MEDIUM."""
        s = value.strip().upper()
        if not s:
            return None
        if s == "MODERATE":
            return cls.MEDIUM
        try:
            return cls[s]
        except KeyError:
            return None


_SEVERITY_RANK = {
    Severity.CRITICAL: 5,
    Severity.HIGH: 4,
    Severity.MEDIUM: 3,
    Severity.LOW: 2,
    Severity.NONE: 1,
    Severity.UNKNOWN: 0,
}


class SyncMode(Enum):
    SKIP = "SKIP"
    INCREMENTAL = "INCREMENTAL"
    FULL = "FULL"


class SyncState(Enum):
    CHECK_FRESHNESS = "CHECK_FRESHNESS"
    SKIP = "SKIP"
    INCREMENTAL = "INCREMENTAL"
    FULL = "FULL"
    FETCHING = "FETCHING"
    MERGING = "MERGING"
    REINDEXING = "REINDEXING"
    DONE = "DONE"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncState.SKIP, SyncState.DONE, SyncState.FAILED, SyncState.CANCELLED)

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import total_ordering
from typing import Optional, Union

from ..domain.models import ANY, NA, VulnerableSoftwareRule

logger = logging.getLogger(__name__)


_SEGMENT_RE = re.compile(r"\d+|[a-z]+")

Segment = Union[int, str]


@total_ordering
@dataclass(frozen=True)
class Version:
    """A dotted/segmented version.

    Segments come from splitting on '.', '-', '+', '_' (any non-alphanumeric)
    and on digit/letter boundaries. At the same position a numeric segment
    sorts below an alphabetic one; the shorter version is padded with 0.
    So 1.0 == 1.0.0, 1.9.9 < 2.0 and 2.0 < 2.0-beta.
    """

    raw: str
    segments: tuple[Segment, ...]

    def compare(self, other: "Version") -> int:
        return compare_segments(self.segments, other.segments)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.compare(other) == 0

    def __lt__(self, other: "Version") -> bool:
        return self.compare(other) < 0

    def __hash__(self) -> int:
        # trailing numeric zeros do not change equality
        segs = list(self.segments)
        while segs and segs[-1] == 0:
            segs.pop()
        return hash(tuple(segs))

    def __str__(self) -> str:
        return self.raw


def parse_version(value: Optional[str]) -> Optional[Version]:
    """Parse a version string; None when it carries no numeric segment at all."""
    if value is None:
        return None
    s = value.strip().lower()
    if len(s) > 1 and s[0] == "v" and s[1].isdigit():
        s = s[1:]
    parts = _SEGMENT_RE.findall(s)
    if not any(p.isdigit() for p in parts):
        return None
    segments: tuple[Segment, ...] = tuple(int(p) if p.isdigit() else p for p in parts)
    return Version(raw=value, segments=segments)


def compare_segments(a: tuple[Segment, ...], b: tuple[Segment, ...]) -> int:
    for i in range(max(len(a), len(b))):
        x = a[i] if i < len(a) else 0
        y = b[i] if i < len(b) else 0
        if isinstance(x, int) and isinstance(y, int):
            if x != y:
                return -1 if x < y else 1
        elif isinstance(x, str) and isinstance(y, str):
            if x != y:
                return -1 if x < y else 1
        elif isinstance(x, int):
            return -1
        else:
            return 1
    return 0


class VersionRangeMatcher:
    """Decides whether a concrete version is covered by a vulnerable-software rule.

    Never raises: ambiguity resolves to "no match".
    """

    def matches(self, version: Optional[str], rule: VulnerableSoftwareRule) -> bool:
        if not rule.vulnerable:
            return False
        if version is None or version.strip() in ("", ANY, NA):
            return False
        version = version.strip()

        if not rule.has_version_bounds:
            rule_version = rule.version or ANY
            if rule_version == ANY:
                return True
            return version.lower() == rule_version.lower()

        v = parse_version(version)
        bounds = (
            (rule.version_start_including, lambda c: c >= 0),
            (rule.version_start_excluding, lambda c: c > 0),
            (rule.version_end_including, lambda c: c <= 0),
            (rule.version_end_excluding, lambda c: c < 0),
        )
        present = [(b, check) for b, check in bounds if b is not None]
        parsed = [(parse_version(b), check) for b, check in present]
        if v is None or any(pb is None for pb, _ in parsed):
            return self._literal_fallback(version, rule)

        for bound, check in parsed:
            if not check(v.compare(bound)):
                return False
        return True

    @staticmethod
    def _literal_fallback(version: str, rule: VulnerableSoftwareRule) -> bool:
        inclusive = [b for b in (rule.version_start_including, rule.version_end_including) if b is not None]
        matched = any(version.lower() == b.strip().lower() for b in inclusive)
        logger.debug(
            "Unparseable version comparison %r against %s; literal match=%s",
            version,
            rule.identifier.to_cpe23(),
            matched,
        )
        return matched

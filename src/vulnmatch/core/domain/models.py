from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional
from urllib.parse import unquote

from .enums import Confidence, Part, Severity, SyncMode, SyncState
from .errors import SyncError
from .evidence import Evidence


ANY = "*"
NA = "-"

_CPE23_PREFIX = "cpe:2.3:"
_CPE22_PREFIX = "cpe:/"
_COMPONENTS = (
    "vendor",
    "product",
    "version",
    "update",
    "edition",
    "language",
    "sw_edition",
    "target_sw",
    "target_hw",
    "other",
)


def _split_escaped(value: str) -> list[str]:
    """Split a CPE 2.3 formatted string on ':' that is not backslash-escaped."""
    parts: list[str] = []
    buf: list[str] = []
    escaped = False
    for ch in value:
        if escaped:
            buf.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == ":":
            parts.append("".join(buf))
            buf = []
        else:
            buf.append(ch)
    parts.append("".join(buf))
    return parts


def _escape(value: str) -> str:
    if value in (ANY, NA):
        return value
    out = []
    for ch in value:
        if ch.isalnum() or ch in "_-.":
            out.append(ch)
        else:
            out.append("\\" + ch)
    return "".join(out)


def _component_matches(pattern: str, target: str) -> bool:
    p = (pattern or ANY).lower()
    t = (target or "").lower()
    if p == ANY or t == ANY:
        return True
    if p == NA:
        return t in (NA, "")
    return p == t


@dataclass(frozen=True)
class PlatformIdentifier:
    """CPE-like platform name; components hold '*' for any and '-' for not applicable."""

    part: Part = Part.APPLICATION
    vendor: str = ANY
    product: str = ANY
    version: str = ANY
    update: str = ANY
    edition: str = ANY
    language: str = ANY
    sw_edition: str = ANY
    target_sw: str = ANY
    target_hw: str = ANY
    other: str = ANY

    @classmethod
    def parse(cls, value: str) -> "PlatformIdentifier":
        """Parse a CPE 2.3 formatted string or a CPE 2.2 URI."""
        s = value.strip()
        if s.lower().startswith(_CPE23_PREFIX):
            fields = _split_escaped(s[len(_CPE23_PREFIX):])
            if len(fields) < 3:
                raise ValueError(f"Invalid CPE 2.3 string: {value!r}")
            part = Part.from_code(fields[0])
            comps = [(f or ANY) for f in fields[1:]]
        elif s.lower().startswith(_CPE22_PREFIX):
            fields = s[len(_CPE22_PREFIX):].split(":")
            part = Part.from_code(fields[0] or ANY)
            # empty 2.2 components mean ANY
            comps = [unquote(f) if f else ANY for f in fields[1:]]
        else:
            raise ValueError(f"Not a CPE name: {value!r}")
        comps = (comps + [ANY] * len(_COMPONENTS))[: len(_COMPONENTS)]
        return cls(part, *[c.lower() for c in comps])

    @classmethod
    def of(cls, vendor: str, product: str, version: str = ANY, part: Part = Part.APPLICATION) -> "PlatformIdentifier":
        return cls(part=part, vendor=vendor.lower(), product=product.lower(), version=version)

    def to_cpe23(self) -> str:
        values = [_escape(getattr(self, name) or ANY) for name in _COMPONENTS]
        return _CPE23_PREFIX + ":".join([self.part.value, *values])

    def matches(self, other: "PlatformIdentifier") -> bool:
        """Treat self as a pattern and compare every component of other."""
        if not self._part_matches(other):
            return False
        return all(_component_matches(getattr(self, n), getattr(other, n)) for n in _COMPONENTS)

    def matches_product(self, other: "PlatformIdentifier") -> bool:
        """Compare part, vendor and product only."""
        return (
            self._part_matches(other)
            and _component_matches(self.vendor, other.vendor)
            and _component_matches(self.product, other.product)
        )

    def with_version(self, version: str) -> "PlatformIdentifier":
        return replace(self, version=version)

    def _part_matches(self, other: "PlatformIdentifier") -> bool:
        return self.part is Part.ANY or other.part is Part.ANY or self.part is other.part

    def __str__(self) -> str:
        return self.to_cpe23()


@dataclass(frozen=True)
class VulnerableSoftwareRule:
    identifier: PlatformIdentifier
    version_start_including: Optional[str] = None
    version_start_excluding: Optional[str] = None
    version_end_including: Optional[str] = None
    version_end_excluding: Optional[str] = None
    vulnerable: bool = True

    @property
    def version(self) -> str:
        return self.identifier.version

    @property
    def has_version_bounds(self) -> bool:
        return any(
            b is not None
            for b in (
                self.version_start_including,
                self.version_start_excluding,
                self.version_end_including,
                self.version_end_excluding,
            )
        )


@dataclass(frozen=True)
class Description:
    lang: str
    value: str


@dataclass(frozen=True)
class Reference:
    url: str
    source: Optional[str] = None
    tags: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class CvssScore:
    version: str  # e.g. "2.0", "3.1", "4.0"
    vector: Optional[str] = None
    base_score: Optional[float] = None
    severity: Optional[Severity] = None
    source: Optional[str] = None
    type: Optional[str] = None  # Primary / Secondary


@dataclass(frozen=True)
class VulnerabilityRecord:
    id: str
    descriptions: tuple[Description, ...] = field(default_factory=tuple)
    scores: tuple[CvssScore, ...] = field(default_factory=tuple)
    references: tuple[Reference, ...] = field(default_factory=tuple)
    rules: tuple[VulnerableSoftwareRule, ...] = field(default_factory=tuple)
    cwes: tuple[str, ...] = field(default_factory=tuple)
    published_at: Optional[datetime] = None
    last_modified_at: Optional[datetime] = None
    ecosystem: Optional[str] = None

    @property
    def description(self) -> Optional[str]:
        for d in self.descriptions:
            if d.lang.lower().startswith("en"):
                return d.value
        return self.descriptions[0].value if self.descriptions else None

    @property
    def cvss_score(self) -> Optional[float]:
        scores = [s.base_score for s in self.scores if s.base_score is not None]
        return max(scores) if scores else None

    @property
    def severity(self) -> Optional[Severity]:
        levels = [s.severity for s in self.scores if s.severity is not None]
        if not levels:
            return None
        return max(levels, key=lambda lvl: lvl.rank)

    def with_updates(self, **kwargs) -> "VulnerabilityRecord":
        return replace(self, **kwargs)


@dataclass(frozen=True)
class CorpusMetadata:
    last_modified: Optional[datetime] = None
    total_record_count: int = 0
    last_full_sync_at: Optional[datetime] = None
    schema_version: int = 0
    last_checked_at: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        return self.total_record_count == 0


@dataclass(frozen=True)
class SyncCheckpoint:
    """Where an interrupted run resumes; committed together with each page."""

    mode: SyncMode
    next_index: int
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    high_water: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "next_index": self.next_index,
            "window_start": self.window_start.isoformat() if self.window_start else None,
            "window_end": self.window_end.isoformat() if self.window_end else None,
            "high_water": self.high_water.isoformat() if self.high_water else None,
        }

    @staticmethod
    def from_dict(data: dict) -> "SyncCheckpoint":
        def _dt(v: object) -> Optional[datetime]:
            return datetime.fromisoformat(v) if isinstance(v, str) and v else None

        return SyncCheckpoint(
            mode=SyncMode(data["mode"]),
            next_index=int(data["next_index"]),
            window_start=_dt(data.get("window_start")),
            window_end=_dt(data.get("window_end")),
            high_water=_dt(data.get("high_water")),
        )


@dataclass(frozen=True)
class CorpusPage:
    records: tuple[VulnerabilityRecord, ...]
    start_index: int
    total_results: int
    timestamp: datetime
    entry_count: int
    removed_ids: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class MatchedVulnerability:
    record: VulnerabilityRecord
    rule: VulnerableSoftwareRule
    confidence: Confidence

    @property
    def id(self) -> str:
        return self.record.id


@dataclass(frozen=True)
class IdentifiedComponent:
    identifier: PlatformIdentifier
    confidence: Confidence
    score: float = 0.0
    evidence: tuple[Evidence, ...] = field(default_factory=tuple)
    vulnerabilities: tuple[MatchedVulnerability, ...] = field(default_factory=tuple)

    def with_updates(self, **kwargs) -> "IdentifiedComponent":
        return replace(self, **kwargs)


@dataclass(frozen=True)
class SuppressedFinding:
    identifier: PlatformIdentifier
    vulnerability: Optional[MatchedVulnerability]
    reason: str


@dataclass(frozen=True)
class AnalysisResult:
    artifact_id: str
    components: tuple[IdentifiedComponent, ...] = field(default_factory=tuple)
    raw_components: tuple[IdentifiedComponent, ...] = field(default_factory=tuple)
    suppressed: tuple[SuppressedFinding, ...] = field(default_factory=tuple)
    error: Optional[str] = None

    @property
    def vulnerabilities(self) -> list[MatchedVulnerability]:
        return [v for c in self.components for v in c.vulnerabilities]


@dataclass(frozen=True)
class SyncReport:
    mode: Optional[SyncMode]
    state: SyncState
    transitions: tuple[SyncState, ...] = field(default_factory=tuple)
    pages: int = 0
    records_merged: int = 0
    records_removed: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[Exception] = field(default=None, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.state in (SyncState.DONE, SyncState.SKIP)

    @property
    def skipped(self) -> bool:
        return self.state is SyncState.SKIP

    def raise_for_failure(self) -> None:
        if self.state is SyncState.FAILED:
            if self.error is not None:
                raise self.error
            raise SyncError("Synchronization failed")

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Iterable, Iterator, Optional

from .enums import Confidence, EvidenceType


def combine(*levels: Confidence) -> Optional[Confidence]:
    """Confidence of a fact derived from several inputs: the weakest input wins.

    Returns None when nothing contributed.
    """
    if not levels:
        return None
    return min(levels)


@dataclass(frozen=True)
class Evidence:
    type: EvidenceType
    source: str
    name: str
    value: str
    confidence: Confidence

    def __post_init__(self) -> None:
        value = str(self.value).strip() if self.value is not None else ""
        if not value:
            raise ValueError("Evidence value must be a non-empty string")
        object.__setattr__(self, "value", value)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.source, self.name, self.value)


class EvidenceView:
    """Restartable view over one evidence type of an artifact.

    Every iteration works on a snapshot, so appends made concurrently by other
    collectors never break an iteration in progress.
    """

    def __init__(self, artifact: "Artifact", evidence_type: EvidenceType) -> None:
        self._artifact = artifact
        self._type = evidence_type

    def __iter__(self) -> Iterator[Evidence]:
        return iter(self._artifact._snapshot(self._type))

    def __len__(self) -> int:
        return len(self._artifact._snapshot(self._type))

    def __bool__(self) -> bool:
        return len(self) > 0

    def values(self) -> list[str]:
        return [e.value for e in self]


class Artifact:
    """A scanned file and the evidence collected about it."""

    def __init__(self, artifact_id: str, path: str | None = None, *, ecosystem: str | None = None) -> None:
        self.id = artifact_id
        self.path = path
        self.ecosystem = ecosystem
        self._lock = Lock()
        # dicts keep insertion order; key is (source, name, value)
        self._evidence: dict[EvidenceType, dict[tuple[str, str, str], Evidence]] = {t: {} for t in EvidenceType}

    @property
    def file_name(self) -> str | None:
        if not self.path:
            return None
        return self.path.replace("\\", "/").rsplit("/", 1)[-1]

    def add_evidence(
        self,
        type: EvidenceType,
        source: str,
        name: str,
        value: str,
        confidence: Confidence,
    ) -> Evidence | None:
        """Append evidence; returns None when an identical (source, name, value) is already present."""
        return self.add(Evidence(type=type, source=source, name=name, value=value, confidence=confidence))

    def add(self, evidence: Evidence) -> Evidence | None:
        with self._lock:
            bucket = self._evidence[evidence.type]
            if evidence.key in bucket:
                return None
            bucket[evidence.key] = evidence
            return evidence

    def add_all(self, items: Iterable[Evidence]) -> int:
        added = 0
        for ev in items:
            if self.add(ev) is not None:
                added += 1
        return added

    def get_evidence(self, type: EvidenceType) -> EvidenceView:
        return EvidenceView(self, type)

    def _snapshot(self, type: EvidenceType) -> tuple[Evidence, ...]:
        with self._lock:
            return tuple(self._evidence[type].values())

    def __repr__(self) -> str:
        return f"Artifact(id={self.id!r}, path={self.path!r})"


class ArtifactSet:
    """Artifacts of one scan, keyed by id; safe for concurrent collectors."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._artifacts: dict[str, Artifact] = {}

    def get_or_create(self, artifact_id: str, path: str | None = None) -> Artifact:
        with self._lock:
            artifact = self._artifacts.get(artifact_id)
            if artifact is None:
                artifact = Artifact(artifact_id, path)
                self._artifacts[artifact_id] = artifact
            return artifact

    def get(self, artifact_id: str) -> Artifact | None:
        with self._lock:
            return self._artifacts.get(artifact_id)

    def add_evidence(
        self,
        artifact_id: str,
        type: EvidenceType,
        source: str,
        name: str,
        value: str,
        confidence: Confidence,
    ) -> Evidence | None:
        return self.get_or_create(artifact_id).add_evidence(type, source, name, value, confidence)

    def __iter__(self) -> Iterator[Artifact]:
        with self._lock:
            return iter(list(self._artifacts.values()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._artifacts)

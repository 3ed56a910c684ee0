from __future__ import annotations

from typing import Iterable, Protocol

from ..domain.evidence import Artifact, Evidence


class EvidenceExtractorPort(Protocol):
    def accepts(self, path: str) -> bool:
        """Return True when this extractor understands the file at path."""
        ...

    def extract(self, artifact: Artifact) -> Iterable[Evidence]:
        """Yield evidence about the artifact."""
        ...

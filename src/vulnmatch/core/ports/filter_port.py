from __future__ import annotations

from typing import Protocol

from ..domain.evidence import Artifact
from ..domain.models import IdentifiedComponent, SuppressedFinding


class ArtifactPreprocessorPort(Protocol):
    def apply(self, artifact: Artifact) -> None:
        """Adjust an artifact's evidence before identification (e.g. hint rules)."""


class FindingFilterPort(Protocol):
    def apply(
        self, component: IdentifiedComponent
    ) -> tuple[IdentifiedComponent | None, list[SuppressedFinding]]:
        """Return the component to keep (None drops it entirely) and what was suppressed."""
        ...

from __future__ import annotations

import logging
from typing import Sequence

from ..domain.evidence import Artifact
from ..ports.extractor_port import EvidenceExtractorPort

logger = logging.getLogger(__name__)


class ExtractorRegistry:
    """Runs every extractor that accepts an artifact's path, in registration order."""

    def __init__(self, extractors: Sequence[EvidenceExtractorPort]) -> None:
        self._extractors = tuple(extractors)
        logger.debug(f"Initialized ExtractorRegistry with {len(self._extractors)} extractors")

    def collect(self, artifact: Artifact) -> int:
        if not artifact.path:
            return 0
        added = 0
        for extractor in self._extractors:
            if not extractor.accepts(artifact.path):
                continue
            name = extractor.__class__.__name__
            count = artifact.add_all(extractor.extract(artifact))
            logger.debug(f"{name} added {count} evidence item(s) to {artifact.id}")
            added += count
        return added

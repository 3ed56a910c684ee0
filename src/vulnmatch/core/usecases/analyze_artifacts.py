from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Optional, Sequence

from ..domain.evidence import Artifact
from ..domain.models import AnalysisResult, IdentifiedComponent, MatchedVulnerability, SuppressedFinding
from ..ports.filter_port import ArtifactPreprocessorPort, FindingFilterPort
from ..services.extractor_registry import ExtractorRegistry
from ..services.identifier_resolver import IdentifierResolver
from ..services.vulnerability_resolver import VulnerabilityResolver

logger = logging.getLogger(__name__)


class AnalyzeArtifactsUseCase:
    def __init__(
        self,
        identifier_resolver: IdentifierResolver,
        vulnerability_resolver: VulnerabilityResolver,
        *,
        extractors: Optional[ExtractorRegistry] = None,
        preprocessors: Sequence[ArtifactPreprocessorPort] = (),
        filters: Sequence[FindingFilterPort] = (),
        max_workers: int = 4,
    ) -> None:
        self._identifiers = identifier_resolver
        self._vulnerabilities = vulnerability_resolver
        self._extractors = extractors
        self._preprocessors = tuple(preprocessors)
        self._filters = tuple(filters)
        self._max_workers = max(1, max_workers)

    def execute(self, artifacts: Iterable[Artifact]) -> list[AnalysisResult]:
        """Analyze artifacts concurrently; results keep the input order."""
        items = list(artifacts)
        logger.info(f"Analyzing {len(items)} artifact(s) with {self._max_workers} worker(s)")
        if len(items) <= 1 or self._max_workers == 1:
            return [self.analyze(a) for a in items]
        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(items)), thread_name_prefix="vulnmatch") as pool:
            return list(pool.map(self.analyze, items))

    def analyze(self, artifact: Artifact) -> AnalysisResult:
        # a failing artifact must not abort the others
        try:
            return self._analyze(artifact)
        except Exception as e:
            logger.exception(f"Analysis of {artifact.id} failed")
            return AnalysisResult(artifact_id=artifact.id, error=f"{type(e).__name__}: {e}")

    def _analyze(self, artifact: Artifact) -> AnalysisResult:
        if self._extractors is not None:
            self._extractors.collect(artifact)
        for pre in self._preprocessors:
            pre.apply(artifact)

        raw = [self._vulnerabilities.annotate(c) for c in self._identifiers.resolve(artifact)]

        components: list[IdentifiedComponent] = []
        suppressed: list[SuppressedFinding] = []
        for component in raw:
            current: Optional[IdentifiedComponent] = component
            for f in self._filters:
                current, removed = f.apply(current)
                suppressed.extend(removed)
                if current is None:
                    break
            if current is not None:
                components.append(current)

        found = sum(len(c.vulnerabilities) for c in components)
        logger.debug(f"{artifact.id}: {len(components)} component(s), {found} vulnerabilities, {len(suppressed)} suppressed")
        return AnalysisResult(
            artifact_id=artifact.id,
            components=tuple(components),
            raw_components=tuple(raw),
            suppressed=tuple(suppressed),
        )


def failing_findings(results: Iterable[AnalysisResult], threshold: float) -> list[MatchedVulnerability]:
    """Vulnerabilities whose CVSS score is at least threshold; 11 and above never fails."""
    if threshold > 10:
        return []
    return [
        v
        for r in results
        for v in r.vulnerabilities
        if v.record.cvss_score is not None and v.record.cvss_score >= threshold
    ]

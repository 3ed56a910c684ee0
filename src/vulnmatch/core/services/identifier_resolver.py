from __future__ import annotations

import logging
from typing import Optional, Sequence

from ..domain.enums import EvidenceType
from ..domain.errors import IndexUnavailableError
from ..domain.evidence import Artifact, Evidence, combine
from ..domain.models import NA, IdentifiedComponent, PlatformIdentifier
from ..ports.index_port import IdentificationIndexPort, IndexCandidate
from ...shared.text import term_set

logger = logging.getLogger(__name__)


def select_version(evidence: Sequence[Evidence]) -> Optional[Evidence]:
    """Highest-confidence VERSION evidence; the first seen wins a tie."""
    best: Optional[Evidence] = None
    for ev in evidence:
        if best is None or ev.confidence > best.confidence:
            best = ev
    return best


class IdentifierResolver:
    """Turns an artifact's vendor/product/version evidence into platform identifiers."""

    def __init__(
        self,
        index: IdentificationIndexPort,
        *,
        max_candidates: int = 10,
        candidate_score_ratio: float = 0.5,
    ) -> None:
        self._index = index
        self._max_candidates = max_candidates
        self._ratio = candidate_score_ratio

    def resolve(self, artifact: Artifact) -> list[IdentifiedComponent]:
        vendor_ev = list(artifact.get_evidence(EvidenceType.VENDOR))
        product_ev = list(artifact.get_evidence(EvidenceType.PRODUCT))
        version_ev = list(artifact.get_evidence(EvidenceType.VERSION))

        if not vendor_ev and not product_ev:
            logger.debug(f"{artifact.id}: no vendor/product evidence, nothing to identify")
            return []

        try:
            candidates = self._index.search(
                [e.value for e in vendor_ev],
                [e.value for e in product_ev],
                limit=self._max_candidates,
            )
        except IndexUnavailableError as e:
            logger.warning(f"{artifact.id}: identification index unavailable: {e}")
            return []

        if not candidates:
            logger.debug(f"{artifact.id}: index returned no candidates")
            return []

        plausible = []
        for cand in candidates:
            contributing = self._contributing(cand, vendor_ev, product_ev)
            if not contributing:
                logger.debug(
                    f"{artifact.id}: rejected {cand.vendor}:{cand.product} (score={cand.score:.3f}), no product overlap"
                )
                continue
            plausible.append((cand, contributing))
        if not plausible:
            return []

        version = select_version(version_ev)
        threshold = plausible[0][0].score * self._ratio
        accepted: list[IdentifiedComponent] = []
        for cand, contributing in plausible:
            if cand.score < threshold:
                continue
            confidence = combine(*[e.confidence for e in contributing])
            if confidence is None:
                continue
            identifier = PlatformIdentifier(
                part=cand.part,
                vendor=cand.vendor,
                product=cand.product,
                version=version.value if version is not None else NA,
            )
            accepted.append(
                IdentifiedComponent(
                    identifier=identifier,
                    confidence=confidence,
                    score=cand.score,
                    evidence=tuple(contributing),
                )
            )

        logger.info(f"{artifact.id}: {len(accepted)} identifier(s) accepted from {len(candidates)} candidate(s)")
        return accepted

    def _contributing(
        self,
        cand: IndexCandidate,
        vendor_ev: Sequence[Evidence],
        product_ev: Sequence[Evidence],
    ) -> list[Evidence]:
        """Evidence that literally overlaps the candidate; empty unless some product evidence does."""
        product_tokens = self._index.product_tokens(cand)
        product_hits = [e for e in product_ev if term_set(e.value) & product_tokens]
        if not product_hits:
            return []
        vendor_tokens = self._index.vendor_tokens(cand)
        return [e for e in vendor_ev if term_set(e.value) & vendor_tokens] + product_hits

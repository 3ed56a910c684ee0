from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence

from ..domain.enums import Part
from .store_port import VulnerabilityStorePort


@dataclass(frozen=True)
class IndexCandidate:
    part: Part
    vendor: str
    product: str
    score: float
    exact_matches: int = 0


class IdentificationIndexPort(Protocol):
    def rebuild(self, store: VulnerabilityStorePort) -> int:
        """Rebuild from the store's current rules and swap in atomically.

        Returns the number of indexed (part, vendor, product) entries.
        """
        ...

    def search(
        self,
        vendor_terms: Sequence[str],
        product_terms: Sequence[str],
        limit: int = 10,
    ) -> Sequence[IndexCandidate]:
        """Return candidates ranked best first.

        Raises IndexUnavailableError when no index has been built.
        """
        ...

    def vendor_tokens(self, candidate: IndexCandidate) -> frozenset[str]:
        """Tokens indexed for the candidate's vendor field."""
        ...

    def product_tokens(self, candidate: IndexCandidate) -> frozenset[str]:
        """Tokens indexed for the candidate's product field."""
        ...

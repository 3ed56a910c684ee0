from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from threading import Lock
from typing import Optional, Sequence

from ..core.domain.enums import Part
from ..core.domain.errors import IndexUnavailableError
from ..core.ports.index_port import IdentificationIndexPort, IndexCandidate
from ..core.ports.store_port import VulnerabilityStorePort
from ..shared.text import compact, term_set, terms_of

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Entry:
    part: Part
    vendor: str
    product: str
    vendor_terms: frozenset[str]
    product_terms: frozenset[str]


@dataclass(frozen=True)
class _Snapshot:
    entries: tuple[_Entry, ...]
    vendor_postings: dict[str, tuple[int, ...]]
    product_postings: dict[str, tuple[int, ...]]
    vendor_idf: dict[str, float]
    product_idf: dict[str, float]


def _postings(entries: Sequence[_Entry], field: str) -> dict[str, tuple[int, ...]]:
    postings: dict[str, list[int]] = {}
    for i, entry in enumerate(entries):
        for term in getattr(entry, field):
            postings.setdefault(term, []).append(i)
    return {term: tuple(ids) for term, ids in postings.items()}


def _idf(postings: dict[str, tuple[int, ...]], n: int) -> dict[str, float]:
    return {term: math.log(1.0 + n / len(ids)) for term, ids in postings.items()}


def _build(products: Sequence[tuple[Part, str, str]]) -> _Snapshot:
    unique = sorted(set(products), key=lambda p: (p[1], p[2], p[0].value))
    entries = tuple(
        _Entry(part, vendor, product, term_set(vendor), term_set(product))
        for part, vendor, product in unique
        if term_set(product)
    )
    vendor_postings = _postings(entries, "vendor_terms")
    product_postings = _postings(entries, "product_terms")
    return _Snapshot(
        entries=entries,
        vendor_postings=vendor_postings,
        product_postings=product_postings,
        vendor_idf=_idf(vendor_postings, len(entries)),
        product_idf=_idf(product_postings, len(entries)),
    )


class InMemoryIdentificationIndex(IdentificationIndexPort):
    """Inverted index over the (part, vendor, product) triples of the stored rules.

    Vendor and product are separate fields. Each field indexes its lower-case
    alphanumeric tokens plus the separator-free compact form, so evidence
    "djangoproject" finds vendor "django_project". A rebuild assembles a new
    snapshot off to the side and swaps it in under a lock; searches always run
    against one complete snapshot.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._snapshot: Optional[_Snapshot] = None

    def rebuild(self, store: VulnerabilityStorePort) -> int:
        snapshot = _build(list(store.iter_products()))
        with self._lock:
            self._snapshot = snapshot
        logger.info(f"Identification index rebuilt with {len(snapshot.entries)} products")
        return len(snapshot.entries)

    def search(
        self,
        vendor_terms: Sequence[str],
        product_terms: Sequence[str],
        limit: int = 10,
    ) -> Sequence[IndexCandidate]:
        with self._lock:
            snapshot = self._snapshot
        if snapshot is None:
            raise IndexUnavailableError("Identification index has not been built")

        vq = terms_of(vendor_terms)
        pq = terms_of(product_terms)
        if not vq and not pq:
            return []

        vendor_hits: dict[int, set[str]] = {}
        product_hits: dict[int, set[str]] = {}
        for term in vq:
            for i in snapshot.vendor_postings.get(term, ()):
                vendor_hits.setdefault(i, set()).add(term)
        for term in pq:
            for i in snapshot.product_postings.get(term, ()):
                product_hits.setdefault(i, set()).add(term)

        vendor_exact = {compact(v) for v in vendor_terms} - {""}
        product_exact = {compact(p) for p in product_terms} - {""}

        scored: list[tuple[float, int, _Entry]] = []
        for i in set(vendor_hits) | set(product_hits):
            entry = snapshot.entries[i]
            score = 0.0
            vh = vendor_hits.get(i)
            if vh:
                score += sum(snapshot.vendor_idf[t] for t in vh) * len(vh) / len(entry.vendor_terms)
            ph = product_hits.get(i)
            if ph:
                score += sum(snapshot.product_idf[t] for t in ph) * len(ph) / len(entry.product_terms)
            exact = int(compact(entry.vendor) in vendor_exact) + int(compact(entry.product) in product_exact)
            scored.append((round(score, 9), exact, entry))

        scored.sort(key=lambda s: (-s[0], -s[1], s[2].vendor, s[2].product, s[2].part.value))
        return [
            IndexCandidate(part=e.part, vendor=e.vendor, product=e.product, score=score, exact_matches=exact)
            for score, exact, e in scored[: max(0, limit)]
        ]

    def vendor_tokens(self, candidate: IndexCandidate) -> frozenset[str]:
        return term_set(candidate.vendor)

    def product_tokens(self, candidate: IndexCandidate) -> frozenset[str]:
        return term_set(candidate.product)

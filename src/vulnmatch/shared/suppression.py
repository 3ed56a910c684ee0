from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Sequence

from ..core.domain.enums import EvidenceType
from ..core.domain.evidence import Artifact, Evidence
from ..core.domain.models import (
    IdentifiedComponent,
    MatchedVulnerability,
    PlatformIdentifier,
    SuppressedFinding,
)
from .filter_utils import evaluate_expression, finding_context

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SuppressionRule:
    """Removes findings from the output.

    A rule with only a CPE pattern drops every identified component the
    pattern matches. Otherwise the rule drops the vulnerabilities for which all
    given criteria hold: the CVE regex matches the record id, the CPE pattern
    matches the identifier and the asteval expression is truthy.
    """

    cve: Optional[str] = None
    cpe: Optional[str] = None
    expression: Optional[str] = None
    notes: str = ""

    def __post_init__(self) -> None:
        if not (self.cve or self.cpe or self.expression):
            raise ValueError("SuppressionRule needs at least one of cve, cpe or expression")
        if self.cve:
            re.compile(self.cve)
        if self.cpe:
            PlatformIdentifier.parse(self.cpe)

    @property
    def reason(self) -> str:
        parts = [f"{k}={v}" for k, v in (("cve", self.cve), ("cpe", self.cpe), ("expression", self.expression)) if v]
        text = ", ".join(parts)
        return f"{text} ({self.notes})" if self.notes else text

    @property
    def component_wide(self) -> bool:
        return bool(self.cpe) and not self.cve and not self.expression

    def _cpe_matches(self, component: IdentifiedComponent) -> bool:
        if not self.cpe:
            return True
        return PlatformIdentifier.parse(self.cpe).matches(component.identifier)

    def matches_component(self, component: IdentifiedComponent) -> bool:
        return self.component_wide and self._cpe_matches(component)

    def matches(self, component: IdentifiedComponent, vuln: MatchedVulnerability) -> bool:
        if self.cve and not re.fullmatch(self.cve, vuln.id, re.IGNORECASE):
            return False
        if not self._cpe_matches(component):
            return False
        if self.expression:
            return evaluate_expression(self.expression, finding_context(component, vuln))
        return True


class SuppressionFilter:
    """Post-filter applied to each identified component."""

    def __init__(self, rules: Sequence[SuppressionRule]) -> None:
        self._rules = tuple(rules)

    def apply(
        self, component: IdentifiedComponent
    ) -> tuple[IdentifiedComponent | None, list[SuppressedFinding]]:
        ident = component.identifier
        for rule in self._rules:
            if rule.matches_component(component):
                logger.debug(f"Suppressed component {ident} by {rule.reason}")
                return None, [SuppressedFinding(identifier=ident, vulnerability=None, reason=rule.reason)]

        kept: list[MatchedVulnerability] = []
        suppressed: list[SuppressedFinding] = []
        for vuln in component.vulnerabilities:
            rule = next((r for r in self._rules if not r.component_wide and r.matches(component, vuln)), None)
            if rule is None:
                kept.append(vuln)
                continue
            logger.debug(f"Suppressed {vuln.id} on {ident} by {rule.reason}")
            suppressed.append(SuppressedFinding(identifier=ident, vulnerability=vuln, reason=rule.reason))
        if not suppressed:
            return component, []
        return component.with_updates(vulnerabilities=tuple(kept)), suppressed


@dataclass(frozen=True)
class HintRule:
    """Adds evidence to artifacts whose existing evidence or file name matches.

    All given conditions are regular expressions matched case-insensitively
    against the whole value; at least one evidence value of the type must match.
    """

    add: tuple[Evidence, ...]
    given_vendor: Optional[str] = None
    given_product: Optional[str] = None
    file_name: Optional[str] = None
    notes: str = field(default="", compare=False)

    def applies(self, artifact: Artifact) -> bool:
        if self.file_name:
            name = artifact.file_name or ""
            if not re.fullmatch(self.file_name, name, re.IGNORECASE):
                return False
        for pattern, ev_type in ((self.given_vendor, EvidenceType.VENDOR), (self.given_product, EvidenceType.PRODUCT)):
            if pattern and not any(
                re.fullmatch(pattern, v, re.IGNORECASE) for v in artifact.get_evidence(ev_type).values()
            ):
                return False
        return True


class HintInjector:
    """Pre-filter adding evidence before identification."""

    def __init__(self, rules: Sequence[HintRule]) -> None:
        self._rules = tuple(rules)

    def apply(self, artifact: Artifact) -> None:
        for rule in self._rules:
            if rule.applies(artifact):
                added = artifact.add_all(rule.add)
                if added:
                    logger.debug(f"Hint added {added} evidence item(s) to {artifact.id}")

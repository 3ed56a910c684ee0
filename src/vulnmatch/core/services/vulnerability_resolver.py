from __future__ import annotations

import logging
from typing import Optional

from ..domain.models import IdentifiedComponent, MatchedVulnerability, VulnerableSoftwareRule
from ..ports.store_port import VulnerabilityStorePort
from .version_matcher import VersionRangeMatcher

logger = logging.getLogger(__name__)


class VulnerabilityResolver:
    def __init__(self, store: VulnerabilityStorePort, matcher: Optional[VersionRangeMatcher] = None) -> None:
        self._store = store
        self._matcher = matcher or VersionRangeMatcher()

    def resolve(self, component: IdentifiedComponent) -> tuple[MatchedVulnerability, ...]:
        """Records whose rules cover the component's identifier and version.

        One entry per record id; the first matching rule in rule order wins.
        """
        ident = component.identifier
        matched: dict[str, VulnerableSoftwareRule] = {}
        for record_id, rule in self._store.find_rules(ident.part, ident.vendor, ident.product):
            if record_id in matched:
                continue
            if not rule.identifier.matches_product(ident):
                continue
            if self._matcher.matches(ident.version, rule):
                matched[record_id] = rule

        if not matched:
            return ()

        records = self._store.get_records(list(matched))
        result = []
        for record_id, rule in matched.items():
            record = records.get(record_id)
            if record is None:
                logger.debug(f"Record {record_id} vanished between rule and record lookup")
                continue
            result.append(MatchedVulnerability(record=record, rule=rule, confidence=component.confidence))
        return tuple(result)

    def annotate(self, component: IdentifiedComponent) -> IdentifiedComponent:
        return component.with_updates(vulnerabilities=self.resolve(component))

from __future__ import annotations

from vulnmatch.core.domain.enums import Confidence, Part
from vulnmatch.core.domain.models import IdentifiedComponent, PlatformIdentifier
from vulnmatch.core.services.vulnerability_resolver import VulnerabilityResolver


def _component(version: str) -> IdentifiedComponent:
    return IdentifiedComponent(
        identifier=PlatformIdentifier(Part.APPLICATION, "apache", "struts", version),
        confidence=Confidence.HIGH,
    )


def test_range_rules_select_matching_records(store, make_record):
    store.commit_page(
        [
            make_record("CVE-2017-5638", ("apache", "struts", "*", {"version_start_including": "2.3.5", "version_end_excluding": "2.3.32"})),
            make_record("CVE-2018-11776", ("apache", "struts", "*", {"version_end_including": "2.3.34"})),
            make_record("CVE-2016-0001", ("apache", "struts", "1.3.10")),
        ],
        [],
        None,
    )
    resolver = VulnerabilityResolver(store)

    assert [v.id for v in resolver.resolve(_component("2.3.31"))] == ["CVE-2017-5638", "CVE-2018-11776"]
    assert [v.id for v in resolver.resolve(_component("2.3.33"))] == ["CVE-2018-11776"]
    assert [v.id for v in resolver.resolve(_component("1.3.10"))] == ["CVE-2016-0001", "CVE-2018-11776"]
    assert resolver.resolve(_component("-")) == ()


def test_one_entry_per_record_even_when_several_rules_match(store, make_record):
    store.commit_page(
        [make_record("CVE-2017-5638", ("apache", "struts", "2.3.31"), ("apache", "struts", "*"))],
        [],
        None,
    )
    vulns = VulnerabilityResolver(store).resolve(_component("2.3.31"))
    assert len(vulns) == 1
    assert vulns[0].rule.identifier.version == "2.3.31"
    assert vulns[0].record.rules[1].identifier.version == "*"


def test_annotate_attaches_vulnerabilities(store, make_record):
    store.commit_page([make_record("CVE-2016-0001", ("apache", "struts", "1.3.10"))], [], None)
    annotated = VulnerabilityResolver(store).annotate(_component("1.3.10"))
    assert [v.id for v in annotated.vulnerabilities] == ["CVE-2016-0001"]
    assert annotated.identifier.version == "1.3.10"

from __future__ import annotations

import pytest

from vulnmatch.core.domain.enums import Confidence, EvidenceType
from vulnmatch.core.domain.evidence import Artifact
from vulnmatch.core.domain.models import NA
from vulnmatch.core.services.identifier_resolver import IdentifierResolver, select_version
from vulnmatch.core.services.vulnerability_resolver import VulnerabilityResolver
from vulnmatch.infra.memory_index import InMemoryIdentificationIndex


@pytest.fixture
def index(store, make_record) -> InMemoryIdentificationIndex:
    store.commit_page(
        [
            make_record("CVE-2007-0404", ("django_project", "django", "0.95")),
            make_record("CVE-2019-0001", ("django_project", "django", "*", {"version_start_including": "1.0", "version_end_excluding": "2.0"})),
            make_record("CVE-2020-0002", ("jazzband", "django-redis", "*")),
            make_record("CVE-2021-0003", ("apache", "struts", "2.3.1")),
        ],
        [],
        None,
    )
    idx = InMemoryIdentificationIndex()
    idx.rebuild(store)
    return idx


def _django_artifact(version: str | None = "0.95") -> Artifact:
    a = Artifact("django-0.95.tar.gz")
    a.add_evidence(EvidenceType.PRODUCT, "file", "name", "django", Confidence.HIGH)
    a.add_evidence(EvidenceType.VENDOR, "setup", "author", "djangoproject", Confidence.MEDIUM)
    if version:
        a.add_evidence(EvidenceType.VERSION, "file", "version", version, Confidence.HIGH)
    return a


def test_django_evidence_resolves_to_one_identifier_and_one_vulnerability(store, index):
    components = IdentifierResolver(index).resolve(_django_artifact())

    assert len(components) == 1
    component = components[0]
    assert (component.identifier.vendor, component.identifier.product) == ("django_project", "django")
    assert component.identifier.version == "0.95"
    assert component.confidence is Confidence.MEDIUM
    assert {e.type for e in component.evidence} == {EvidenceType.VENDOR, EvidenceType.PRODUCT}

    vulns = VulnerabilityResolver(store).resolve(component)
    assert [v.id for v in vulns] == ["CVE-2007-0404"]
    assert vulns[0].confidence is Confidence.MEDIUM


def test_version_only_evidence_identifies_nothing(index):
    a = Artifact("mystery.bin")
    a.add_evidence(EvidenceType.VERSION, "file", "version", "1.2.3", Confidence.HIGH)
    assert IdentifierResolver(index).resolve(a) == []


def test_missing_version_is_not_applicable(index):
    components = IdentifierResolver(index).resolve(_django_artifact(version=None))
    assert components[0].identifier.version == NA


def test_product_only_evidence_keeps_its_confidence(index):
    a = Artifact("struts.jar")
    a.add_evidence(EvidenceType.PRODUCT, "file", "name", "struts", Confidence.HIGH)
    components = IdentifierResolver(index).resolve(a)
    assert [c.identifier.product for c in components] == ["struts"]
    assert components[0].confidence is Confidence.HIGH


def test_unbuilt_index_yields_no_identifiers():
    assert IdentifierResolver(InMemoryIdentificationIndex()).resolve(_django_artifact()) == []


def test_select_version_prefers_confidence_then_first_seen():
    a = Artifact("x")
    a.add_evidence(EvidenceType.VERSION, "a", "v", "1.0", Confidence.MEDIUM)
    a.add_evidence(EvidenceType.VERSION, "b", "v", "1.1", Confidence.HIGH)
    a.add_evidence(EvidenceType.VERSION, "c", "v", "1.2", Confidence.HIGH)
    assert select_version(list(a.get_evidence(EvidenceType.VERSION))).value == "1.1"
    assert select_version([]) is None


@pytest.fixture
def apache_index(store, make_record) -> InMemoryIdentificationIndex:
    store.commit_page(
        [
            make_record("CVE-2017-5638", ("apache", "struts", "*")),
            make_record("CVE-2020-1938", ("apache", "tomcat", "*")),
            make_record("CVE-2021-41773", ("apache", "httpd", "*")),
            make_record("CVE-2021-44228", ("apache", "log4j", "*")),
            make_record("CVE-2019-12384", ("fasterxml", "jackson-databind", "*")),
        ],
        [],
        None,
    )
    idx = InMemoryIdentificationIndex()
    idx.rebuild(store)
    return idx


def test_vendor_overlap_alone_identifies_nothing(apache_index):
    a = Artifact("mylib-1.0.jar")
    a.add_evidence(EvidenceType.PRODUCT, "file", "name", "mylib", Confidence.HIGH)
    a.add_evidence(EvidenceType.VENDOR, "manifest", "vendor", "apache", Confidence.LOW)
    a.add_evidence(EvidenceType.VERSION, "file", "version", "1.0", Confidence.HIGH)
    assert IdentifierResolver(apache_index).resolve(a) == []


def test_bundled_artifact_yields_one_identifier_per_component(apache_index):
    a = Artifact("app-with-dependencies.jar")
    a.add_evidence(EvidenceType.PRODUCT, "pom", "artifactId", "struts", Confidence.HIGH)
    a.add_evidence(EvidenceType.PRODUCT, "pom", "artifactId", "log4j", Confidence.HIGH)
    a.add_evidence(EvidenceType.VENDOR, "pom", "groupId", "apache", Confidence.MEDIUM)

    components = IdentifierResolver(apache_index).resolve(a)

    assert sorted(c.identifier.product for c in components) == ["log4j", "struts"]
    for component in components:
        assert component.identifier.vendor == "apache"
        assert component.confidence is Confidence.MEDIUM
        products = [e.value for e in component.evidence if e.type is EvidenceType.PRODUCT]
        assert products == [component.identifier.product]


def test_non_contributing_evidence_does_not_lower_confidence(index):
    a = _django_artifact()
    a.add_evidence(EvidenceType.VENDOR, "manifest", "vendor", "acme", Confidence.LOW)

    [component] = IdentifierResolver(index).resolve(a)

    assert component.confidence is Confidence.MEDIUM
    assert "acme" not in [e.value for e in component.evidence]

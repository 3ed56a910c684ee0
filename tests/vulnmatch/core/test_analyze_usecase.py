from __future__ import annotations

import pytest

from vulnmatch.core.domain.enums import Confidence, EvidenceType, Severity
from vulnmatch.core.domain.evidence import Artifact, Evidence
from vulnmatch.core.domain.models import CvssScore
from vulnmatch.core.services.extractor_registry import ExtractorRegistry
from vulnmatch.core.services.identifier_resolver import IdentifierResolver
from vulnmatch.core.services.vulnerability_resolver import VulnerabilityResolver
from vulnmatch.core.usecases.analyze_artifacts import AnalyzeArtifactsUseCase, failing_findings
from vulnmatch.infra.file_name_extractor import FileNameExtractor
from vulnmatch.infra.memory_index import InMemoryIdentificationIndex
from vulnmatch.shared.suppression import HintInjector, HintRule, SuppressionFilter, SuppressionRule


@pytest.fixture
def populated(store, make_record):
    def scored(record, score: float):
        return record.with_updates(scores=(CvssScore("3.1", base_score=score, severity=Severity.HIGH),))

    store.commit_page(
        [
            scored(make_record("CVE-2017-5638", ("apache", "struts", "2.3.31")), 10.0),
            scored(make_record("CVE-2016-1000", ("apache", "struts", "2.3.31")), 5.0),
            scored(make_record("CVE-2019-12384", ("fasterxml", "jackson-databind", "2.9.8")), 5.9),
        ],
        [],
        None,
    )
    index = InMemoryIdentificationIndex()
    index.rebuild(store)
    return store, index


def _usecase(populated, **kwargs) -> AnalyzeArtifactsUseCase:
    store, index = populated
    return AnalyzeArtifactsUseCase(IdentifierResolver(index), VulnerabilityResolver(store), **kwargs)


def _struts() -> Artifact:
    a = Artifact("struts")
    a.add_evidence(EvidenceType.VENDOR, "pom", "groupId", "apache", Confidence.HIGH)
    a.add_evidence(EvidenceType.PRODUCT, "pom", "artifactId", "struts", Confidence.HIGH)
    a.add_evidence(EvidenceType.VERSION, "pom", "version", "2.3.31", Confidence.HIGH)
    return a


class _Exploding:
    def apply(self, artifact: Artifact) -> None:
        if artifact.id == "broken":
            raise RuntimeError("boom")


def test_results_keep_input_order_and_isolate_failures(populated):
    uc = _usecase(populated, preprocessors=[_Exploding()], max_workers=4)
    artifacts = [_struts(), Artifact("broken"), Artifact("empty")]

    results = uc.execute(artifacts)

    assert [r.artifact_id for r in results] == ["struts", "broken", "empty"]
    assert sorted(v.id for v in results[0].vulnerabilities) == ["CVE-2016-1000", "CVE-2017-5638"]
    assert results[1].error == "RuntimeError: boom"
    assert results[1].components == ()
    assert results[2].error is None
    assert results[2].components == ()


def test_file_name_extraction_feeds_identification(populated):
    uc = _usecase(populated, extractors=ExtractorRegistry([FileNameExtractor()]))
    [result] = uc.execute([Artifact("lib", "WEB-INF/lib/jackson-databind-2.9.8.jar")])

    assert [v.id for v in result.vulnerabilities] == ["CVE-2019-12384"]
    component = result.components[0]
    assert component.identifier.version == "2.9.8"


def test_suppressed_findings_are_reported_separately(populated):
    suppressions = SuppressionFilter([SuppressionRule(cve=r"CVE-2016-.*", notes="false positive")])
    [result] = _usecase(populated, filters=[suppressions]).execute([_struts()])

    assert [v.id for v in result.vulnerabilities] == ["CVE-2017-5638"]
    assert [s.vulnerability.id for s in result.suppressed] == ["CVE-2016-1000"]
    assert "false positive" in result.suppressed[0].reason
    assert len(result.raw_components[0].vulnerabilities) == 2


def test_component_wide_suppression_drops_identifier(populated):
    suppressions = SuppressionFilter([SuppressionRule(cpe="cpe:2.3:a:apache:struts:*:*:*:*:*:*:*:*")])
    [result] = _usecase(populated, filters=[suppressions]).execute([_struts()])

    assert result.components == ()
    assert result.suppressed[0].vulnerability is None
    assert result.raw_components[0].identifier.product == "struts"


def test_hint_adds_vendor_before_identification(populated):
    hint = HintRule(
        add=(Evidence(EvidenceType.VENDOR, "hint", "vendor", "fasterxml", Confidence.HIGH),),
        given_product=r"jackson-databind",
    )
    a = Artifact("jackson")
    a.add_evidence(EvidenceType.PRODUCT, "file", "name", "jackson-databind", Confidence.HIGH)
    a.add_evidence(EvidenceType.VERSION, "file", "version", "2.9.8", Confidence.MEDIUM)

    [result] = _usecase(populated, preprocessors=[HintInjector([hint])]).execute([a])

    component = result.components[0]
    assert component.identifier.vendor == "fasterxml"
    assert component.confidence is Confidence.HIGH
    assert "fasterxml" in a.get_evidence(EvidenceType.VENDOR).values()


def test_failing_findings_threshold(populated):
    results = _usecase(populated).execute([_struts()])
    assert [v.id for v in failing_findings(results, 7.0)] == ["CVE-2017-5638"]
    assert len(failing_findings(results, 0)) == 2
    assert failing_findings(results, 11) == []

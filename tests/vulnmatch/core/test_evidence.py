from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from vulnmatch.core.domain.enums import Confidence, EvidenceType
from vulnmatch.core.domain.evidence import Artifact, ArtifactSet, Evidence, combine


def test_combine_returns_weakest_level():
    assert combine(Confidence.HIGH, Confidence.MEDIUM, Confidence.HIGHEST) is Confidence.MEDIUM
    assert combine(Confidence.LOW) is Confidence.LOW


def test_combine_without_input_is_none():
    assert combine() is None


def test_add_evidence_rejects_blank_value():
    a = Artifact("a1")
    with pytest.raises(ValueError):
        a.add_evidence(EvidenceType.PRODUCT, "file", "name", "   ", Confidence.HIGH)


def test_identical_tuple_is_deduplicated_but_disagreeing_values_are_kept():
    a = Artifact("a1")
    assert a.add_evidence(EvidenceType.VERSION, "pom", "version", "1.0", Confidence.HIGH) is not None
    assert a.add_evidence(EvidenceType.VERSION, "pom", "version", "1.0", Confidence.LOW) is None
    a.add_evidence(EvidenceType.VERSION, "manifest", "version", "1.1", Confidence.MEDIUM)
    assert a.get_evidence(EvidenceType.VERSION).values() == ["1.0", "1.1"]


def test_values_are_trimmed_the_same_way_on_every_path():
    a = Artifact("a1")
    assert a.add_evidence(EvidenceType.PRODUCT, "pom", "artifactId", " struts ", Confidence.HIGH) is not None
    assert a.add(Evidence(EvidenceType.PRODUCT, "pom", "artifactId", "struts\n", Confidence.HIGH)) is None
    assert a.get_evidence(EvidenceType.PRODUCT).values() == ["struts"]
    with pytest.raises(ValueError):
        Evidence(EvidenceType.VENDOR, "hint", "vendor", "  ", Confidence.LOW)


def test_get_evidence_is_restartable_and_sees_later_appends():
    a = Artifact("a1")
    a.add_evidence(EvidenceType.PRODUCT, "file", "name", "django", Confidence.HIGH)
    view = a.get_evidence(EvidenceType.PRODUCT)
    assert [e.value for e in view] == ["django"]
    assert [e.value for e in view] == ["django"]
    a.add_evidence(EvidenceType.PRODUCT, "pom", "artifactId", "django-core", Confidence.MEDIUM)
    assert [e.value for e in view] == ["django", "django-core"]
    assert len(a.get_evidence(EvidenceType.VENDOR)) == 0


def test_concurrent_appends_are_all_kept():
    artifacts = ArtifactSet()

    def collect(i: int) -> None:
        artifacts.add_evidence("shared", EvidenceType.PRODUCT, f"collector{i % 4}", "name", f"value{i}", Confidence.LOW)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(collect, range(200)))

    assert len(artifacts) == 1
    assert len(artifacts.get("shared").get_evidence(EvidenceType.PRODUCT)) == 200


def test_file_name_strips_directories():
    assert Artifact("x", "lib\\sub/jackson-databind-2.9.8.jar").file_name == "jackson-databind-2.9.8.jar"
    assert Artifact("x").file_name is None

from __future__ import annotations

import pytest

from vulnmatch.core.domain.models import Description, VulnerabilityRecord
from vulnmatch.core.services.ecosystem_mapper import DescriptionEcosystemMapper


@pytest.fixture
def mapper() -> DescriptionEcosystemMapper:
    return DescriptionEcosystemMapper()


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Cross-site scripting in admin/index.php allows remote attackers to inject script.", "php"),
        ("Deserialization flaw in the Java SE component of the JDK.", "java"),
        ("Buffer overflow in parser.c when handling long headers.", "native"),
        ("The Django template engine allows XSS via crafted input.", "python"),
        ("Prototype pollution in the npm package lodash for Node.js.", "js"),
        ("SQL injection in a Ruby on Rails controller.", "ruby"),
    ],
)
def test_ecosystem_from_description(mapper, text, expected):
    assert mapper.ecosystem_for_text(text) == expected


def test_extension_inside_link_is_ignored(mapper):
    assert mapper.ecosystem_for_text("See https://example.org/download.php for details.") is None


def test_html_file_is_not_a_header(mapper):
    assert mapper.score("Problem in index.html") == {}


def test_keyword_must_stand_alone(mapper):
    assert mapper.ecosystem_for_text("java senses nothing here") is None


def test_tie_yields_none(mapper):
    assert mapper.ecosystem_for_text("Affects both python and php bindings.") is None


def test_get_ecosystem_uses_english_description(mapper):
    record = VulnerabilityRecord(
        id="CVE-2024-0001",
        descriptions=(Description("es", "Fallo en java"), Description("en", "Flaw in upload.php")),
    )
    assert mapper.get_ecosystem(record) == "php"

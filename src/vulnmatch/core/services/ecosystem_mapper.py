from __future__ import annotations

import re
from typing import Optional

from ..domain.models import VulnerabilityRecord


# ecosystem -> (file extensions, keywords)
_ECOSYSTEM_HINTS: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "java": (("java", "jsp", "jar", "class"), ("java se", "java ee", "jdk", "jre", "jvm", "servlet")),
    "native": (("c", "cpp", "cc", "cxx", "h", "hpp"), ("c++", "libc", "glibc")),
    "php": (("php",), ("php", "wordpress", "drupal", "joomla")),
    "python": (("py",), ("python", "django", "pypi")),
    "ruby": (("rb",), ("ruby", "rubygems", "ruby on rails")),
    "dotnet": (("cs", "aspx", "cshtml"), (".net", "asp.net", "nuget")),
    "js": (("js", "ts"), ("node.js", "nodejs", "npm", "javascript")),
    "golang": (("go",), ("golang",)),
}

_LINK_RE = re.compile(r"(?:https?|ftp)://\S+|www\.\S+", re.IGNORECASE)


def _extension_pattern(ext: str) -> re.Pattern[str]:
    # "index.html" must not count as ".h"
    return re.compile(r"(?<=\w)\." + re.escape(ext) + r"(?![\w])", re.IGNORECASE)


def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    # "java senses" must not count as "java se"
    return re.compile(r"(?<![\w.])" + re.escape(keyword) + r"(?![\w+])", re.IGNORECASE)


_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    eco: tuple(_extension_pattern(e) for e in exts) + tuple(_keyword_pattern(k) for k in keywords)
    for eco, (exts, keywords) in _ECOSYSTEM_HINTS.items()
}


class DescriptionEcosystemMapper:
    """Guesses a record's ecosystem from keywords and file extensions in its description.

    Hits inside links are ignored. A tie between the top ecosystems yields None.
    """

    def score(self, text: str) -> dict[str, int]:
        cleaned = _LINK_RE.sub(" ", text or "")
        scores: dict[str, int] = {}
        for eco, patterns in _PATTERNS.items():
            hits = sum(len(p.findall(cleaned)) for p in patterns)
            if hits:
                scores[eco] = hits
        return scores

    def ecosystem_for_text(self, text: str) -> Optional[str]:
        scores = self.score(text)
        if not scores:
            return None
        ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)
        if len(ranked) > 1 and ranked[0][1] == ranked[1][1]:
            return None
        return ranked[0][0]

    def get_ecosystem(self, record: VulnerabilityRecord) -> Optional[str]:
        return self.ecosystem_for_text(record.description or "")

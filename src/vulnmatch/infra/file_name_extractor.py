from __future__ import annotations

import re
from typing import Iterable

from ..core.domain.enums import Confidence, EvidenceType
from ..core.domain.evidence import Artifact, Evidence


SOURCE = "file"

_EXTENSIONS = (
    ".tar.gz",
    ".tar.bz2",
    ".tgz",
    ".jar",
    ".war",
    ".ear",
    ".zip",
    ".whl",
    ".egg",
    ".gem",
    ".nupkg",
    ".dll",
    ".exe",
    ".so",
    ".js",
)

_NAME_VERSION_RE = re.compile(
    r"^(?P<name>[A-Za-z][\w.+-]*?)[-_]"
    r"(?P<version>\d+(?:\.\d+)*(?:[.-]?(?:alpha|beta|rc|cr|m|milestone|snapshot|final|release|ga|sp)[.-]?\d*)?)"
    r"(?:[-_.].*)?$",
    re.IGNORECASE,
)


def strip_extension(file_name: str) -> str:
    lower = file_name.lower()
    for ext in _EXTENSIONS:
        if lower.endswith(ext):
            return file_name[: -len(ext)]
    return file_name


def split_name_version(file_name: str) -> tuple[str, str | None]:
    """'jackson-databind-2.5.3.jar' -> ('jackson-databind', '2.5.3')."""
    stem = strip_extension(file_name)
    m = _NAME_VERSION_RE.match(stem)
    if not m:
        return stem, None
    return m.group("name"), m.group("version")


class FileNameExtractor:
    """Evidence from a packaged artifact's file name.

    The name becomes product evidence and weak vendor evidence; a trailing
    version becomes version evidence.
    """

    def accepts(self, path: str) -> bool:
        name = path.replace("\\", "/").rsplit("/", 1)[-1]
        return name.lower().endswith(_EXTENSIONS)

    def extract(self, artifact: Artifact) -> Iterable[Evidence]:
        file_name = artifact.file_name
        if not file_name:
            return
        name, version = split_name_version(file_name)
        if not name.strip():
            return
        yield Evidence(EvidenceType.PRODUCT, SOURCE, "name", name, Confidence.HIGH)
        yield Evidence(EvidenceType.VENDOR, SOURCE, "name", name, Confidence.LOW)
        if version:
            yield Evidence(EvidenceType.VERSION, SOURCE, "version", version, Confidence.MEDIUM)

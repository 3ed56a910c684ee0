"""tests/vulnmatch/conftest.py

Common fixtures for the entire test suite.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from threading import Event
from typing import Callable

import httpx
import pytest
from typer.testing import CliRunner

from vulnmatch.core.domain.enums import Part
from vulnmatch.core.domain.models import PlatformIdentifier, VulnerabilityRecord, VulnerableSoftwareRule
from vulnmatch.infra.sql_store import SqlVulnerabilityStore


T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock; sleeping advances time instead of blocking."""

    def __init__(self, start: datetime = T0) -> None:
        self.current = start
        self.sleeps: list[float] = []
        # set to cancel a run while it sleeps
        self.cancel_on_sleep: Event | None = None

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)

    def sleep(self, seconds: float, cancel: Event | None = None) -> bool:
        self.sleeps.append(seconds)
        self.current += timedelta(seconds=seconds)
        if self.cancel_on_sleep is not None:
            self.cancel_on_sleep.set()
        return not (cancel is not None and cancel.is_set())


def cve_item(
    cve_id: str,
    cpes: list[dict] | None = None,
    *,
    description: str = "A vulnerability.",
    last_modified: str = "2024-02-01T00:00:00.000",
    status: str = "Analyzed",
    base_score: float | None = 7.5,
) -> dict:
    """One entry of the NVD CVE API 2.0 `vulnerabilities` array."""
    matches = []
    for c in cpes or []:
        m = {"vulnerable": c.get("vulnerable", True), "criteria": c["criteria"], "matchCriteriaId": "X"}
        for key in ("versionStartIncluding", "versionStartExcluding", "versionEndIncluding", "versionEndExcluding"):
            if key in c:
                m[key] = c[key]
        matches.append(m)
    cve = {
        "id": cve_id,
        "sourceIdentifier": "cve@mitre.org",
        "published": "2024-01-01T00:00:00.000",
        "lastModified": last_modified,
        "vulnStatus": status,
        "descriptions": [{"lang": "en", "value": description}],
        "metrics": {},
        "weaknesses": [{"source": "nvd", "type": "Primary", "description": [{"lang": "en", "value": "CWE-79"}]}],
        "configurations": [{"nodes": [{"operator": "OR", "negate": False, "cpeMatch": matches}]}] if matches else [],
        "references": [{"url": f"https://example.org/{cve_id}", "source": "example", "tags": ["Vendor Advisory"]}],
    }
    if base_score is not None:
        cve["metrics"] = {
            "cvssMetricV31": [
                {
                    "source": "nvd@nist.gov",
                    "type": "Primary",
                    "cvssData": {
                        "version": "3.1",
                        "vectorString": "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:N/A:N",
                        "baseScore": base_score,
                        "baseSeverity": "HIGH" if base_score >= 7 else "MEDIUM",
                    },
                }
            ]
        }
    return {"cve": cve}


class FakeNvd:
    """In-memory NVD CVE API 2.0 served through httpx.MockTransport.

    `corpus` is served to full requests, `delta` to requests carrying
    lastModStartDate. `failures` maps a 0-based request number to either an
    HTTP status code or an exception instance raised by the transport.
    """

    endpoint = "https://nvd.test/rest/json/cves/2.0"

    def __init__(self) -> None:
        self.corpus: list[dict] = []
        self.delta: list[dict] = []
        self.timestamp = "2024-03-01T12:00:00.000"
        self.failures: dict[int, object] = {}
        self.requests: list[httpx.Request] = []
        self.on_request: Callable[[int], None] | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        n = len(self.requests)
        self.requests.append(request)
        if self.on_request is not None:
            self.on_request(n)
        failure = self.failures.get(n)
        if isinstance(failure, Exception):
            raise failure
        if isinstance(failure, int):
            return httpx.Response(failure, text="failure", headers={"Retry-After": "1"})
        if isinstance(failure, bytes):
            return httpx.Response(200, content=failure)

        params = request.url.params
        start = int(params.get("startIndex", "0"))
        size = int(params.get("resultsPerPage", "2000"))
        items = self.delta if "lastModStartDate" in params else self.corpus
        body = {
            "resultsPerPage": size,
            "startIndex": start,
            "totalResults": len(items),
            "format": "NVD_CVE",
            "version": "2.0",
            "timestamp": self.timestamp,
            "vulnerabilities": items[start:start + size],
        }
        return httpx.Response(200, content=json.dumps(body).encode("utf-8"), headers={"Content-Type": "application/json"})

    def params(self, i: int = -1) -> httpx.QueryParams:
        return self.requests[i].url.params


@pytest.fixture(scope="session")
def runner() -> CliRunner:
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture(autouse=True)
def tmp_dirs(tmp_path: Path, monkeypatch):
    """Points data and cache directories at a temporary location for test isolation."""
    cache_dir = tmp_path / "cache"
    data_dir = tmp_path / "data"
    cache_dir.mkdir()
    data_dir.mkdir()

    for var in ("VULNMATCH_NVD_API_KEY", "VULNMATCH_DATABASE_URL", "VULNMATCH_BEARER_TOKEN"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("VULNMATCH_DATA_DIR", str(data_dir))
    monkeypatch.setenv("VULNMATCH_CACHE_DIR", str(cache_dir))

    yield cache_dir, data_dir


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_nvd(monkeypatch) -> FakeNvd:
    """Replaces httpx.Client with one that talks to a FakeNvd through MockTransport."""
    nvd = FakeNvd()
    original_client = httpx.Client

    def patched_client(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(nvd.handler)
        return original_client(*args, **kwargs)

    monkeypatch.setattr(httpx, "Client", patched_client)
    return nvd


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock):
    s = SqlVulnerabilityStore(f"sqlite:///{tmp_path / 'store.db'}", clock=clock)
    s.open()
    yield s
    s.close()


@pytest.fixture
def make_record() -> Callable[..., VulnerabilityRecord]:
    """Builds a record from (vendor, product, version, bounds) rule specs."""

    def _make(record_id: str, *rules: tuple, last_modified: datetime | None = None) -> VulnerabilityRecord:
        built = []
        for spec in rules:
            vendor, product = spec[0], spec[1]
            version = spec[2] if len(spec) > 2 else "*"
            bounds = spec[3] if len(spec) > 3 else {}
            built.append(
                VulnerableSoftwareRule(
                    identifier=PlatformIdentifier(Part.APPLICATION, vendor, product, version),
                    **bounds,
                )
            )
        return VulnerabilityRecord(id=record_id, rules=tuple(built), last_modified_at=last_modified)

    return _make


@pytest.fixture
def nvd_item() -> Callable[..., dict]:
    return cve_item

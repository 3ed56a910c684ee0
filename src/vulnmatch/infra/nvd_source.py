from __future__ import annotations

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

import httpx
from pydantic import ValidationError

from ..core.domain.errors import RemoteRequestError, RemoteSchemaError, TransientRemoteError
from ..core.domain.models import (
    CorpusPage,
    CvssScore,
    Description,
    PlatformIdentifier,
    Reference,
    VulnerabilityRecord,
    VulnerableSoftwareRule,
)
from ..core.ports.source_port import CorpusSourcePort
from ..core.services.ecosystem_mapper import DescriptionEcosystemMapper
from ..shared.severity import derive_severity
from .http_client import HttpClient
from .schemas import NvdCve, NvdCveResponse, NvdMetrics

logger = logging.getLogger(__name__)


REJECTED_STATUSES = frozenset({"rejected"})
MAX_RESULTS_PER_PAGE = 2000


def parse_nvd_datetime(value: Optional[str]) -> Optional[datetime]:
    """NVD timestamps carry no offset ("2024-01-02T03:04:05.678"); they are UTC."""
    if not value:
        return None
    dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_nvd_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds")


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def _scores(metrics: NvdMetrics) -> tuple[CvssScore, ...]:
    out: list[CvssScore] = []
    for default_version, entries in (
        ("4.0", metrics.cvss_v40),
        ("3.1", metrics.cvss_v31),
        ("3.0", metrics.cvss_v30),
        ("2.0", metrics.cvss_v2),
    ):
        for m in entries:
            data = m.cvss_data
            version = data.version or default_version
            out.append(
                CvssScore(
                    version=version,
                    vector=data.vector_string,
                    base_score=data.base_score,
                    severity=derive_severity(
                        version,
                        label=data.base_severity or m.base_severity,
                        base_score=data.base_score,
                        vector=data.vector_string,
                    ),
                    source=m.source,
                    type=m.type,
                )
            )
    return tuple(out)


def _rules(cve: NvdCve) -> tuple[VulnerableSoftwareRule, ...]:
    rules: list[VulnerableSoftwareRule] = []
    for conf in cve.configurations:
        for node in conf.nodes:
            for m in node.cpe_match:
                try:
                    identifier = PlatformIdentifier.parse(m.criteria)
                except ValueError as e:
                    logger.debug(f"{cve.id}: skipping unparseable criteria {m.criteria!r}: {e}")
                    continue
                rules.append(
                    VulnerableSoftwareRule(
                        identifier=identifier,
                        version_start_including=m.version_start_including,
                        version_start_excluding=m.version_start_excluding,
                        version_end_including=m.version_end_including,
                        version_end_excluding=m.version_end_excluding,
                        vulnerable=m.vulnerable and not node.negate,
                    )
                )
    return tuple(rules)


def _to_domain(cve: NvdCve, mapper: Optional[DescriptionEcosystemMapper]) -> VulnerabilityRecord:
    cwes = tuple(
        d.value
        for w in cve.weaknesses
        for d in w.description
        if d.value.upper().startswith("CWE-")
    )
    record = VulnerabilityRecord(
        id=cve.id,
        descriptions=tuple(Description(lang=d.lang, value=d.value) for d in cve.descriptions),
        scores=_scores(cve.metrics),
        references=tuple(Reference(url=r.url, source=r.source, tags=tuple(r.tags)) for r in cve.references),
        rules=_rules(cve),
        cwes=tuple(dict.fromkeys(cwes)),
        published_at=parse_nvd_datetime(cve.published),
        last_modified_at=parse_nvd_datetime(cve.last_modified),
    )
    if mapper is not None:
        record = record.with_updates(ecosystem=mapper.get_ecosystem(record))
    return record


class NvdApiSource(CorpusSourcePort):
    """Pages through the NVD CVE API 2.0 and maps entries onto domain records.

    Failures are classified for the synchronizer: 5xx, 429, timeouts, transport
    errors and undecodable bodies raise TransientRemoteError; any other 4xx
    raises RemoteRequestError; a body that decodes but does not have the
    expected shape raises RemoteSchemaError.
    """

    def __init__(
        self,
        http_client: HttpClient,
        endpoint: str,
        *,
        results_per_page: int = MAX_RESULTS_PER_PAGE,
        ecosystem_mapper: Optional[DescriptionEcosystemMapper] = None,
    ) -> None:
        if not 1 <= results_per_page <= MAX_RESULTS_PER_PAGE:
            raise ValueError(f"results_per_page must be within 1..{MAX_RESULTS_PER_PAGE}")
        self._http = http_client
        self._endpoint = endpoint
        self._rpp = results_per_page
        self._mapper = ecosystem_mapper

    @property
    def results_per_page(self) -> int:
        return self._rpp

    def fetch_page(
        self,
        start_index: int,
        *,
        last_modified_start: datetime | None = None,
        last_modified_end: datetime | None = None,
    ) -> CorpusPage:
        params: dict[str, str | int] = {"startIndex": start_index, "resultsPerPage": self._rpp}
        if last_modified_start is not None and last_modified_end is not None:
            params["lastModStartDate"] = format_nvd_datetime(last_modified_start)
            params["lastModEndDate"] = format_nvd_datetime(last_modified_end)

        logger.debug(f"GET {self._endpoint} {params}")
        try:
            resp = self._http.get(self._endpoint, params)
        except httpx.TimeoutException as e:
            raise TransientRemoteError(f"Timed out fetching page at {start_index}") from e
        except httpx.TransportError as e:
            raise TransientRemoteError(f"Transport error fetching page at {start_index}: {e}") from e
        except httpx.DecodingError as e:
            raise TransientRemoteError(f"Undecodable content encoding for page at {start_index}: {e}") from e
        except httpx.TooManyRedirects as e:
            raise RemoteRequestError(f"Redirect loop fetching page at {start_index}: {e}") from e
        except httpx.RequestError as e:
            raise TransientRemoteError(f"Request failed for page at {start_index}: {e}") from e

        status = resp.status_code
        if status == 429 or status >= 500:
            raise TransientRemoteError(
                f"HTTP {status} fetching page at {start_index}",
                status_code=status,
                retry_after=_parse_retry_after(resp.headers.get("Retry-After")),
            )
        if status >= 400:
            message = resp.headers.get("message") or resp.reason_phrase
            raise RemoteRequestError(f"HTTP {status} fetching page at {start_index}: {message}", status_code=status)

        try:
            data = resp.json()
        except ValueError as e:
            raise TransientRemoteError(f"Undecodable body for page at {start_index}") from e

        try:
            page = NvdCveResponse.model_validate(data)
            timestamp = parse_nvd_datetime(page.timestamp)
        except (ValidationError, ValueError) as e:
            raise RemoteSchemaError(f"Unexpected payload for page at {start_index}: {e}") from e
        if timestamp is None:
            raise RemoteSchemaError(f"Page at {start_index} has no timestamp")

        records: list[VulnerabilityRecord] = []
        removed: list[str] = []
        for item in page.vulnerabilities:
            cve = item.cve
            if (cve.vuln_status or "").strip().lower() in REJECTED_STATUSES:
                removed.append(cve.id)
                continue
            record = _to_domain(cve, self._mapper)
            if not record.rules:
                removed.append(cve.id)
                continue
            records.append(record)

        logger.info(
            f"Fetched page at {page.start_index}: {len(page.vulnerabilities)} entries "
            f"({len(records)} usable, {len(removed)} removed) of {page.total_results}"
        )
        return CorpusPage(
            records=tuple(records),
            start_index=page.start_index,
            total_results=page.total_results,
            timestamp=timestamp,
            entry_count=len(page.vulnerabilities),
            removed_ids=tuple(removed),
        )

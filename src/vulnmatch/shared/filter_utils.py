from __future__ import annotations

from typing import Any, Optional, TYPE_CHECKING

from asteval import Interpreter

if TYPE_CHECKING:
    from ..core.domain.models import IdentifiedComponent, MatchedVulnerability


def finding_context(component: IdentifiedComponent, vuln: Optional[MatchedVulnerability] = None) -> dict[str, Any]:
    """Variables visible to a suppression expression.

    - cve_id: str | None - Vulnerability identifier
    - vendor, product, version: str - Identifier components
    - cpe: str - Identifier as a CPE 2.3 string
    - confidence: str - Identifier confidence (LOW, MEDIUM, HIGH, HIGHEST)
    - cvss_score: float | None - Strongest base score of the vulnerability
    - severity: str | None - Strongest severity (CRITICAL, HIGH, MEDIUM, LOW, NONE)
    - ecosystem: str | None - Ecosystem guessed from the description
    - cwes: list[str] - Weakness identifiers
    - published_at: datetime | None
    """
    ident = component.identifier
    record = vuln.record if vuln is not None else None
    return {
        "cve_id": record.id if record else None,
        "vendor": ident.vendor,
        "product": ident.product,
        "version": ident.version,
        "cpe": ident.to_cpe23(),
        "confidence": component.confidence.name,
        "cvss_score": record.cvss_score if record else None,
        "severity": record.severity.name if record and record.severity else None,
        "ecosystem": record.ecosystem if record else None,
        "cwes": list(record.cwes) if record else [],
        "published_at": record.published_at if record else None,
    }


def evaluate_expression(expr: str, ctx: dict[str, Any], aeval: Optional[Interpreter] = None) -> bool:
    """Evaluate an asteval expression against ctx; evaluation errors raise ValueError."""
    aeval = aeval or Interpreter()
    for key, value in ctx.items():
        aeval.symtable[key] = value

    result = aeval(expr, show_errors=False)
    if aeval.error:
        error_msg = aeval.error[0].get_error()
        raise ValueError(f"Filter evaluation error: {error_msg}")
    return bool(result)

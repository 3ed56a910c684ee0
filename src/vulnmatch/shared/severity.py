from __future__ import annotations

import logging
from typing import Optional

from cvss import CVSS2, CVSS3

from ..core.domain.enums import Severity

logger = logging.getLogger(__name__)


def map_score_to_severity(score: float) -> Optional[Severity]:
	if score >= 9.0:
		return Severity.CRITICAL
	if score >= 7.0:
		return Severity.HIGH
	if score >= 4.0:
		return Severity.MEDIUM
	if score > 0.0:
		return Severity.LOW
	if score == 0.0:
		return Severity.NONE
	return None


def map_v2_score_to_severity(score: float) -> Optional[Severity]:
	"""CVSS v2 has no CRITICAL band."""
	if score >= 7.0:
		return Severity.HIGH
	if score >= 4.0:
		return Severity.MEDIUM
	if score >= 0.0:
		return Severity.LOW
	return None


def base_score_from_vector(vector: str) -> Optional[float]:
	"""Compute a base score with the cvss library.

	Accepts CVSS v3 vectors ("CVSS:3.1/AV:N/...") and bare CVSS v2 vectors
	("AV:N/AC:L/Au:N/..."). Returns None for anything else (including v4).
	"""
	s = vector.strip()
	try:
		if s.upper().startswith("CVSS:3"):
			return float(CVSS3(s).scores()[0])
		if s.upper().startswith("AV:"):
			return float(CVSS2(s).scores()[0])
	except Exception as e:
		logger.debug("Unable to score CVSS vector %s: %s", s, e)
	return None


def derive_severity(
	version: str,
	*,
	label: Optional[str] = None,
	base_score: Optional[float] = None,
	vector: Optional[str] = None,
) -> Optional[Severity]:
	"""Pick a severity for one score entry.

	Prefers an explicit label, then the base score, then a score computed from
	the vector.
	"""
	if label:
		lvl = Severity.from_str(label)
		if lvl is not None:
			return lvl
	score = base_score
	if score is None and vector:
		score = base_score_from_vector(vector)
	if score is None:
		return None
	if version.startswith("2"):
		return map_v2_score_to_severity(score)
	return map_score_to_severity(score)

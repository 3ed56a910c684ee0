from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _NvdModel(BaseModel):
	model_config = ConfigDict(populate_by_name=True, extra="ignore")


class NvdLangString(_NvdModel):
	"""Localized text (descriptions, weakness names)"""
	lang: str = "en"
	value: str


class NvdCvssData(_NvdModel):
	"""Common subset of cvssData across CVSS v2, v3.x and v4"""
	version: Optional[str] = None
	vector_string: Optional[str] = Field(None, alias="vectorString")
	base_score: Optional[float] = Field(None, alias="baseScore")
	base_severity: Optional[str] = Field(None, alias="baseSeverity")


class NvdCvssMetric(_NvdModel):
	source: Optional[str] = None
	type: Optional[str] = None
	cvss_data: NvdCvssData = Field(alias="cvssData")
	# v2 carries the severity label on the metric, not in cvssData
	base_severity: Optional[str] = Field(None, alias="baseSeverity")


class NvdMetrics(_NvdModel):
	cvss_v40: list[NvdCvssMetric] = Field(default_factory=list, alias="cvssMetricV40")
	cvss_v31: list[NvdCvssMetric] = Field(default_factory=list, alias="cvssMetricV31")
	cvss_v30: list[NvdCvssMetric] = Field(default_factory=list, alias="cvssMetricV30")
	cvss_v2: list[NvdCvssMetric] = Field(default_factory=list, alias="cvssMetricV2")


class NvdWeakness(_NvdModel):
	source: Optional[str] = None
	type: Optional[str] = None
	description: list[NvdLangString] = Field(default_factory=list)


class NvdReference(_NvdModel):
	url: str
	source: Optional[str] = None
	tags: list[str] = Field(default_factory=list)


class NvdCpeMatch(_NvdModel):
	"""One applicability rule: a CPE pattern plus optional version bounds"""
	vulnerable: bool = True
	criteria: str
	match_criteria_id: Optional[str] = Field(None, alias="matchCriteriaId")
	version_start_including: Optional[str] = Field(None, alias="versionStartIncluding")
	version_start_excluding: Optional[str] = Field(None, alias="versionStartExcluding")
	version_end_including: Optional[str] = Field(None, alias="versionEndIncluding")
	version_end_excluding: Optional[str] = Field(None, alias="versionEndExcluding")


class NvdNode(_NvdModel):
	operator: Optional[str] = None
	negate: bool = False
	cpe_match: list[NvdCpeMatch] = Field(default_factory=list, alias="cpeMatch")


class NvdConfiguration(_NvdModel):
	operator: Optional[str] = None
	negate: bool = False
	nodes: list[NvdNode] = Field(default_factory=list)


class NvdCve(_NvdModel):
	id: str
	source_identifier: Optional[str] = Field(None, alias="sourceIdentifier")
	published: Optional[str] = None
	last_modified: Optional[str] = Field(None, alias="lastModified")
	vuln_status: Optional[str] = Field(None, alias="vulnStatus")
	descriptions: list[NvdLangString] = Field(default_factory=list)
	metrics: NvdMetrics = Field(default_factory=NvdMetrics)
	weaknesses: list[NvdWeakness] = Field(default_factory=list)
	configurations: list[NvdConfiguration] = Field(default_factory=list)
	references: list[NvdReference] = Field(default_factory=list)


class NvdVulnerabilityItem(_NvdModel):
	cve: NvdCve


class NvdCveResponse(_NvdModel):
	"""Top-level page of the NVD CVE API 2.0"""
	results_per_page: int = Field(alias="resultsPerPage")
	start_index: int = Field(alias="startIndex")
	total_results: int = Field(alias="totalResults")
	format: Optional[str] = None
	version: Optional[str] = None
	timestamp: str
	vulnerabilities: list[NvdVulnerabilityItem] = Field(default_factory=list)

from __future__ import annotations

import os

from platformdirs import user_data_dir


NVD_CVE_API_URL = "https://services.nvd.nist.gov/rest/json/cves/2.0"


def get_default_data_dir() -> str:
	return user_data_dir("vulnmatch")


def get_default_database_url(data_dir: str | None = None) -> str:
	path = os.path.join(data_dir or get_default_data_dir(), "vulnmatch.db")
	return f"sqlite:///{path}"

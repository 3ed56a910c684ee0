from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .urls import NVD_CVE_API_URL, get_default_data_dir, get_default_database_url


class AppConfig(BaseSettings):
    """Application configuration with automatic environment variable loading.

    All settings can be overridden via environment variables with the VULNMATCH_ prefix.
    For example:
        - VULNMATCH_NVD_API_KEY=xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx
        - VULNMATCH_DATABASE_URL=postgresql+psycopg://user:pw@host/vulnmatch
        - VULNMATCH_VALID_FOR_HOURS=4

    Alternatively, settings can be provided programmatically when creating the Container:
        container = Container()
        container.app_config.override(AppConfig(nvd_api_key="..."))

    Invalid values raise pydantic.ValidationError at construction, before any
    network or store access.
    """

    model_config = SettingsConfigDict(
        env_prefix="VULNMATCH_",
        case_sensitive=False,
        extra="forbid",
        frozen=True,
    )

    # persistence

    database_url: Optional[str] = Field(
        default=None,
        description="SQLAlchemy URL of the vulnerability store. If None, a SQLite file under data_dir",
    )

    data_dir: Optional[Path] = Field(
        default=None,
        description="Data directory. If None, uses platformdirs.user_data_dir('vulnmatch')",
    )

    cache_dir: Optional[Path] = Field(
        default=None,
        description="Directory of the shared rate-limit state. If None, uses platformdirs.user_cache_dir('vulnmatch')",
    )

    # remote corpus

    nvd_api_endpoint: str = Field(default=NVD_CVE_API_URL, min_length=1)

    nvd_api_key: Optional[str] = Field(
        default=None,
        description="NVD API key, sent as the apiKey header (raises the rate limit from 5 to 50 requests per 30s)",
    )

    bearer_token: Optional[str] = Field(default=None, description="Bearer token for a mirror of the API")

    basic_user: Optional[str] = Field(default=None, description="HTTP basic auth user for a mirror of the API")

    basic_password: Optional[str] = Field(default=None)

    results_per_page: int = Field(default=2000, ge=1, le=2000)

    api_delay_seconds: float = Field(default=0.0, ge=0, description="Pause between page requests")

    max_retry_count: int = Field(default=10, ge=1, description="Attempts per page before giving up")

    backoff_base_seconds: float = Field(default=2.0, ge=0)

    backoff_max_seconds: float = Field(default=120.0, ge=0)

    request_timeout_seconds: float = Field(default=60.0, gt=0)

    rate_limit_requests: Optional[int] = Field(
        default=None,
        ge=1,
        description="Requests per window. If None, 50 with an API key and 5 without",
    )

    rate_limit_window_seconds: float = Field(default=30.0, gt=0)

    # synchronization

    valid_for_hours: float = Field(default=2.0, ge=0, description="Skip synchronization when checked this recently")

    max_incremental_days: int = Field(default=120, ge=1, le=120)

    sync_lock_stale_minutes: float = Field(default=60.0, gt=0)

    auto_update: bool = Field(default=True, description="Synchronize before analysis")

    # matching

    max_candidates: int = Field(default=10, ge=1)

    candidate_score_ratio: float = Field(default=0.5, gt=0, le=1)

    analysis_threads: int = Field(default=4, ge=1)

    fail_on_cvss: float = Field(
        default=11.0,
        ge=0,
        le=11,
        description="CLI check fails when a finding scores at least this; 11 never fails",
    )

    @model_validator(mode="after")
    def _check_basic_auth(self) -> "AppConfig":
        if bool(self.basic_user) != bool(self.basic_password):
            raise ValueError("basic_user and basic_password must be given together")
        return self

    @property
    def resolved_data_dir(self) -> Path:
        return self.data_dir or Path(get_default_data_dir())

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return get_default_database_url(str(self.resolved_data_dir))

    @property
    def resolved_rate_limit(self) -> int:
        if self.rate_limit_requests is not None:
            return self.rate_limit_requests
        return 50 if self.nvd_api_key else 5

    @property
    def basic_auth(self) -> Optional[tuple[str, str]]:
        if self.basic_user and self.basic_password:
            return (self.basic_user, self.basic_password)
        return None

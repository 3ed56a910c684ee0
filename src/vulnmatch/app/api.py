from __future__ import annotations

import logging
from pathlib import Path
from threading import Event
from typing import Any, Iterable, Optional, Sequence

from pydantic import ValidationError

from .container import Container
from ..config.settings import AppConfig
from ..core.domain.enums import Confidence, EvidenceType
from ..core.domain.errors import ConfigurationError, SyncInProgressError
from ..core.domain.evidence import Artifact, ArtifactSet, Evidence
from ..core.domain.models import AnalysisResult, CorpusMetadata, SyncReport
from ..shared.suppression import HintInjector, HintRule, SuppressionFilter, SuppressionRule

logger = logging.getLogger(__name__)


class VulnMatchClient:
    """Client for identifying known vulnerabilities in third-party components.

    The container and its resources (store, HTTP client, rate-limit cache) are
    initialized once and reused across calls.

    Example:
        # Using default configuration (from environment variables)
        with VulnMatchClient() as client:
            client.update()
            client.add_evidence("lib/django.zip", EvidenceType.PRODUCT, "manifest", "name", "django", Confidence.HIGH)
            client.add_evidence("lib/django.zip", EvidenceType.VERSION, "manifest", "version", "1.2", Confidence.HIGH)
            for result in client.analyze():
                for component in result.components:
                    print(component.identifier, [v.id for v in component.vulnerabilities])

        # Customize settings
        with VulnMatchClient(nvd_api_key="...", database_url="sqlite:////tmp/vulnmatch.db") as client:
            report = client.update()
            report.raise_for_failure()
    """

    def __init__(self, *, config: Optional[AppConfig] = None, **settings: Any) -> None:
        """Initialize the client.

        Args:
            config: A complete AppConfig. If None, one is built from the
                    VULNMATCH_* environment plus the keyword settings.
            **settings: Individual AppConfig fields (e.g. nvd_api_key, database_url,
                        data_dir, valid_for_hours).

        Raises:
            ConfigurationError: If the settings are invalid. Nothing is opened in that case.
        """
        if config is None:
            try:
                config = AppConfig(**{k: v for k, v in settings.items() if v is not None})
            except ValidationError as e:
                raise ConfigurationError(str(e)) from e
        elif settings:
            raise ConfigurationError("Pass either config or individual settings, not both")

        self._config = config
        self._container = Container()
        self._container.app_config.override(config)
        self._artifacts = ArtifactSet()
        self._container.init_resources()

        store = self._container.store()
        if store.count_records() > 0:
            self._container.index().rebuild(store)

    @property
    def config(self) -> AppConfig:
        return self._config

    # corpus maintenance

    def update(self, *, force_full: bool = False, cancel: Optional[Event] = None) -> SyncReport:
        """Synchronize the local corpus with the remote source.

        Returns a SyncReport; failures are reported (state FAILED) rather than
        raised, call report.raise_for_failure() to turn them into exceptions.

        Raises:
            SyncInProgressError: If another run holds the store's sync lock.
        """
        uc = self._container.sync_uc()
        return uc.execute(force_full=force_full, cancel=cancel)

    def purge(self) -> None:
        """Delete all persisted state; the next update() performs a full synchronization."""
        self._container.purge_uc().execute()

    def metadata(self) -> CorpusMetadata:
        return self._container.store().get_metadata()

    def get_property(self, key: str, default: str | None = None) -> str | None:
        return self._container.store().get_property(key, default)

    def save_property(self, key: str, value: str) -> None:
        self._container.store().save_property(key, value)

    # evidence

    def artifact(self, artifact_id: str, path: str | Path | None = None) -> Artifact:
        """Return the artifact with this id, creating it on first use."""
        return self._artifacts.get_or_create(artifact_id, str(path) if path is not None else None)

    def add_evidence(
        self,
        artifact_id: str,
        type: EvidenceType,
        source: str,
        name: str,
        value: str,
        confidence: Confidence,
    ) -> Evidence | None:
        """Record one observation about an artifact; safe to call from several threads.

        Returns None when identical (source, name, value) evidence already exists.

        Raises:
            ValueError: If value is empty.
        """
        return self._artifacts.add_evidence(artifact_id, type, source, name, value, confidence)

    def collect_evidence(self, paths: Iterable[str | Path]) -> list[Artifact]:
        """Register files as artifacts (id = path) and run the evidence extractors on them."""
        registry = self._container.extractors()
        artifacts = []
        for p in paths:
            artifact = self.artifact(str(p), p)
            registry.collect(artifact)
            artifacts.append(artifact)
        return artifacts

    # analysis

    def analyze(
        self,
        artifacts: Optional[Sequence[Artifact]] = None,
        *,
        suppressions: Sequence[SuppressionRule] = (),
        hints: Sequence[HintRule] = (),
        update: Optional[bool] = None,
    ) -> list[AnalysisResult]:
        """Identify components and their vulnerabilities.

        Args:
            artifacts: Artifacts to analyze. If None, every artifact known to the client.
            suppressions: Post-filter rules; removed findings are listed on AnalysisResult.suppressed.
            hints: Pre-filter rules adding evidence before identification.
            update: Synchronize first. If None, uses the auto_update setting. A failed
                update, or one already running elsewhere, is logged and analysis
                continues against the current corpus.

        Returns:
            One AnalysisResult per artifact, in input order.
        """
        should_update = self._config.auto_update if update is None else update
        if should_update:
            try:
                report = self.update()
            except SyncInProgressError as e:
                logger.warning(f"Analyzing against the current corpus: {e}")
            else:
                if not report.succeeded:
                    logger.warning(f"Analyzing against a possibly stale corpus: synchronization ended in {report.state.value}")
        items = list(artifacts) if artifacts is not None else list(self._artifacts)
        uc = self._container.analyze_uc(
            preprocessors=[HintInjector(hints)] if hints else [],
            filters=[SuppressionFilter(suppressions)] if suppressions else [],
        )
        return uc.execute(items)

    def close(self) -> None:
        """Close the client and release resources."""
        self._container.shutdown_resources()

    def __enter__(self) -> VulnMatchClient:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


__all__ = [
    "VulnMatchClient",
    "AppConfig",
]

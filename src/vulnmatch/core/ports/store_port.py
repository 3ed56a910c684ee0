from __future__ import annotations

from datetime import datetime
from typing import Iterable, Mapping, Protocol, Sequence

from ..domain.enums import Part
from ..domain.models import (
    CorpusMetadata,
    SyncCheckpoint,
    VulnerabilityRecord,
    VulnerableSoftwareRule,
)


class VulnerabilityStorePort(Protocol):
    """Local persistent cache of vulnerability records, rules and corpus metadata."""

    def open(self) -> None:
        """Connect and provision an empty schema on first run."""

    def close(self) -> None:
        """Flush and release the persistence handle."""

    # reads

    def get_metadata(self) -> CorpusMetadata:
        ...

    def count_records(self) -> int:
        ...

    def get_record(self, record_id: str) -> VulnerabilityRecord | None:
        ...

    def get_records(self, record_ids: Iterable[str]) -> Mapping[str, VulnerabilityRecord]:
        ...

    def iter_products(self) -> Iterable[tuple[Part, str, str]]:
        """Distinct (part, vendor, product) over all stored rules."""
        ...

    def find_rules(self, part: Part, vendor: str, product: str) -> Sequence[tuple[str, VulnerableSoftwareRule]]:
        """(record id, rule) pairs whose pattern covers part/vendor/product, wildcards included."""
        ...

    def get_checkpoint(self) -> SyncCheckpoint | None:
        ...

    def get_property(self, key: str, default: str | None = None) -> str | None:
        ...

    # writes

    def commit_page(
        self,
        records: Sequence[VulnerabilityRecord],
        removed_ids: Sequence[str],
        checkpoint: SyncCheckpoint | None,
        *,
        lock_owner: str | None = None,
    ) -> None:
        """Replace records wholesale, drop removed ids and store the checkpoint in one transaction.

        With lock_owner the same transaction refreshes that owner's sync lock and
        raises SyncInProgressError if another run has taken it over.
        """

    def complete_sync(
        self,
        *,
        last_modified: datetime | None,
        checked_at: datetime,
        full_sync: bool,
        lock_owner: str | None = None,
    ) -> CorpusMetadata:
        """Advance metadata, recount records and clear the checkpoint in one transaction."""
        ...

    def save_property(self, key: str, value: str) -> None:
        ...

    def purge(self) -> None:
        """Delete all persisted state."""

    # mutual exclusion

    def try_acquire_sync_lock(self, owner: str, *, stale_after_seconds: float) -> bool:
        ...

    def refresh_sync_lock(self, owner: str) -> bool:
        """Restart the staleness clock of a held lock; False when owner no longer holds it."""
        ...

    def release_sync_lock(self, owner: str) -> None:
        ...

from __future__ import annotations

import logging
from typing import Optional

from ..domain.errors import SyncInProgressError
from ..ports.index_port import IdentificationIndexPort
from ..ports.store_port import VulnerabilityStorePort
from .synchronize import SyncPolicy, new_lock_owner

logger = logging.getLogger(__name__)


class PurgeCorpusUseCase:
    """Deletes all persisted state so that the next synchronization is FULL."""

    def __init__(
        self,
        store: VulnerabilityStorePort,
        index: IdentificationIndexPort,
        policy: Optional[SyncPolicy] = None,
    ) -> None:
        self._store = store
        self._index = index
        self._policy = policy or SyncPolicy()

    def execute(self) -> None:
        owner = new_lock_owner()
        stale_after = self._policy.sync_lock_stale_minutes * 60
        if not self._store.try_acquire_sync_lock(owner, stale_after_seconds=stale_after):
            raise SyncInProgressError("Cannot purge while a synchronization is running")
        try:
            self._store.purge()
            self._index.rebuild(self._store)
        finally:
            self._store.release_sync_lock(owner)
        logger.info("Vulnerability corpus purged")

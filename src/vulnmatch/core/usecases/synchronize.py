from __future__ import annotations

import logging
import os
import socket
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Event
from typing import Optional

from ..domain.enums import SyncMode, SyncState
from ..domain.errors import (
    CorruptDataError,
    PersistenceError,
    RetriesExhaustedError,
    SyncError,
    SyncInProgressError,
    TransientRemoteError,
)
from ..domain.models import CorpusMetadata, CorpusPage, SyncCheckpoint, SyncReport
from ..ports.clock_port import ClockPort, SystemClock
from ..ports.index_port import IdentificationIndexPort
from ..ports.source_port import CorpusSourcePort
from ..ports.store_port import VulnerabilityStorePort

logger = logging.getLogger(__name__)


def new_lock_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True)
class SyncPolicy:
    valid_for_hours: float = 2.0
    max_incremental_days: int = 120
    max_retry_count: int = 10
    backoff_base_seconds: float = 2.0
    backoff_max_seconds: float = 120.0
    api_delay_seconds: float = 0.0
    sync_lock_stale_minutes: float = 60.0

    def __post_init__(self) -> None:
        if self.max_retry_count < 1:
            raise ValueError("max_retry_count must be >= 1")
        if self.valid_for_hours < 0 or self.api_delay_seconds < 0:
            raise ValueError("valid_for_hours and api_delay_seconds must be >= 0")
        if not 1 <= self.max_incremental_days <= 120:
            raise ValueError("max_incremental_days must be within 1..120")

    def backoff(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        return min(self.backoff_max_seconds, self.backoff_base_seconds * 2 ** (attempt - 1))


@dataclass(frozen=True)
class _Plan:
    mode: SyncMode
    start_index: int = 0
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    high_water: Optional[datetime] = None
    resumed: bool = False


class _Run:
    """Mutable bookkeeping of one run, frozen into a SyncReport at the end."""

    def __init__(self, clock: ClockPort) -> None:
        self._clock = clock
        self.started_at = clock.now()
        self.state = SyncState.CHECK_FRESHNESS
        self.transitions: list[SyncState] = [SyncState.CHECK_FRESHNESS]
        self.mode: Optional[SyncMode] = None
        self.pages = 0
        self.merged = 0
        self.removed = 0

    def to(self, state: SyncState) -> None:
        if self.state.is_terminal:
            raise RuntimeError(f"Sync already finished in {self.state.value}")
        if state is not self.state:
            logger.debug(f"Sync state {self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)

    def report(self, error: Optional[Exception] = None) -> SyncReport:
        return SyncReport(
            mode=self.mode,
            state=self.state,
            transitions=tuple(self.transitions),
            pages=self.pages,
            records_merged=self.merged,
            records_removed=self.removed,
            started_at=self.started_at,
            finished_at=self._clock.now(),
            error=error,
        )


class SynchronizeCorpusUseCase:
    """Keeps the local store current against the remote corpus.

    One run walks CHECK_FRESHNESS -> (SKIP | INCREMENTAL | FULL) -> FETCHING ->
    MERGING -> REINDEXING -> DONE, alternating FETCHING and MERGING per page.
    Each page commits together with a resume checkpoint, so a failed or
    cancelled run keeps the pages it committed and the next run continues
    from the first uncommitted page. Remote and persistence failures end the
    run in FAILED with the exception on the report.
    """

    def __init__(
        self,
        store: VulnerabilityStorePort,
        source: CorpusSourcePort,
        index: IdentificationIndexPort,
        policy: Optional[SyncPolicy] = None,
        clock: Optional[ClockPort] = None,
    ) -> None:
        self._store = store
        self._source = source
        self._index = index
        self._policy = policy or SyncPolicy()
        self._clock = clock or SystemClock()

    def execute(self, *, force_full: bool = False, cancel: Optional[Event] = None) -> SyncReport:
        owner = new_lock_owner()
        stale_after = self._policy.sync_lock_stale_minutes * 60
        if not self._store.try_acquire_sync_lock(owner, stale_after_seconds=stale_after):
            raise SyncInProgressError("Another synchronization is running against this store")

        run = _Run(self._clock)
        try:
            return self._run(run, owner, force_full=force_full, cancel=cancel)
        except (SyncError, PersistenceError) as e:
            logger.error(f"Synchronization failed in {run.state.value}: {e}")
            run.to(SyncState.FAILED)
            return run.report(error=e)
        finally:
            try:
                self._store.release_sync_lock(owner)
            except PersistenceError as e:
                logger.warning(f"Unable to release sync lock {owner}: {e}")

    def _run(self, run: _Run, owner: str, *, force_full: bool, cancel: Optional[Event]) -> SyncReport:
        metadata = self._store.get_metadata()
        checkpoint = self._store.get_checkpoint()
        now = self._clock.now()

        plan = self._plan(metadata, checkpoint, now, force_full)
        if plan is None:
            logger.info("Vulnerability corpus is fresh; skipping synchronization")
            run.mode = SyncMode.SKIP
            run.to(SyncState.SKIP)
            return run.report()

        run.mode = plan.mode
        run.to(SyncState.FULL if plan.mode is SyncMode.FULL else SyncState.INCREMENTAL)
        if plan.resumed:
            logger.info(f"Resuming {plan.mode.value} synchronization at index {plan.start_index}")
        elif plan.mode is SyncMode.INCREMENTAL:
            logger.info(f"Incremental synchronization of changes since {plan.window_start.isoformat()}")
        else:
            logger.info("Full synchronization of the vulnerability corpus")

        high_water = plan.high_water
        start_index = plan.start_index
        while True:
            if cancel is not None and cancel.is_set():
                return self._cancelled(run)

            run.to(SyncState.FETCHING)
            page = self._fetch_with_retry(start_index, plan, owner, cancel)
            if page is None:
                return self._cancelled(run)
            if metadata.last_modified is not None and page.timestamp < metadata.last_modified:
                raise CorruptDataError(
                    f"Page at {start_index} is older ({page.timestamp.isoformat()}) "
                    f"than the stored corpus ({metadata.last_modified.isoformat()})"
                )
            high_water = page.timestamp if high_water is None else max(high_water, page.timestamp)

            next_index = page.start_index + page.entry_count
            finished = page.entry_count == 0 or next_index >= page.total_results

            run.to(SyncState.MERGING)
            self._store.commit_page(
                page.records,
                page.removed_ids,
                SyncCheckpoint(
                    mode=plan.mode,
                    next_index=next_index,
                    window_start=plan.window_start,
                    window_end=plan.window_end,
                    high_water=high_water,
                ),
                lock_owner=owner,
            )
            run.pages += 1
            run.merged += len(page.records)
            run.removed += len(page.removed_ids)
            logger.info(f"Committed page {run.pages}: {next_index}/{page.total_results}")

            if finished:
                break
            start_index = next_index
            if self._policy.api_delay_seconds > 0:
                if not self._clock.sleep(self._policy.api_delay_seconds, cancel):
                    return self._cancelled(run)

        metadata = self._store.complete_sync(
            last_modified=high_water,
            checked_at=self._clock.now(),
            full_sync=plan.mode is SyncMode.FULL,
            lock_owner=owner,
        )
        run.to(SyncState.REINDEXING)
        count = self._index.rebuild(self._store)
        run.to(SyncState.DONE)
        logger.info(
            f"Synchronization done: {run.merged} merged, {run.removed} removed, "
            f"{metadata.total_record_count} records, {count} indexed products"
        )
        return run.report()

    def _plan(
        self,
        metadata: CorpusMetadata,
        checkpoint: Optional[SyncCheckpoint],
        now: datetime,
        force_full: bool,
    ) -> Optional[_Plan]:
        if force_full:
            return _Plan(SyncMode.FULL)

        if checkpoint is not None:
            return _Plan(
                mode=checkpoint.mode,
                start_index=checkpoint.next_index,
                window_start=checkpoint.window_start,
                window_end=checkpoint.window_end,
                high_water=checkpoint.high_water,
                resumed=True,
            )

        if metadata.is_empty or metadata.last_modified is None:
            return _Plan(SyncMode.FULL)

        anchor = metadata.last_checked_at or metadata.last_modified
        if now - anchor < timedelta(hours=self._policy.valid_for_hours):
            return None

        if now - metadata.last_modified > timedelta(days=self._policy.max_incremental_days):
            return _Plan(SyncMode.FULL)

        return _Plan(SyncMode.INCREMENTAL, window_start=metadata.last_modified, window_end=now)

    def _fetch_with_retry(
        self, start_index: int, plan: _Plan, owner: str, cancel: Optional[Event]
    ) -> Optional[CorpusPage]:
        """Fetch one page, retrying transient failures; None when cancelled while backing off."""
        attempt = 0
        while True:
            attempt += 1
            self._keep_lock(owner)
            try:
                return self._source.fetch_page(
                    start_index,
                    last_modified_start=plan.window_start,
                    last_modified_end=plan.window_end,
                )
            except TransientRemoteError as e:
                if attempt >= self._policy.max_retry_count:
                    raise RetriesExhaustedError(
                        f"Page at {start_index} failed after {attempt} attempt(s): {e}", attempts=attempt
                    ) from e
                delay = self._policy.backoff(attempt)
                if e.retry_after is not None:
                    delay = max(delay, e.retry_after)
                logger.warning(
                    f"Transient failure on page at {start_index} (attempt {attempt}/{self._policy.max_retry_count}): "
                    f"{e}; retrying in {delay:.1f}s"
                )
                if not self._clock.sleep(delay, cancel):
                    return None

    def _keep_lock(self, owner: str) -> None:
        if not self._store.refresh_sync_lock(owner):
            raise SyncInProgressError(f"Sync lock of {owner} was taken over by another run")

    def _cancelled(self, run: _Run) -> SyncReport:
        logger.info(f"Synchronization cancelled after {run.pages} committed page(s)")
        run.to(SyncState.CANCELLED)
        return run.report()

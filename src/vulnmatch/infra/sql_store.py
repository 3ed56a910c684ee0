from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterable, Iterator, Mapping, Optional, Sequence

from sqlalchemy import create_engine, delete, func, or_, select, update
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..core.domain.enums import Part, Severity
from ..core.domain.errors import CorruptDataError, PersistenceError, SyncInProgressError
from ..core.domain.models import (
    ANY,
    CorpusMetadata,
    CvssScore,
    Description,
    PlatformIdentifier,
    Reference,
    SyncCheckpoint,
    VulnerabilityRecord,
    VulnerableSoftwareRule,
)
from ..core.ports.clock_port import ClockPort, SystemClock
from ..core.ports.store_port import VulnerabilityStorePort
from .sql_models import (
    SCHEMA_VERSION,
    SYNC_LOCK_ID,
    Base,
    PropertyRow,
    SoftwareRuleRow,
    SyncLockRow,
    VulnerabilityRow,
    as_utc,
)

logger = logging.getLogger(__name__)


# property keys
LAST_MODIFIED = "corpus.last_modified"
TOTAL_RECORD_COUNT = "corpus.total_record_count"
LAST_FULL_SYNC_AT = "corpus.last_full_sync_at"
LAST_CHECKED_AT = "corpus.last_checked_at"
SCHEMA_VERSION_KEY = "corpus.schema_version"
CHECKPOINT = "sync.checkpoint"

_IN_CHUNK = 500


def _chunks(items: Sequence[str], size: int = _IN_CHUNK) -> Iterator[Sequence[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def _dt_to_str(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value is not None else None


def _str_to_dt(value: Optional[str]) -> Optional[datetime]:
    return as_utc(datetime.fromisoformat(value)) if value else None


def _payload(record: VulnerabilityRecord) -> str:
    return json.dumps(
        {
            "descriptions": [{"lang": d.lang, "value": d.value} for d in record.descriptions],
            "scores": [
                {
                    "version": s.version,
                    "vector": s.vector,
                    "base_score": s.base_score,
                    "severity": s.severity.value if s.severity else None,
                    "source": s.source,
                    "type": s.type,
                }
                for s in record.scores
            ],
            "references": [{"url": r.url, "source": r.source, "tags": list(r.tags)} for r in record.references],
            "cwes": list(record.cwes),
        }
    )


def _rule_row(record_id: str, position: int, rule: VulnerableSoftwareRule) -> SoftwareRuleRow:
    ident = rule.identifier
    return SoftwareRuleRow(
        record_id=record_id,
        position=position,
        part=ident.part.value,
        vendor=ident.vendor,
        product=ident.product,
        cpe=ident.to_cpe23(),
        version_start_including=rule.version_start_including,
        version_start_excluding=rule.version_start_excluding,
        version_end_including=rule.version_end_including,
        version_end_excluding=rule.version_end_excluding,
        vulnerable=rule.vulnerable,
    )


def _rule_from_row(row: SoftwareRuleRow) -> VulnerableSoftwareRule:
    return VulnerableSoftwareRule(
        identifier=PlatformIdentifier.parse(row.cpe),
        version_start_including=row.version_start_including,
        version_start_excluding=row.version_start_excluding,
        version_end_including=row.version_end_including,
        version_end_excluding=row.version_end_excluding,
        vulnerable=bool(row.vulnerable),
    )


def _record_from_row(row: VulnerabilityRow, rules: Sequence[VulnerableSoftwareRule]) -> VulnerabilityRecord:
    data = json.loads(row.payload or "{}")
    return VulnerabilityRecord(
        id=row.id,
        descriptions=tuple(Description(lang=d["lang"], value=d["value"]) for d in data.get("descriptions", [])),
        scores=tuple(
            CvssScore(
                version=s["version"],
                vector=s.get("vector"),
                base_score=s.get("base_score"),
                severity=Severity(s["severity"]) if s.get("severity") else None,
                source=s.get("source"),
                type=s.get("type"),
            )
            for s in data.get("scores", [])
        ),
        references=tuple(
            Reference(url=r["url"], source=r.get("source"), tags=tuple(r.get("tags") or ()))
            for r in data.get("references", [])
        ),
        rules=tuple(rules),
        cwes=tuple(data.get("cwes", [])),
        published_at=as_utc(row.published_at),
        last_modified_at=as_utc(row.last_modified_at),
        ecosystem=row.ecosystem,
    )


class SqlVulnerabilityStore(VulnerabilityStorePort):
    """Relational vulnerability store on SQLAlchemy.

    Every public write runs in a single transaction; SQLAlchemy failures surface
    as PersistenceError and leave previously committed data untouched.
    """

    def __init__(self, database_url: str, *, clock: Optional[ClockPort] = None, echo: bool = False) -> None:
        self._url = database_url
        self._clock = clock or SystemClock()
        self._echo = echo
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker[Session]] = None

    # lifecycle

    def open(self) -> None:
        if self._engine is not None:
            return
        url = make_url(self._url)
        connect_args: dict = {}
        if url.get_backend_name() == "sqlite":
            # analysis threads share the engine
            connect_args = {"check_same_thread": False, "timeout": 30}
            if url.database and url.database != ":memory:":
                parent = os.path.dirname(os.path.abspath(url.database))
                os.makedirs(parent, exist_ok=True)
        try:
            engine = create_engine(url, echo=self._echo, connect_args=connect_args)
            Base.metadata.create_all(engine)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Unable to open vulnerability store at {url.render_as_string(hide_password=True)}: {e}") from e
        self._engine = engine
        self._session_factory = sessionmaker(engine, expire_on_commit=False, autoflush=False)
        with self._session() as session:
            if session.get(PropertyRow, SCHEMA_VERSION_KEY) is None:
                logger.info(f"Provisioning empty vulnerability store (schema v{SCHEMA_VERSION})")
                session.add(PropertyRow(key=SCHEMA_VERSION_KEY, value=str(SCHEMA_VERSION)))

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._session_factory = None

    def __enter__(self) -> "SqlVulnerabilityStore":
        self.open()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """Session that commits on success and rolls back on any exception."""
        if self._session_factory is None:
            raise PersistenceError("Vulnerability store is not open")
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # reads

    def get_metadata(self) -> CorpusMetadata:
        with self._session() as session:
            props = self._properties(session)
        return CorpusMetadata(
            last_modified=_str_to_dt(props.get(LAST_MODIFIED)),
            total_record_count=int(props.get(TOTAL_RECORD_COUNT) or 0),
            last_full_sync_at=_str_to_dt(props.get(LAST_FULL_SYNC_AT)),
            schema_version=int(props.get(SCHEMA_VERSION_KEY) or 0),
            last_checked_at=_str_to_dt(props.get(LAST_CHECKED_AT)),
        )

    def count_records(self) -> int:
        with self._session() as session:
            return int(session.scalar(select(func.count()).select_from(VulnerabilityRow)) or 0)

    def get_record(self, record_id: str) -> VulnerabilityRecord | None:
        return self.get_records([record_id]).get(record_id)

    def get_records(self, record_ids: Iterable[str]) -> Mapping[str, VulnerabilityRecord]:
        ids = list(dict.fromkeys(record_ids))
        result: dict[str, VulnerabilityRecord] = {}
        if not ids:
            return result
        with self._session() as session:
            for chunk in _chunks(ids):
                rows = session.scalars(select(VulnerabilityRow).where(VulnerabilityRow.id.in_(chunk))).all()
                rule_rows = session.scalars(
                    select(SoftwareRuleRow)
                    .where(SoftwareRuleRow.record_id.in_(chunk))
                    .order_by(SoftwareRuleRow.record_id, SoftwareRuleRow.position)
                ).all()
                rules: dict[str, list[VulnerableSoftwareRule]] = {}
                for rr in rule_rows:
                    rules.setdefault(rr.record_id, []).append(_rule_from_row(rr))
                for row in rows:
                    result[row.id] = _record_from_row(row, rules.get(row.id, []))
        return result

    def iter_products(self) -> Iterable[tuple[Part, str, str]]:
        with self._session() as session:
            rows = session.execute(
                select(SoftwareRuleRow.part, SoftwareRuleRow.vendor, SoftwareRuleRow.product)
                .distinct()
                .order_by(SoftwareRuleRow.part, SoftwareRuleRow.vendor, SoftwareRuleRow.product)
            ).all()
        return [(Part.from_code(part), vendor, product) for part, vendor, product in rows]

    def find_rules(self, part: Part, vendor: str, product: str) -> Sequence[tuple[str, VulnerableSoftwareRule]]:
        stmt = select(SoftwareRuleRow)
        if part is not Part.ANY:
            stmt = stmt.where(or_(SoftwareRuleRow.part == part.value, SoftwareRuleRow.part == ANY))
        if vendor != ANY:
            stmt = stmt.where(or_(SoftwareRuleRow.vendor == vendor.lower(), SoftwareRuleRow.vendor == ANY))
        if product != ANY:
            stmt = stmt.where(or_(SoftwareRuleRow.product == product.lower(), SoftwareRuleRow.product == ANY))
        stmt = stmt.order_by(SoftwareRuleRow.record_id, SoftwareRuleRow.position)
        with self._session() as session:
            rows = session.scalars(stmt).all()
        return [(row.record_id, _rule_from_row(row)) for row in rows]

    def get_checkpoint(self) -> SyncCheckpoint | None:
        raw = self.get_property(CHECKPOINT)
        if not raw:
            return None
        return SyncCheckpoint.from_dict(json.loads(raw))

    def get_property(self, key: str, default: str | None = None) -> str | None:
        with self._session() as session:
            row = session.get(PropertyRow, key)
            return row.value if row is not None else default

    # writes

    def commit_page(
        self,
        records: Sequence[VulnerabilityRecord],
        removed_ids: Sequence[str],
        checkpoint: SyncCheckpoint | None,
        *,
        lock_owner: str | None = None,
    ) -> None:
        for record in records:
            if not record.rules:
                raise CorruptDataError(f"Refusing to store {record.id} without applicability rules")
        ids = list(dict.fromkeys([r.id for r in records] + list(removed_ids)))
        with self._session() as session:
            if lock_owner is not None:
                self._hold_lock(session, lock_owner)
            for chunk in _chunks(ids):
                session.execute(delete(SoftwareRuleRow).where(SoftwareRuleRow.record_id.in_(chunk)))
                session.execute(delete(VulnerabilityRow).where(VulnerabilityRow.id.in_(chunk)))
            for record in records:
                session.add(
                    VulnerabilityRow(
                        id=record.id,
                        description=record.description,
                        cvss_score=record.cvss_score,
                        severity=record.severity.value if record.severity else None,
                        ecosystem=record.ecosystem,
                        published_at=record.published_at,
                        last_modified_at=record.last_modified_at,
                        payload=_payload(record),
                    )
                )
                session.add_all(_rule_row(record.id, i, rule) for i, rule in enumerate(record.rules))
            if checkpoint is not None:
                self._put(session, CHECKPOINT, json.dumps(checkpoint.to_dict()))
        logger.debug(f"Committed {len(records)} record(s), removed {len(removed_ids)}")

    def complete_sync(
        self,
        *,
        last_modified: datetime | None,
        checked_at: datetime,
        full_sync: bool,
        lock_owner: str | None = None,
    ) -> CorpusMetadata:
        with self._session() as session:
            if lock_owner is not None:
                self._hold_lock(session, lock_owner)
            props = self._properties(session)
            current = _str_to_dt(props.get(LAST_MODIFIED))
            new_last = current
            if last_modified is not None:
                last_modified = as_utc(last_modified)
                if current is not None and last_modified < current:
                    raise CorruptDataError(
                        f"Corpus last-modified would move backward ({last_modified.isoformat()} < {current.isoformat()})"
                    )
                new_last = last_modified
            count = int(session.scalar(select(func.count()).select_from(VulnerabilityRow)) or 0)
            if new_last is not None:
                self._put(session, LAST_MODIFIED, _dt_to_str(new_last))
            self._put(session, TOTAL_RECORD_COUNT, str(count))
            self._put(session, LAST_CHECKED_AT, _dt_to_str(checked_at))
            if full_sync:
                self._put(session, LAST_FULL_SYNC_AT, _dt_to_str(checked_at))
            session.execute(delete(PropertyRow).where(PropertyRow.key == CHECKPOINT))
        return self.get_metadata()

    def save_property(self, key: str, value: str) -> None:
        with self._session() as session:
            self._put(session, key, value)

    def purge(self) -> None:
        with self._session() as session:
            session.execute(delete(SoftwareRuleRow))
            session.execute(delete(VulnerabilityRow))
            session.execute(delete(PropertyRow))
            session.add(PropertyRow(key=SCHEMA_VERSION_KEY, value=str(SCHEMA_VERSION)))
        logger.info("Vulnerability store purged")

    # mutual exclusion

    def try_acquire_sync_lock(self, owner: str, *, stale_after_seconds: float) -> bool:
        now = as_utc(self._clock.now())
        try:
            with self._session() as session:
                row = session.get(SyncLockRow, SYNC_LOCK_ID)
                if row is None:
                    session.add(SyncLockRow(id=SYNC_LOCK_ID, owner=owner, acquired_at=now))
                    session.flush()
                    return True
                held_since = as_utc(row.acquired_at)
                if row.owner == owner:
                    return True
                if now - held_since < timedelta(seconds=stale_after_seconds):
                    logger.info(f"Sync lock held by {row.owner} since {held_since.isoformat()}")
                    return False
                logger.warning(f"Taking over stale sync lock of {row.owner} (held since {held_since.isoformat()})")
                result = session.execute(
                    update(SyncLockRow)
                    .where(SyncLockRow.id == SYNC_LOCK_ID, SyncLockRow.owner == row.owner)
                    .values(owner=owner, acquired_at=now)
                )
                return result.rowcount == 1
        except PersistenceError as e:
            # another process inserted the row first
            if isinstance(e.__cause__, IntegrityError):
                return False
            raise

    def refresh_sync_lock(self, owner: str) -> bool:
        with self._session() as session:
            return self._touch_lock(session, owner)

    def release_sync_lock(self, owner: str) -> None:
        with self._session() as session:
            session.execute(delete(SyncLockRow).where(SyncLockRow.id == SYNC_LOCK_ID, SyncLockRow.owner == owner))

    # helpers

    def _touch_lock(self, session: Session, owner: str) -> bool:
        result = session.execute(
            update(SyncLockRow)
            .where(SyncLockRow.id == SYNC_LOCK_ID, SyncLockRow.owner == owner)
            .values(acquired_at=as_utc(self._clock.now()))
        )
        return result.rowcount == 1

    def _hold_lock(self, session: Session, owner: str) -> None:
        if not self._touch_lock(session, owner):
            raise SyncInProgressError(f"Sync lock of {owner} was taken over by another run")

    @staticmethod
    def _properties(session: Session) -> dict[str, str]:
        return {row.key: row.value for row in session.scalars(select(PropertyRow)).all()}

    @staticmethod
    def _put(session: Session, key: str, value: str) -> None:
        row = session.get(PropertyRow, key)
        if row is None:
            session.add(PropertyRow(key=key, value=value))
        else:
            row.value = value

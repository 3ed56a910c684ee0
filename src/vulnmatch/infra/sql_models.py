"""SQLAlchemy ORM tables of the vulnerability store.

Tables:
- vulnerabilities: one row per record; nested data kept as a JSON document
- software_rules: applicability rules, one row per rule in rule order
- properties: key/value pairs (corpus metadata, sync checkpoint, user properties)
- sync_lock: at most one row, held by the running synchronization
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


SCHEMA_VERSION = 1
SYNC_LOCK_ID = 1


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class VulnerabilityRow(Base):
    __tablename__ = "vulnerabilities"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cvss_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    severity: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    ecosystem: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_modified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False, default="{}")  # JSON document


class SoftwareRuleRow(Base):
    __tablename__ = "software_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    record_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("vulnerabilities.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    part: Mapped[str] = mapped_column(String(1), nullable=False)
    vendor: Mapped[str] = mapped_column(String(255), nullable=False)
    product: Mapped[str] = mapped_column(String(255), nullable=False)
    cpe: Mapped[str] = mapped_column(Text, nullable=False)
    version_start_including: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    version_start_excluding: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    version_end_including: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    version_end_excluding: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    vulnerable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_rules_vendor_product", "vendor", "product"),
    )


class PropertyRow(Base):
    __tablename__ = "properties"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


class SyncLockRow(Base):
    __tablename__ = "sync_lock"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner: Mapped[str] = mapped_column(String(128), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; they were stored as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

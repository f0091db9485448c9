"""Work item (case record) model.

Rows are created by ingestion outside this service and are never deleted
here. Workers mutate them only through conditional updates: the lease
columns via LeaseLockManager and the cooldown columns via
ErrorCooldownController.
"""

import enum
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JSONType, SequenceId

FUEROS = ("CIV", "COM", "CNT", "CSS", "CAF", "CCF", "CNE", "CPE", "CFP", "CCC", "CSJ")


class UpdateType(str, enum.Enum):
    create = "create"
    update = "update"
    verify = "verify"
    error = "error"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands datetimes back naive; everything stored is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class Lease:
    worker_id: str
    locked_at: datetime
    expires_at: datetime

    def is_live(self, now: datetime) -> bool:
        return as_utc(self.expires_at) > now


class WorkItem(Base):
    __tablename__ = "work_items"
    __table_args__ = (
        UniqueConstraint("number", "year", "fuero", "sub_docket", name="uq_work_items_identity"),
        # Main eligibility query of the update workers
        Index(
            "ix_work_items_eligibility",
            "source", "verified", "is_valid", "needs_update", "last_update", "lease_expires_at",
        ),
        Index("ix_work_items_lease_worker_id", "lease_worker_id"),
        Index("ix_work_items_skip_until", "skip_until"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    fuero: Mapped[str] = mapped_column(String(8), nullable=False)
    sub_docket: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    source: Mapped[str] = mapped_column(String(30), nullable=False, default="app")
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_valid: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    needs_update: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_update: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    movimientos_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Lease: absent when lease_worker_id is NULL, dead once lease_expires_at <= now
    lease_worker_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    lease_locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    lease_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Error cooldown
    consecutive_errors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    last_error_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    skip_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    @property
    def lease(self) -> Optional[Lease]:
        if self.lease_worker_id is None or self.lease_expires_at is None:
            return None
        return Lease(
            worker_id=self.lease_worker_id,
            locked_at=as_utc(self.lease_locked_at),
            expires_at=as_utc(self.lease_expires_at),
        )


class WorkItemUpdate(Base):
    """Append-only update history of a work item."""

    __tablename__ = "work_item_updates"
    __table_args__ = (
        Index("ix_work_item_updates_recorded_at", "recorded_at", "worker_type"),
    )

    id: Mapped[int] = mapped_column(SequenceId, primary_key=True, autoincrement=True)
    work_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("work_items.id"), nullable=False, index=True
    )
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    source: Mapped[str] = mapped_column(String(30), nullable=False)
    worker_type: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    update_type: Mapped[str] = mapped_column(String(10), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    movimientos_added: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    movimientos_total: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

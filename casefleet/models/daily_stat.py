"""Daily worker statistics, runs and error log.

DailyStat counters accumulate over the business day; a run's final counts
are folded in by addition when the run finishes. The error log keeps the
newest 100 entries per day key.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
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

from .base import Base, SequenceId


class RunStatus(str, enum.Enum):
    running = "running"
    completed = "completed"
    failed = "failed"
    interrupted = "interrupted"


class DayStatus(str, enum.Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    partial = "partial"
    failed = "failed"


class DailyStat(Base):
    __tablename__ = "worker_daily_stats"
    __table_args__ = (
        UniqueConstraint("date", "fuero", "worker_type", name="uq_worker_daily_stats_key"),
        Index("ix_worker_daily_stats_date_worker_type", "date", "worker_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    date: Mapped[str] = mapped_column(String(10), nullable=False)
    fuero: Mapped[str] = mapped_column(String(8), nullable=False)
    worker_type: Mapped[str] = mapped_column(String(40), nullable=False)

    total_to_process: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    movimientos_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    private_causas: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    public_causas: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    captcha_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    captcha_successful: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    captcha_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_processing_time: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=DayStatus.pending.value)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    last_update: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class WorkerRun(Base):
    __tablename__ = "worker_runs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    daily_stat_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("worker_daily_stats.id"), nullable=False, index=True
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=RunStatus.running.value)
    documents_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    documents_successful: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    documents_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    movimientos_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class WorkerErrorLog(Base):
    __tablename__ = "worker_error_logs"

    id: Mapped[int] = mapped_column(SequenceId, primary_key=True, autoincrement=True)
    daily_stat_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("worker_daily_stats.id"), nullable=False, index=True
    )
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    work_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_type: Mapped[str] = mapped_column(String(30), nullable=False, default="unknown")
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    stack: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

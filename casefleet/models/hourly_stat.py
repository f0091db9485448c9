"""Hourly worker statistics.

One row per (date, hour, fuero, worker_type), created lazily by the first
report for the key and mutated only with atomic increments. Date and hour
are computed in the business timezone.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, SequenceId


class WorkerType(str, enum.Enum):
    app_update = "app-update"
    verify = "verify"
    recovery = "recovery"
    stuck_documents = "stuck-documents"
    private_causas_update = "private-causas-update"
    mis_causas = "mis-causas"


class ErrorType(str, enum.Enum):
    captcha_failed = "captcha_failed"
    login_failed = "login_failed"
    timeout = "timeout"
    network_error = "network_error"
    parse_error = "parse_error"
    not_found = "not_found"
    private_causa = "private_causa"
    database_error = "database_error"
    unknown = "unknown"


class ScalingAction(str, enum.Enum):
    scale_up = "scale_up"
    scale_down = "scale_down"
    no_change = "no_change"


class HourlyStat(Base):
    __tablename__ = "worker_hourly_stats"
    __table_args__ = (
        UniqueConstraint("date", "hour", "fuero", "worker_type", name="uq_worker_hourly_stats_key"),
        Index("ix_worker_hourly_stats_date_hour", "date", "hour"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    date: Mapped[str] = mapped_column(String(10), nullable=False)  # YYYY-MM-DD
    hour: Mapped[int] = mapped_column(Integer, nullable=False)
    fuero: Mapped[str] = mapped_column(String(8), nullable=False)
    worker_type: Mapped[str] = mapped_column(String(40), nullable=False)

    processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    movimientos_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Milliseconds
    total_processing_time: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    min_processing_time: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    max_processing_time: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    # Active worker gauges, fed once per manager cycle
    manager_cycles: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_active_workers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active_workers_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    pending_at_start: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    pending_at_end: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    last_update: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    @property
    def avg_processing_time(self) -> float:
        if not self.processed:
            return 0.0
        return round(self.total_processing_time / self.processed, 2)

    @property
    def avg_active_workers(self) -> float:
        if not self.manager_cycles:
            return 0.0
        return round(self.active_workers_total / self.manager_cycles, 2)


class HourlyErrorCount(Base):
    """Per error type counter of an hourly key; read back as the hour's top errors."""

    __tablename__ = "worker_hourly_errors"
    __table_args__ = (
        UniqueConstraint(
            "date", "hour", "fuero", "worker_type", "error_type",
            name="uq_worker_hourly_errors_key",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    date: Mapped[str] = mapped_column(String(10), nullable=False)
    hour: Mapped[int] = mapped_column(Integer, nullable=False)
    fuero: Mapped[str] = mapped_column(String(8), nullable=False)
    worker_type: Mapped[str] = mapped_column(String(40), nullable=False)
    error_type: Mapped[str] = mapped_column(String(30), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class ScalingEvent(Base):
    """Bounded log of scaling recommendations within an hourly key."""

    __tablename__ = "worker_scaling_events"
    __table_args__ = (
        Index("ix_worker_scaling_events_key", "date", "hour", "fuero", "worker_type"),
    )

    id: Mapped[int] = mapped_column(SequenceId, primary_key=True, autoincrement=True)
    date: Mapped[str] = mapped_column(String(10), nullable=False)
    hour: Mapped[int] = mapped_column(Integer, nullable=False)
    fuero: Mapped[str] = mapped_column(String(8), nullable=False)
    worker_type: Mapped[str] = mapped_column(String(40), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    from_workers: Mapped[int] = mapped_column(Integer, nullable=False)
    to_workers: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

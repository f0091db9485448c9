"""Alert model shared by the daily stats, the work items and the manager.

An alert stays open until acknowledged. The partial unique index on
dedup_key allows at most one open alert per (scope, subject, type, fuero).
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, SequenceId


class AlertScope(str, enum.Enum):
    daily = "daily"
    work_item = "work_item"
    manager = "manager"


class AlertType(str, enum.Enum):
    high_error_rate = "high_error_rate"
    no_updates = "no_updates"
    slow_processing = "slow_processing"
    captcha_issues = "captcha_issues"
    persistent_failure = "persistent_failure"
    high_cpu = "high_cpu"
    high_memory = "high_memory"
    no_workers = "no_workers"
    high_pending = "high_pending"
    manager_stopped = "manager_stopped"


class Alert(Base):
    __tablename__ = "alerts"
    __table_args__ = (
        Index(
            "uq_alerts_open_dedup_key",
            "dedup_key",
            unique=True,
            postgresql_where=text("NOT acknowledged"),
            sqlite_where=text("NOT acknowledged"),
        ),
        Index("ix_alerts_scope_subject", "scope", "subject"),
        Index("ix_alerts_period", "period_date", "worker_type"),
    )

    id: Mapped[int] = mapped_column(SequenceId, primary_key=True, autoincrement=True)
    scope: Mapped[str] = mapped_column(String(20), nullable=False)
    subject: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    fuero: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    worker_type: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    period_date: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    dedup_key: Mapped[str] = mapped_column(String(220), nullable=False)
    acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

"""Autoscaling manager state.

One row per manager name (a single logical key in practice) holding the
scaling configuration and the snapshot of the latest cycle. History lives in
manager_snapshots, trimmed to the newest 1440 rows per manager.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JSONType, SequenceId


class ManagerState(Base):
    __tablename__ = "manager_states"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(60), nullable=False, unique=True)
    config: Mapped[dict] = mapped_column(JSONType, nullable=False)

    workers: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    pending: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    optimal_workers: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    system_resources: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    # Actual running counts as last reported by the process supervisor
    reported_workers: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    is_running: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_within_working_hours: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_cycle_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cycle_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    last_update: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class ManagerSnapshot(Base):
    __tablename__ = "manager_snapshots"
    __table_args__ = (
        Index("ix_manager_snapshots_manager_recorded", "manager_name", "recorded_at"),
    )

    id: Mapped[int] = mapped_column(SequenceId, primary_key=True, autoincrement=True)
    manager_name: Mapped[str] = mapped_column(String(60), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    workers: Mapped[dict] = mapped_column(JSONType, nullable=False)
    pending: Mapped[dict] = mapped_column(JSONType, nullable=False)
    optimal_workers: Mapped[dict] = mapped_column(JSONType, nullable=False)
    system_resources: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

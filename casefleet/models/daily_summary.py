"""Daily cross-fuero summary.

Derived from the hourly and daily stats and overwritten wholesale on each
regeneration; never a source of truth.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JSONType


class DailySummary(Base):
    __tablename__ = "worker_daily_summaries"
    __table_args__ = (
        UniqueConstraint("date", "worker_type", name="uq_worker_daily_summaries_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    date: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    worker_type: Mapped[str] = mapped_column(String(40), nullable=False)

    totals: Mapped[dict] = mapped_column(JSONType, nullable=False)
    by_fuero: Mapped[list] = mapped_column(JSONType, nullable=False)
    hourly_distribution: Mapped[list] = mapped_column(JSONType, nullable=False)
    top_causas: Mapped[list] = mapped_column(JSONType, nullable=False)
    top_errors: Mapped[list] = mapped_column(JSONType, nullable=False)
    comparison: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    alerts_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    has_unacknowledged_alerts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

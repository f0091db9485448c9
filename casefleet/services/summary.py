"""Daily summary tier.

A summary is a derived snapshot of one business day for one worker type:
it is rebuilt from the daily and hourly rows with a bulk read and stored
with a single upsert, so regenerating it is idempotent. Writes that land
while a summary is being built show up on the next regeneration.
"""

import math
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from casefleet.models.alert import Alert, AlertScope
from casefleet.models.daily_stat import DailyStat, DayStatus
from casefleet.models.daily_summary import DailySummary
from casefleet.models.hourly_stat import HourlyStat, WorkerType
from casefleet.models.work_item import WorkItem, WorkItemUpdate
from casefleet.services import daily_stats, hourly_stats
from casefleet.services.periods import business_date, day_bounds, previous_date, recent_dates, utcnow
from casefleet.services.store import upsert

log = structlog.get_logger(__name__)

TOP_CAUSAS_LIMIT = 10

FAILED_RATIO = 0.5
PARTIAL_RATIO = 0.1

SUMMARY_FIELDS = (
    "totals",
    "by_fuero",
    "hourly_distribution",
    "top_causas",
    "top_errors",
    "comparison",
    "status",
    "alerts_count",
    "has_unacknowledged_alerts",
    "generated_at",
)


def round_half_up(value: float) -> int:
    """Round .5 towards +infinity (round() would round half to even)."""
    return math.floor(value + 0.5)


def _percent(part: int, whole: int) -> int:
    return round_half_up(part / whole * 100) if whole > 0 else 0


def _change(current: int, previous: int) -> int:
    return round_half_up((current - previous) / previous * 100) if previous > 0 else 0


def _fuero_stats(row: DailyStat, hourly: list[HourlyStat]) -> dict:
    processed = row.processed or 0
    fuero_hours = sorted((h for h in hourly if h.fuero == row.fuero), key=lambda h: h.hour)

    peak_hour = None
    peak_processed = 0
    active_hours = []
    max_workers = 0
    worker_averages = []
    pending_at_end = None
    for h in fuero_hours:
        if (h.processed or 0) > peak_processed:
            peak_processed = h.processed
            peak_hour = h.hour
        if h.processed:
            active_hours.append(h.hour)
        max_workers = max(max_workers, h.max_active_workers or 0)
        if h.manager_cycles:
            worker_averages.append(h.avg_active_workers)
        if h.pending_at_end is not None:
            pending_at_end = h.pending_at_end

    return {
        "fuero": row.fuero,
        "processed": processed,
        "successful": row.successful or 0,
        "failed": row.failed or 0,
        "movimientos_found": row.movimientos_found or 0,
        "avg_processing_time_ms": round_half_up(row.total_processing_time / processed) if processed else 0,
        "success_rate": _percent(row.successful or 0, processed),
        "active_hours": active_hours,
        "peak_hour": peak_hour,
        "peak_hour_processed": peak_processed,
        "max_workers": max_workers,
        "avg_workers": round(sum(worker_averages) / len(worker_averages), 2) if worker_averages else 0.0,
        "pending_at_end": pending_at_end or 0,
    }


def summary_status(processed: int, failed: int, active_hours: int, is_today: bool) -> str:
    status = DayStatus.pending.value
    if processed > 0:
        fail_ratio = failed / processed
        if fail_ratio > FAILED_RATIO:
            status = DayStatus.failed.value
        elif fail_ratio > PARTIAL_RATIO:
            status = DayStatus.partial.value
        else:
            status = DayStatus.completed.value
    if active_hours and is_today:
        status = DayStatus.in_progress.value
    return status


def build_summary(
    date: str,
    daily_rows: list[DailyStat],
    hourly_rows: list[HourlyStat],
    previous_totals: Optional[dict] = None,
    top_errors: Optional[list[dict]] = None,
    top_causas: Optional[list[dict]] = None,
    alerts_count: int = 0,
    has_unacknowledged_alerts: bool = False,
    now: Optional[datetime] = None,
) -> dict:
    """Compute every summary field from already loaded rows."""
    now = now or utcnow()

    processed = sum(row.processed or 0 for row in daily_rows)
    successful = sum(row.successful or 0 for row in daily_rows)
    failed = sum(row.failed or 0 for row in daily_rows)
    movimientos = sum(row.movimientos_found or 0 for row in daily_rows)
    processing_time = sum(row.total_processing_time or 0 for row in daily_rows)

    distribution = hourly_stats.hourly_distribution(hourly_rows)
    active = [slot["hour"] for slot in distribution if slot["processed"] > 0]

    totals = {
        "processed": processed,
        "successful": successful,
        "failed": failed,
        "movimientos_found": movimientos,
        "avg_processing_time_ms": round_half_up(processing_time / processed) if processed else 0,
        "success_rate": _percent(successful, processed),
        "total_working_hours": len(active),
        "first_activity_hour": active[0] if active else None,
        "last_activity_hour": active[-1] if active else None,
    }

    comparison = None
    if previous_totals is not None:
        previous_processed = previous_totals.get("processed", 0)
        if processed > previous_processed:
            trend = "up"
        elif processed < previous_processed:
            trend = "down"
        else:
            trend = "stable"
        comparison = {
            "processed_change": _change(processed, previous_processed),
            "movimientos_change": _change(movimientos, previous_totals.get("movimientos_found", 0)),
            "success_rate_change": round_half_up(totals["success_rate"] - previous_totals.get("success_rate", 0)),
            "trend": trend,
        }

    errors = top_errors or []
    error_total = sum(e["count"] for e in errors)

    return {
        "totals": totals,
        "by_fuero": [_fuero_stats(row, hourly_rows) for row in sorted(daily_rows, key=lambda r: r.fuero)],
        "hourly_distribution": distribution,
        "top_causas": top_causas or [],
        "top_errors": [{**e, "percentage": _percent(e["count"], error_total)} for e in errors],
        "comparison": comparison,
        "status": summary_status(processed, failed, len(active), business_date(now) == date),
        "alerts_count": alerts_count,
        "has_unacknowledged_alerts": has_unacknowledged_alerts,
        "generated_at": now,
    }


async def _top_causas(session: AsyncSession, date: str, worker_type: str) -> list[dict]:
    start, end = day_bounds(date)
    update_count = func.count(WorkItemUpdate.id).label("update_count")
    movimientos = func.coalesce(func.sum(WorkItemUpdate.movimientos_added), 0).label("movimientos_found")
    result = await session.execute(
        select(WorkItem.id, WorkItem.fuero, WorkItem.number, WorkItem.year, update_count, movimientos)
        .select_from(WorkItemUpdate)
        .join(WorkItem, WorkItem.id == WorkItemUpdate.work_item_id)
        .where(
            WorkItemUpdate.recorded_at >= start,
            WorkItemUpdate.recorded_at < end,
            WorkItemUpdate.worker_type == worker_type,
            WorkItemUpdate.success.is_(True),
        )
        .group_by(WorkItem.id, WorkItem.fuero, WorkItem.number, WorkItem.year)
        .order_by(update_count.desc(), movimientos.desc(), WorkItem.id)
        .limit(TOP_CAUSAS_LIMIT)
    )
    return [
        {
            "work_item_id": str(item_id),
            "fuero": fuero,
            "number": number,
            "year": year,
            "update_count": int(count),
            "movimientos_found": int(found),
        }
        for item_id, fuero, number, year, count, found in result.all()
    ]


async def _alert_counts(session: AsyncSession, date: str, worker_type: str) -> tuple[int, bool]:
    result = await session.execute(
        select(Alert.acknowledged, func.count())
        .where(
            Alert.scope == AlertScope.daily.value,
            Alert.period_date == date,
            Alert.worker_type == worker_type,
        )
        .group_by(Alert.acknowledged)
    )
    counts = dict(result.all())
    return sum(counts.values()), counts.get(False, 0) > 0


async def generate_summary(
    session: AsyncSession,
    date: str,
    worker_type: str = WorkerType.app_update.value,
    now: Optional[datetime] = None,
) -> DailySummary:
    now = now or utcnow()

    daily_rows = await daily_stats.get_day(session, date, worker_type)
    hourly_rows = await hourly_stats.get_hourly_rows(session, date, worker_type=worker_type)
    previous_totals = (
        await session.execute(
            select(DailySummary.totals).where(
                DailySummary.date == previous_date(date),
                DailySummary.worker_type == worker_type,
            )
        )
    ).scalar_one_or_none()
    top_errors = await hourly_stats.get_top_errors(session, date, worker_type)
    top_causas = await _top_causas(session, date, worker_type)
    alerts_count, has_unacknowledged = await _alert_counts(session, date, worker_type)

    values = build_summary(
        date,
        daily_rows,
        hourly_rows,
        previous_totals=previous_totals,
        top_errors=top_errors,
        top_causas=top_causas,
        alerts_count=alerts_count,
        has_unacknowledged_alerts=has_unacknowledged,
        now=now,
    )

    stmt = upsert(session, DailySummary).values(date=date, worker_type=worker_type, created_at=now, **values)
    await session.execute(
        stmt.on_conflict_do_update(
            index_elements=["date", "worker_type"],
            set_={name: stmt.excluded[name] for name in SUMMARY_FIELDS},
        )
    )
    await session.commit()

    summary = (
        await session.execute(
            select(DailySummary)
            .where(DailySummary.date == date, DailySummary.worker_type == worker_type)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    log.info(
        "summary_generated",
        date=date,
        worker_type=worker_type,
        status=summary.status,
        processed=summary.totals["processed"],
    )
    return summary


async def get_summary(
    session: AsyncSession, date: str, worker_type: str = WorkerType.app_update.value
) -> Optional[DailySummary]:
    result = await session.execute(
        select(DailySummary).where(DailySummary.date == date, DailySummary.worker_type == worker_type)
    )
    return result.scalar_one_or_none()


async def get_last_n_days(
    session: AsyncSession,
    n: int = 7,
    worker_type: str = WorkerType.app_update.value,
    now: Optional[datetime] = None,
) -> list[DailySummary]:
    """Stored summaries of the last ``n`` business days, newest first."""
    result = await session.execute(
        select(DailySummary)
        .where(DailySummary.date.in_(recent_dates(n, now)), DailySummary.worker_type == worker_type)
        .order_by(DailySummary.date.desc())
    )
    return list(result.scalars().all())


async def get_chart_data(
    session: AsyncSession,
    n: int = 30,
    worker_type: str = WorkerType.app_update.value,
    now: Optional[datetime] = None,
) -> list[dict]:
    """One point per summarized day, oldest first."""
    summaries = await get_last_n_days(session, n, worker_type, now)
    return [
        {
            "date": s.date,
            "processed": s.totals["processed"],
            "successful": s.totals["successful"],
            "failed": s.totals["failed"],
            "movimientos_found": s.totals["movimientos_found"],
            "success_rate": s.totals["success_rate"],
            "working_hours": s.totals["total_working_hours"],
        }
        for s in reversed(summaries)
    ]
